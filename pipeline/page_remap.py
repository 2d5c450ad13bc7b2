"""
Page index correction for oracle responses.

Images are sent labeled "[Page N]" with their original document index, but
the model sometimes ignores the labels and numbers pages by position
(0, 1, 2, ...) instead. Indices are mapped back to original page indices.
"""

import logging
from typing import Sequence

logger = logging.getLogger(__name__)


def remap_page_index(returned_index: int, sent_indices: Sequence[int]) -> int:
    """
    Map a page index from a response back to an original page index.

    - index already among the pages sent: the labels were respected, keep it
    - otherwise: treat it as a position into sent_indices; positions past
      either end are clamped, so the result is always one of sent_indices
    """
    if not sent_indices:
        raise ValueError("remap_page_index needs at least one sent page index")
    if returned_index in sent_indices:
        return returned_index
    position = min(max(returned_index, 0), len(sent_indices) - 1)
    return sent_indices[position]


class PageIndexRemapper:
    """remap_page_index bound to one call's page list, counting corrections."""

    def __init__(self, sent_indices: Sequence[int]):
        if not sent_indices:
            raise ValueError("PageIndexRemapper needs at least one sent page index")
        self.sent_indices = list(sent_indices)
        self._sent_set = set(self.sent_indices)
        self.remapped = 0

    def __call__(self, returned_index: int) -> int:
        if returned_index in self._sent_set:
            return returned_index
        mapped = remap_page_index(returned_index, self.sent_indices)
        self.remapped += 1
        logger.debug("Remapped page index %d -> %d", returned_index, mapped)
        return mapped
