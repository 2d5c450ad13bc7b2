"""
Oracle capability used by the extraction pipeline.

The oracle is any multimodal inference service that takes labeled page
images plus an instruction and returns (approximately) JSON-shaped text.
GeminiClient is the production implementation; tests use scripted stubs.
"""

import threading
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence


class OracleError(Exception):
    """An oracle call failed (transport, quota, empty response...)."""


class OracleTimeout(OracleError):
    """An oracle call exceeded its per-call timeout."""


class OracleCancelled(OracleError):
    """The caller cancelled the request before the call was issued."""


@dataclass(frozen=True)
class PageImage:
    """One rendered page, as encoded image bytes."""
    data: bytes
    mime_type: str = "image/jpeg"


@dataclass(frozen=True)
class LabeledImage:
    """An image sent to the oracle with the text label that follows it."""
    label: str
    image: PageImage


@dataclass(frozen=True)
class Turn:
    """A follow-up conversation turn ("model" or "user")."""
    role: str
    text: str


class CancelToken:
    """Cooperative cancellation flag shared by every call of one request."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OracleCancelled("Request cancelled by caller")


class Oracle(Protocol):
    """Infer(images[], instruction) -> response text."""

    def infer(
        self,
        images: Sequence[LabeledImage],
        instruction: str,
        history: Sequence[Turn] = (),
        cancel: Optional[CancelToken] = None,
    ) -> str:
        ...


def page_label(page_index: int) -> str:
    """Label placed after each image so the oracle can cite original pages."""
    return f"[Page {page_index}]"


def label_pages(
    images: Sequence[PageImage], page_indices: Sequence[int]
) -> List[LabeledImage]:
    """Pair images with their original (0-based) document page indices."""
    if len(images) != len(page_indices):
        raise ValueError(
            f"Got {len(images)} images for {len(page_indices)} page indices"
        )
    return [
        LabeledImage(label=page_label(idx), image=img)
        for img, idx in zip(images, page_indices)
    ]
