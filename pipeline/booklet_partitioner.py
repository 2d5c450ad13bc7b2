"""
Split a document into per-booklet page ranges.

Pure computation over the structure analysis result, no oracle calls.
"""

from dataclasses import dataclass
from typing import Dict, List, Tuple

from pipeline.models import Booklet, PageKind, StructureResult


@dataclass(frozen=True)
class BookletPlan:
    """What one booklet's question extraction call will cover."""
    booklet: Booklet
    start_page: int
    end_page: int
    page_indices: Tuple[int, ...]
    first_question_num: int

    @property
    def last_question_num(self) -> int:
        """Last expected number, or first - 1 when the count is unknown."""
        return self.first_question_num + self.booklet.expected_question_count - 1

    @property
    def label(self) -> str:
        return self.booklet.label


def _sorted_booklets(structure: StructureResult) -> List[Booklet]:
    # stable sort keeps the oracle's order for booklets starting on the same page
    return sorted(structure.booklets, key=lambda b: b.first_question_page_index)


def partition_booklets(structure: StructureResult) -> List[BookletPlan]:
    """
    Compute the page range and starting question number of every booklet.

    start_page skips leading cover pages; end_page is the page before the
    next booklet's first question page (or the last non-answer page for the
    final booklet). Cover and answer pages are never part of a booklet.
    Booklets sharing a question prefix number continuously.
    """
    page_count = structure.page_count
    if page_count == 0:
        return []

    kinds = [p.kind for p in structure.pages]
    non_answer = [i for i, kind in enumerate(kinds) if kind != PageKind.ANSWER]
    last_non_answer = non_answer[-1] if non_answer else -1

    booklets = _sorted_booklets(structure)
    numbering: Dict[str, int] = {}
    plans = []

    for i, booklet in enumerate(booklets):
        start = min(max(booklet.first_question_page_index, 0), page_count - 1)
        while start < page_count and kinds[start] == PageKind.COVER:
            start += 1

        if i + 1 < len(booklets):
            end = min(booklets[i + 1].first_question_page_index, page_count) - 1
        else:
            end = last_non_answer

        page_indices = tuple(
            idx for idx in range(start, end + 1)
            if idx < page_count and kinds[idx] == PageKind.QUESTION
        )

        prefix = booklet.question_prefix
        first_num = numbering.get(prefix, 0) + 1
        numbering[prefix] = first_num - 1 + booklet.expected_question_count

        plans.append(BookletPlan(
            booklet=booklet,
            start_page=start,
            end_page=end,
            page_indices=page_indices,
            first_question_num=first_num,
        ))

    return plans


def answer_page_indices(structure: StructureResult) -> List[int]:
    """Original indices of all answer-key pages, ascending."""
    return [p.index for p in structure.pages if p.kind == PageKind.ANSWER]
