"""
Whole-document structure analysis.

One oracle call over every page determines the exam header, the kind of
each page (cover / question / answer key) and the booklets with their
numbering. Any failure here is fatal for the document.
"""

import logging
from typing import Dict, List, Optional, Sequence

from config import SECTION_KINDS, STRUCTURE_ERROR_EXCERPT_CHARS
from pipeline.errors import StructureAnalysisError
from pipeline.models import Booklet, ExamHeader, Page, PageKind, Section, StructureResult
from pipeline.prompts import STRUCTURE_ANALYSIS_PROMPT
from pipeline.schemas import (
    BookletWire,
    HeaderWire,
    PageWire,
    SchemaError,
    SectionWire,
    decode_structure,
)
from utils.oracle import CancelToken, Oracle, OracleCancelled, OracleError, PageImage, label_pages
from utils.response_sanitizer import excerpt

logger = logging.getLogger(__name__)


def _section_kind(raw: str) -> str:
    """Map a section type as written by the model to one of SECTION_KINDS."""
    mcq, structured = SECTION_KINDS
    text = raw.strip().lower()
    if text == "mcq" or "multiple" in text or "choice" in text:
        return mcq
    return structured


def _section(wire: SectionWire) -> Section:
    return Section(
        name=wire.name,
        kind=_section_kind(wire.type),
        marks=wire.marks,
        question_count=wire.question_count,
    )


def _header(wire: HeaderWire) -> ExamHeader:
    return ExamHeader(
        school=wire.school,
        level=wire.level,
        subject=wire.subject,
        year=wire.year,
        semester=wire.semester,
        title=wire.title,
        total_marks=wire.total_marks,
        sections=tuple(_section(s) for s in wire.sections),
    )


def normalize_pages(wires: Sequence[PageWire], page_count: int) -> List[Page]:
    """
    Turn decoded page entries into exactly one Page per input image.

    Out-of-range entries are dropped, duplicates keep the first entry and
    pages the oracle never classified become question pages.
    """
    by_index: Dict[int, Page] = {}
    for wire in wires:
        if not 0 <= wire.page_index < page_count:
            logger.warning("[WARN] Dropping page entry %d (document has %d pages)", wire.page_index, page_count)
            continue
        if wire.page_index in by_index:
            logger.warning("[WARN] Duplicate entry for page %d, keeping the first", wire.page_index)
            continue
        by_index[wire.page_index] = Page(
            index=wire.page_index,
            is_answer_sheet=wire.is_answer_sheet,
            # a page flagged as both is treated as an answer sheet
            is_cover_page=wire.is_cover_page and not wire.is_answer_sheet,
            paper_label=wire.paper_label or None,
        )

    missing = [i for i in range(page_count) if i not in by_index]
    if missing:
        logger.warning("[WARN] Pages not classified by structure analysis: %s (treated as question pages)", missing)
        for i in missing:
            by_index[i] = Page(index=i)

    return [by_index[i] for i in range(page_count)]


def _first_question_page(wire: BookletWire, pages: Sequence[Page]) -> int:
    """Fallback start page: first question page labeled for the booklet, else first question page."""
    question_pages = [p for p in pages if p.kind == PageKind.QUESTION]
    wanted = wire.label.strip().lower()
    for page in question_pages:
        if page.paper_label and page.paper_label.strip().lower() == wanted:
            return page.index
    return question_pages[0].index if question_pages else 0


def normalize_booklets(wires: Sequence[BookletWire], pages: Sequence[Page]) -> List[Booklet]:
    booklets = []
    page_count = len(pages)
    for n, wire in enumerate(wires, 1):
        first_page: Optional[int] = wire.first_question_page_index
        if first_page is None or not 0 <= first_page < page_count:
            fallback = _first_question_page(wire, pages)
            logger.warning(
                "[WARN] Booklet %r: first question page %s unusable, using page %d",
                wire.label, first_page, fallback,
            )
            first_page = fallback

        y_start = wire.first_question_y_start_pct
        if y_start is not None:
            y_start = min(max(y_start, 0.0), 100.0)

        booklets.append(Booklet(
            label=wire.label or f"Booklet {n}",
            question_prefix=wire.question_prefix,
            expected_question_count=max(wire.expected_question_count, 0),
            first_question_page_index=first_page,
            first_question_y_start_pct=y_start,
            sections=tuple(_section(s) for s in wire.sections),
        ))
    return booklets


class StructureAnalyzer:
    """Classifies pages and finds booklets with a single oracle call."""

    def __init__(self, oracle: Oracle):
        self.oracle = oracle

    def analyze(self, images: Sequence[PageImage], cancel: Optional[CancelToken] = None) -> StructureResult:
        """
        Analyze the structure of a rendered document.

        Raises:
            StructureAnalysisError: the oracle failed or its response lacks
                the page classification or the booklet list
            OracleCancelled: the cancel token was set
        """
        if not images:
            raise StructureAnalysisError("No page images given")

        page_count = len(images)
        instruction = STRUCTURE_ANALYSIS_PROMPT.format(page_count=page_count)
        labeled = label_pages(images, range(page_count))

        try:
            raw = self.oracle.infer(labeled, instruction, cancel=cancel)
        except OracleCancelled:
            raise
        except OracleError as e:
            raise StructureAnalysisError(f"Structure analysis call failed: {e}") from e

        decoded = decode_structure(raw)
        if isinstance(decoded, SchemaError):
            raise StructureAnalysisError(
                f"Structure analysis response unusable: {decoded.detail}",
                missing_fields=decoded.missing_fields,
                excerpt=raw[:STRUCTURE_ERROR_EXCERPT_CHARS],
            )

        wire = decoded.value
        pages = normalize_pages(wire.pages, page_count)
        booklets = normalize_booklets(wire.booklets, pages)

        result = StructureResult(
            header=_header(wire.header),
            pages=tuple(pages),
            booklets=tuple(booklets),
        )
        logger.info(
            "Structure: %d pages (%d cover, %d answer), %d booklet(s): %s",
            page_count,
            len(result.pages_of_kind(PageKind.COVER)),
            len(result.pages_of_kind(PageKind.ANSWER)),
            len(booklets),
            ", ".join(f"{b.label} x{b.expected_question_count}" for b in booklets),
        )
        if decoded.dropped:
            logger.warning("[WARN] %d malformed structure entries skipped | %s",
                           decoded.dropped, excerpt(raw, 120))
        return result
