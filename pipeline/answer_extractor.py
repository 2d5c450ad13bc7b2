"""
Answer key extraction.

One oracle call over all answer-key pages. Answers are either text (MCQ
letters, bare values) or an image region of an answer page that holds the
worked solution. No retry and no completeness check: a failed call leaves
the answer map empty and records the error.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence

from config import ANSWER_SEPARATOR, RAW_EXCERPT_CHARS
from pipeline.models import AnswerEntry, ImageAnswer, StructureResult, TextAnswer
from pipeline.page_remap import PageIndexRemapper
from pipeline.prompts import ANSWER_EXTRACTION_PROMPT, build_answer_page_context, build_structure_context
from pipeline.schemas import AnswerWire, SchemaError, decode_answers
from utils.oracle import CancelToken, Oracle, OracleError, PageImage, label_pages
from utils.response_sanitizer import excerpt, flatten_lines

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^(?:Q(?:uestion)?\s*)?(.*?)[.):\s]*$", re.IGNORECASE)


@dataclass(frozen=True)
class AnswerOutcome:
    answers: Dict[str, AnswerEntry] = field(default_factory=dict)
    error: Optional[str] = None
    raw_excerpt: str = ""
    dropped: int = 0


def normalize_answer_key(key: str) -> str:
    """ "Q24)" -> "24", "24." -> "24", "P2-3" stays "P2-3". """
    match = _KEY_RE.match(str(key).strip())
    return match.group(1).strip() if match else str(key).strip()


class AnswerExtractor:
    """Reads every answer-key page in one call."""

    def __init__(self, oracle: Oracle, structure: StructureResult, separator: str = ANSWER_SEPARATOR):
        self.oracle = oracle
        self.structure = structure
        self.separator = separator

    def _instruction(self) -> str:
        return ANSWER_EXTRACTION_PROMPT.format(
            structure_context=build_structure_context(self.structure),
            answer_page_context=build_answer_page_context(self.structure),
        )

    def _entry(self, key: str, wire: AnswerWire, remap: PageIndexRemapper) -> Optional[AnswerEntry]:
        value = flatten_lines(wire.value or "", self.separator).strip()
        if wire.type.strip().lower() != "image":
            return TextAnswer(value=value)

        if wire.y_start_pct is not None and wire.y_end_pct is not None:
            page_index = remap(wire.answer_page_index if wire.answer_page_index is not None else 0)
            start = min(max(wire.y_start_pct, 0.0), 100.0)
            end = min(max(wire.y_end_pct, 0.0), 100.0)
            if start < end:
                return ImageAnswer(page_index=page_index, y_start_pct=start, y_end_pct=end, value=value)

        if value:
            logger.warning("[WARN] Answer %s: unusable image region, keeping the transcription as text", key)
            return TextAnswer(value=value)
        logger.warning("[WARN] Answer %s: unusable image region and no transcription, dropped", key)
        return None

    def extract(
        self,
        answer_pages: Sequence[int],
        images: Sequence[PageImage],
        cancel: Optional[CancelToken] = None,
    ) -> AnswerOutcome:
        """
        Extract the answer key from the given answer pages.

        Args:
            answer_pages: original indices of the answer-key pages
            images: ALL page images of the document, indexed by page
            cancel: optional cancel token

        Returns:
            AnswerOutcome; error is set instead of raising when the call fails
        """
        if not answer_pages:
            return AnswerOutcome()

        labeled = label_pages([images[i] for i in answer_pages], answer_pages)
        try:
            raw = self.oracle.infer(labeled, self._instruction(), cancel=cancel)
        except OracleError as e:
            logger.warning("[WARN] Answer extraction call failed: %s", e)
            return AnswerOutcome(error=str(e))

        decoded = decode_answers(raw)
        if isinstance(decoded, SchemaError):
            logger.warning("[WARN] Answer extraction response unusable: %s", decoded.detail)
            return AnswerOutcome(
                error=f"response did not match the answer schema: {decoded.detail}",
                raw_excerpt=excerpt(raw, RAW_EXCERPT_CHARS),
            )

        remap = PageIndexRemapper(answer_pages)
        answers: Dict[str, AnswerEntry] = {}
        dropped = decoded.dropped
        for key, wire in decoded.value.items():
            num = normalize_answer_key(key)
            if not num:
                dropped += 1
                continue
            entry = self._entry(num, wire, remap)
            if entry is None:
                dropped += 1
                continue
            if num in answers:
                logger.warning("[WARN] Duplicate answer for %s, keeping the first", num)
                continue
            answers[num] = entry

        images_count = sum(1 for a in answers.values() if isinstance(a, ImageAnswer))
        logger.info(
            "Answers: %d extracted (%d image, %d text) from %d page(s)",
            len(answers), images_count, len(answers) - images_count, len(answer_pages),
        )
        return AnswerOutcome(
            answers=answers,
            raw_excerpt=excerpt(raw, RAW_EXCERPT_CHARS),
            dropped=dropped,
        )
