"""
Single-question and single-answer re-extraction.

Used when a reviewer flags one bad crop or answer: only that page is sent
again. Unlike the batch pipeline these raise ReextractionError, since a
person is waiting on the result.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Sequence

from config import DEFAULT_PREFIX_PATTERN
from pipeline.errors import ReextractionError
from pipeline.models import AnswerEntry, ImageAnswer, Question, TextAnswer
from pipeline.prompts import (
    BOUNDARY_RULE,
    REDO_ANSWER_PROMPT,
    REDO_QUESTION_PROMPT,
    VALIDATE_CROP_PROMPT,
    redo_answer_context_line,
    redo_question_context,
)
from pipeline.schemas import AnswerWire, CropCheckWire, QuestionWire, SchemaError, decode_object
from utils.oracle import CancelToken, Oracle, OracleError, PageImage, label_pages
from utils.response_sanitizer import flatten_lines

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CropCheck:
    valid: bool
    reason: str = ""


def display_number(question_num: str) -> str:
    """Number as printed on the page: "P2-5" -> "5", "12b" -> "12(b)"."""
    num = re.sub(DEFAULT_PREFIX_PATTERN, "", question_num)
    return re.sub(r"([a-zA-Z])$", r"(\1)", num)


def _call(oracle: Oracle, image: PageImage, page_index: int, instruction: str, cancel) -> str:
    try:
        return oracle.infer(label_pages([image], [page_index]), instruction, cancel=cancel)
    except OracleError as e:
        raise ReextractionError(f"Oracle call failed: {e}") from e


def redo_question(
    oracle: Oracle,
    image: PageImage,
    question_num: str,
    surrounding_questions: Sequence[str] = (),
    page_index: int = 0,
    cancel: Optional[CancelToken] = None,
) -> Question:
    """Find one question on one page and return its crop band."""
    instruction = REDO_QUESTION_PROMPT.format(
        question_num=question_num,
        context=redo_question_context(list(surrounding_questions)),
        boundary_rule=BOUNDARY_RULE,
    )
    raw = _call(oracle, image, page_index, instruction, cancel)
    decoded = decode_object(raw, QuestionWire)
    if isinstance(decoded, SchemaError):
        raise ReextractionError(f"Could not parse question {question_num}: {decoded.detail}")

    wire = decoded.value
    start = min(max(wire.y_start_pct, 0.0), 100.0)
    end = min(max(wire.y_end_pct, 0.0), 100.0)
    if start >= end:
        raise ReextractionError(f"Question {question_num}: invalid band {start}-{end}")
    return Question(question_num=question_num, y_start_pct=start, y_end_pct=end)


def redo_answer(
    oracle: Oracle,
    image: PageImage,
    question_num: str,
    paper_context: str = "",
    page_index: int = 0,
    cancel: Optional[CancelToken] = None,
) -> AnswerEntry:
    """
    Find the answer to one question on one answer-key page.

    An answer that is not on the page comes back as an empty TextAnswer.
    """
    instruction = REDO_ANSWER_PROMPT.format(
        question_num=question_num,
        paper_context_line=redo_answer_context_line(question_num, paper_context),
    )
    raw = _call(oracle, image, page_index, instruction, cancel)
    decoded = decode_object(raw, AnswerWire)
    if isinstance(decoded, SchemaError):
        raise ReextractionError(f"Could not parse answer {question_num}: {decoded.detail}")

    wire = decoded.value
    value = flatten_lines(wire.value or "").strip()
    if wire.type == "image" and wire.y_start_pct is not None and wire.y_end_pct is not None:
        start = min(max(wire.y_start_pct, 0.0), 100.0)
        end = min(max(wire.y_end_pct, 0.0), 100.0)
        if start < end:
            return ImageAnswer(page_index=page_index, y_start_pct=start, y_end_pct=end, value=value)
        logger.warning("[WARN] Answer %s: invalid band %s-%s, returning text", question_num, start, end)
    return TextAnswer(value=value)


def validate_crop(
    oracle: Oracle,
    cropped_image: PageImage,
    question_num: str,
    cancel: Optional[CancelToken] = None,
) -> CropCheck:
    """Ask whether a cropped image really shows the given question."""
    instruction = VALIDATE_CROP_PROMPT.format(
        question_num=question_num,
        display_num=display_number(question_num),
    )
    raw = _call(oracle, cropped_image, 0, instruction, cancel)
    decoded = decode_object(raw, CropCheckWire)
    if isinstance(decoded, SchemaError):
        raise ReextractionError(f"Could not parse crop check for {question_num}: {decoded.detail}")
    return CropCheck(valid=decoded.value.valid, reason=decoded.value.reason)
