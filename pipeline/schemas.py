"""
Strict decoders for oracle responses.

Every decoder returns either Ok(value) or SchemaError(detail), so callers can
tell "the oracle found nothing" (Ok with an empty value) from "the response
did not match any known shape" (SchemaError). Individual malformed list
items are skipped and counted in Ok.dropped rather than failing the whole
response.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Generic, List, Optional, Sequence, Tuple, Type, TypeVar, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from utils.response_sanitizer import ResponseParseError, parse_oracle_json

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

# Keys the question list has been seen nested under
QUESTION_PAGE_KEYS = ("pages", "questionPages", "results", "data")
ANSWER_MAP_KEYS = ("answers", "answerKey", "results")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    dropped: int = 0


@dataclass(frozen=True)
class SchemaError:
    detail: str
    missing_fields: Tuple[str, ...] = ()


DecodeResult = Union[Ok, SchemaError]


def _to_int(value: Any) -> Any:
    """Lenient int coercion: 28, 28.0, "28", "28 marks" -> 28."""
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        digits = "".join(ch for ch in value.strip().split(" ")[0] if ch.isdigit())
        return int(digits) if digits else None
    return value


def _to_pct(value: Any) -> Any:
    """Accept 15, 15.0, "15", "15%"."""
    if isinstance(value, str):
        return value.strip().rstrip("%").strip()
    return value


class WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, coerce_numbers_to_str=True)

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class SectionWire(WireModel):
    name: str = ""
    type: str = Field("structured", validation_alias=AliasChoices("type", "kind"))
    marks: Optional[int] = None
    question_count: int = Field(0, validation_alias=AliasChoices("questionCount", "question_count"))

    @field_validator("marks", mode="before")
    @classmethod
    def coerce_marks(cls, v):
        return _to_int(v)

    @field_validator("question_count", mode="before")
    @classmethod
    def coerce_count(cls, v):
        return _to_int(v) or 0


class HeaderWire(WireModel):
    school: str = ""
    level: str = ""
    subject: str = ""
    year: str = ""
    semester: str = ""
    title: str = ""
    total_marks: str = Field("", validation_alias=AliasChoices("totalMarks", "total_marks"))
    sections: List[SectionWire] = Field(default_factory=list)


class PageWire(WireModel):
    page_index: int = Field(validation_alias=AliasChoices("pageIndex", "page_index", "index"))
    is_answer_sheet: bool = Field(False, validation_alias=AliasChoices("isAnswerSheet", "is_answer_sheet"))
    is_cover_page: bool = Field(False, validation_alias=AliasChoices("isCoverPage", "is_cover_page"))
    paper_label: Optional[str] = Field(None, validation_alias=AliasChoices("paperLabel", "paper_label", "booklet"))


class BookletWire(WireModel):
    label: str = ""
    question_prefix: str = Field("", validation_alias=AliasChoices("questionPrefix", "question_prefix", "prefix"))
    expected_question_count: int = Field(
        0, validation_alias=AliasChoices("expectedQuestionCount", "expectedQuestions", "expected_question_count")
    )
    first_question_page_index: Optional[int] = Field(
        None, validation_alias=AliasChoices("firstQuestionPageIndex", "questionsStartPage", "first_question_page_index")
    )
    first_question_y_start_pct: Optional[float] = Field(
        None, validation_alias=AliasChoices("firstQuestionYStartPct", "questionsStartY", "first_question_y_start_pct")
    )
    sections: List[SectionWire] = Field(default_factory=list)

    @field_validator("expected_question_count", mode="before")
    @classmethod
    def coerce_count(cls, v):
        return _to_int(v) or 0

    @field_validator("first_question_page_index", mode="before")
    @classmethod
    def coerce_page(cls, v):
        return _to_int(v)

    @field_validator("first_question_y_start_pct", mode="before")
    @classmethod
    def coerce_pct(cls, v):
        return _to_pct(v)


class StructureWire(WireModel):
    header: HeaderWire = Field(default_factory=HeaderWire)
    pages: List[PageWire]
    booklets: List[BookletWire]


class QuestionWire(WireModel):
    question_num: str = Field(
        validation_alias=AliasChoices("questionNum", "question_num", "questionNumber", "number")
    )
    y_start_pct: float = Field(validation_alias=AliasChoices("yStartPct", "y_start_pct", "yStart"))
    y_end_pct: float = Field(validation_alias=AliasChoices("yEndPct", "y_end_pct", "yEnd"))
    boundary_top: str = Field("", validation_alias=AliasChoices("boundaryTop", "boundaryTopLabel", "boundary_top"))
    boundary_bottom: str = Field(
        "", validation_alias=AliasChoices("boundaryBottom", "boundaryBottomLabel", "boundary_bottom")
    )
    page_index: Optional[int] = Field(None, validation_alias=AliasChoices("pageIndex", "page_index"))

    @field_validator("y_start_pct", "y_end_pct", mode="before")
    @classmethod
    def coerce_pct(cls, v):
        return _to_pct(v)


class QuestionPageWire(WireModel):
    page_index: int = Field(validation_alias=AliasChoices("pageIndex", "page_index", "index"))
    questions: List[QuestionWire] = Field(default_factory=list)


class AnswerWire(WireModel):
    type: str = "text"
    value: str = Field("", validation_alias=AliasChoices("value", "answer", "text"))
    answer_page_index: Optional[int] = Field(
        None, validation_alias=AliasChoices("answerPageIndex", "pageIndex", "answer_page_index")
    )
    y_start_pct: Optional[float] = Field(None, validation_alias=AliasChoices("yStartPct", "y_start_pct"))
    y_end_pct: Optional[float] = Field(None, validation_alias=AliasChoices("yEndPct", "y_end_pct"))

    @field_validator("y_start_pct", "y_end_pct", mode="before")
    @classmethod
    def coerce_pct(cls, v):
        return _to_pct(v)


class CropCheckWire(WireModel):
    valid: bool
    reason: str = ""


def _validate_items(model: Type[M], items: Sequence[Any], what: str) -> Tuple[List[M], int]:
    """Validate list items one by one, skipping the malformed ones."""
    good = []
    dropped = 0
    for item in items:
        try:
            good.append(model.model_validate(item))
        except ValidationError as e:
            dropped += 1
            logger.warning("[WARN] Skipping malformed %s: %s", what, e.errors()[0].get("msg", e))
    return good, dropped


def _parse(text: str) -> Union[Any, SchemaError]:
    try:
        return parse_oracle_json(text)
    except ResponseParseError as e:
        return SchemaError(str(e))


def decode_structure(text: str) -> DecodeResult:
    """Decode a structure-analysis response. Missing pages/booklets is an error."""
    data = _parse(text)
    if isinstance(data, SchemaError):
        return SchemaError(data.detail, missing_fields=("pages", "booklets"))
    if not isinstance(data, dict):
        return SchemaError(
            f"expected a JSON object, got {type(data).__name__}", missing_fields=("pages", "booklets")
        )

    booklets_raw = data.get("booklets", data.get("papers"))
    missing = []
    if not isinstance(data.get("pages"), list):
        missing.append("pages")
    if not isinstance(booklets_raw, list):
        missing.append("booklets")
    if missing:
        return SchemaError("required arrays absent", missing_fields=tuple(missing))

    pages, dropped_pages = _validate_items(PageWire, data["pages"], "page entry")
    booklets, dropped_booklets = _validate_items(BookletWire, booklets_raw, "booklet entry")
    if not booklets:
        return SchemaError("no usable booklet entries", missing_fields=("booklets",))

    header_raw = data.get("header")
    try:
        header = HeaderWire.model_validate(header_raw if isinstance(header_raw, dict) else {})
    except ValidationError as e:
        logger.warning("[WARN] Ignoring malformed header: %s", e)
        header = HeaderWire()

    return Ok(
        StructureWire(header=header, pages=pages, booklets=booklets),
        dropped=dropped_pages + dropped_booklets,
    )


def _group_flat_questions(items: Sequence[Any]) -> List[Dict]:
    """[{pageIndex, questionNum, ...}, ...] -> [{pageIndex, questions: [...]}, ...]"""
    pages: Dict[Any, Dict] = {}
    for item in items:
        page_index = item.get("pageIndex", item.get("page_index"))
        pages.setdefault(page_index, {"pageIndex": page_index, "questions": []})["questions"].append(item)
    return list(pages.values())


def decode_question_pages(text: str) -> DecodeResult:
    """
    Decode a question-extraction response into a list of QuestionPageWire.

    Accepted shapes: a bare array of pages, an object with the array under
    one of QUESTION_PAGE_KEYS, a single page object, or a flat array of
    questions that each carry their own pageIndex.
    """
    data = _parse(text)
    if isinstance(data, SchemaError):
        return data

    items = None
    if isinstance(data, list):
        items = data
    elif isinstance(data, dict):
        for key in QUESTION_PAGE_KEYS:
            if isinstance(data.get(key), list):
                items = data[key]
                break
        if items is None and isinstance(data.get("questions"), list):
            if "pageIndex" in data or "page_index" in data:
                items = [data]
            else:
                items = data["questions"]

    if items is None:
        keys = ", ".join(sorted(data)) if isinstance(data, dict) else type(data).__name__
        return SchemaError(f"no page list found (got: {keys})")

    items = [item for item in items if isinstance(item, dict)]
    if items and all("questions" not in item for item in items):
        items = _group_flat_questions(items)

    pages = []
    dropped = 0
    for item in items:
        questions_raw = item.get("questions") or []
        try:
            page = QuestionPageWire.model_validate({**item, "questions": []})
        except ValidationError:
            dropped += 1 + len(questions_raw)
            logger.warning("[WARN] Skipping page entry without a usable pageIndex")
            continue
        questions, dropped_questions = _validate_items(QuestionWire, questions_raw, "question entry")
        dropped += dropped_questions
        pages.append(page.model_copy(update={"questions": questions}))

    return Ok(pages, dropped=dropped)


def decode_answers(text: str) -> DecodeResult:
    """
    Decode an answer-extraction response into {questionNum: AnswerWire}.

    Plain string values are the old answer format and become text entries.
    """
    data = _parse(text)
    if isinstance(data, SchemaError):
        return data

    if isinstance(data, dict):
        for key in ANSWER_MAP_KEYS:
            if key in data:
                data = data[key]
                break

    if isinstance(data, dict):
        mapping = data
    elif isinstance(data, list):
        mapping = {}
        for item in data:
            if not isinstance(item, dict):
                continue
            num = item.get("questionNum", item.get("question_num"))
            if num is not None:
                mapping[str(num)] = item
    else:
        return SchemaError(f"no answer map found (got {type(data).__name__})")

    answers = {}
    dropped = 0
    for key, raw in mapping.items():
        if isinstance(raw, (str, int, float)) and not isinstance(raw, bool):
            answers[str(key)] = AnswerWire(type="text", value=str(raw))
            continue
        try:
            answers[str(key)] = AnswerWire.model_validate(raw)
        except ValidationError as e:
            dropped += 1
            logger.warning("[WARN] Skipping malformed answer for %s: %s", key, e.errors()[0].get("msg", e))

    return Ok(answers, dropped=dropped)


def decode_object(text: str, model: Type[M]) -> DecodeResult:
    """Decode a single JSON object response into `model`."""
    data = _parse(text)
    if isinstance(data, SchemaError):
        return data
    if isinstance(data, list) and len(data) == 1:
        data = data[0]
    try:
        return Ok(model.model_validate(data))
    except ValidationError as e:
        return SchemaError(f"{model.__name__}: {e.errors()[0].get('msg', e)}")
