"""
Value objects produced by the extraction pipeline.

Everything here is created fresh per document and never mutated after
construction. to_dict() methods produce the camelCase JSON the HTTP layer
and the persistence collaborator expect.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple, Union

if TYPE_CHECKING:
    from pipeline.report import DiagnosticReport


class PageKind(str, Enum):
    COVER = "cover"
    QUESTION = "question"
    ANSWER = "answer"


@dataclass(frozen=True)
class Page:
    """Classification of one document page (index is 0-based)."""
    index: int
    is_answer_sheet: bool = False
    is_cover_page: bool = False
    paper_label: Optional[str] = None

    @property
    def kind(self) -> PageKind:
        if self.is_answer_sheet:
            return PageKind.ANSWER
        if self.is_cover_page:
            return PageKind.COVER
        return PageKind.QUESTION


@dataclass(frozen=True)
class Section:
    """Header section, e.g. "Section A: 28 questions x 1 mark"."""
    name: str
    kind: str = "structured"  # "MCQ" | "structured"
    marks: Optional[int] = None
    question_count: int = 0

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "type": self.kind,
            "marks": self.marks,
            "questionCount": self.question_count,
        }


@dataclass(frozen=True)
class Booklet:
    """
    A separately printed paper/booklet.

    Booklets with the same question_prefix share one numbering sequence
    (Booklet A Q1-15, Booklet B Q16-30); a new prefix restarts at 1.
    """
    label: str
    question_prefix: str = ""
    expected_question_count: int = 0
    first_question_page_index: int = 0
    first_question_y_start_pct: Optional[float] = None
    sections: Tuple[Section, ...] = ()


@dataclass(frozen=True)
class ExamHeader:
    """Metadata read from the cover page."""
    school: str = ""
    level: str = ""
    subject: str = ""
    year: str = ""
    semester: str = ""
    title: str = ""
    total_marks: str = ""
    sections: Tuple[Section, ...] = ()

    def to_dict(self) -> Dict:
        return {
            "school": self.school,
            "level": self.level,
            "subject": self.subject,
            "year": self.year,
            "semester": self.semester,
            "title": self.title,
            "totalMarks": self.total_marks,
            "sections": [s.to_dict() for s in self.sections],
        }


@dataclass(frozen=True)
class StructureResult:
    """Output of structure analysis: header, one entry per page, booklets."""
    header: ExamHeader
    pages: Tuple[Page, ...]
    booklets: Tuple[Booklet, ...]

    @property
    def page_count(self) -> int:
        return len(self.pages)

    def pages_of_kind(self, kind: PageKind) -> List[Page]:
        return [p for p in self.pages if p.kind == kind]

    def booklet_for_label(self, label: Optional[str]) -> Optional[Booklet]:
        if not label:
            return None
        wanted = label.strip().lower()
        for booklet in self.booklets:
            if booklet.label.strip().lower() == wanted:
                return booklet
        return None


@dataclass(frozen=True)
class Question:
    """Crop band of one whole question, in percent of page height."""
    question_num: str
    y_start_pct: float
    y_end_pct: float
    boundary_top_label: str = ""
    boundary_bottom_label: str = ""

    def __post_init__(self):
        if not (0 <= self.y_start_pct < self.y_end_pct <= 100):
            raise ValueError(
                f"Q{self.question_num}: invalid band "
                f"{self.y_start_pct}-{self.y_end_pct}"
            )

    def to_dict(self) -> Dict:
        return {
            "questionNum": self.question_num,
            "yStartPct": self.y_start_pct,
            "yEndPct": self.y_end_pct,
            "boundaryTop": self.boundary_top_label,
            "boundaryBottom": self.boundary_bottom_label,
        }


@dataclass(frozen=True)
class TextAnswer:
    """Answer given as (flattened) text, e.g. an MCQ letter."""
    value: str

    def to_dict(self) -> Dict:
        return {"type": "text", "value": self.value}


@dataclass(frozen=True)
class ImageAnswer:
    """Answer that is a region of an answer-key page (workings, diagrams)."""
    page_index: int
    y_start_pct: float
    y_end_pct: float
    value: str = ""  # optional transcription of the region

    def __post_init__(self):
        if not (0 <= self.y_start_pct < self.y_end_pct <= 100):
            raise ValueError(
                f"Invalid answer band {self.y_start_pct}-{self.y_end_pct}"
            )

    def to_dict(self) -> Dict:
        return {
            "type": "image",
            "answerPageIndex": self.page_index,
            "yStartPct": self.y_start_pct,
            "yEndPct": self.y_end_pct,
            "value": self.value,
        }


AnswerEntry = Union[TextAnswer, ImageAnswer]


def normalize_answer(entry: Union[str, AnswerEntry]) -> AnswerEntry:
    """Accept the old plain-string answer format alongside typed entries."""
    if isinstance(entry, str):
        return TextAnswer(value=entry)
    return entry


class IssueKind(str, Enum):
    GAP = "gap"
    DUPLICATE = "duplicate"
    WRONG_FIRST = "wrongFirst"
    NONE_FOUND = "noneFound"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class ValidationIssue:
    """A numbering problem found in one booklet. Diagnostic only."""
    booklet: str
    kind: IssueKind
    detail: str

    def to_dict(self) -> Dict:
        return {"booklet": self.booklet, "kind": self.kind.value, "detail": self.detail}

    def __str__(self) -> str:
        return f"{self.booklet}: {self.detail}"


@dataclass(frozen=True)
class PageResult:
    """One page of the final output, with the questions cropped from it."""
    index: int
    is_answer_sheet: bool = False
    is_cover_page: bool = False
    questions: Tuple[Question, ...] = ()

    def to_dict(self) -> Dict:
        return {
            "pageIndex": self.index,
            "isAnswerSheet": self.is_answer_sheet,
            "isCoverPage": self.is_cover_page,
            "questions": [q.to_dict() for q in self.questions],
        }


@dataclass(frozen=True)
class BatchResult:
    """Final merged output for one document."""
    header: ExamHeader
    pages: Tuple[PageResult, ...]
    answers: Dict[str, AnswerEntry] = field(default_factory=dict)
    report: Optional["DiagnosticReport"] = None

    @property
    def questions(self) -> List[Tuple[int, Question]]:
        """All (page_index, question) pairs in document order."""
        return [(p.index, q) for p in self.pages for q in p.questions]

    def to_dict(self, include_report: bool = False) -> Dict:
        data = {
            "header": self.header.to_dict(),
            "pages": [p.to_dict() for p in self.pages],
            "answers": {num: normalize_answer(entry).to_dict() for num, entry in self.answers.items()},
        }
        if include_report and self.report is not None:
            data["report"] = self.report.to_dict()
        return data
