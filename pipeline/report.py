"""
Diagnostic report for one analyzed document.

Informational only: nothing here changes the extraction result.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from pipeline.answer_extractor import AnswerOutcome
from pipeline.models import ValidationIssue
from pipeline.question_extractor import BookletOutcome


@dataclass(frozen=True)
class BookletReport:
    label: str
    question_prefix: str
    expected_range: Optional[Tuple[int, int]]
    found_range: Optional[Tuple[int, int]]
    questions_found: int
    issues: Tuple[ValidationIssue, ...]
    retried: bool
    attempts: int
    raw_excerpt: str

    @classmethod
    def from_outcome(cls, outcome: BookletOutcome) -> "BookletReport":
        plan = outcome.plan
        expected = None
        if plan.booklet.expected_question_count > 0:
            expected = (plan.first_question_num, plan.last_question_num)
        return cls(
            label=plan.label,
            question_prefix=plan.booklet.question_prefix,
            expected_range=expected,
            found_range=outcome.found_range,
            questions_found=len(outcome.question_nums),
            issues=outcome.issues,
            retried=outcome.retried,
            attempts=outcome.attempts,
            raw_excerpt=outcome.raw_excerpt,
        )

    def to_dict(self) -> Dict:
        return {
            "label": self.label,
            "questionPrefix": self.question_prefix,
            "expectedRange": list(self.expected_range) if self.expected_range else None,
            "foundRange": list(self.found_range) if self.found_range else None,
            "questionsFound": self.questions_found,
            "issues": [issue.to_dict() for issue in self.issues],
            "retried": self.retried,
            "attempts": self.attempts,
            "rawExcerpt": self.raw_excerpt,
        }


@dataclass(frozen=True)
class DiagnosticReport:
    booklets: Tuple[BookletReport, ...]
    answers_found: int
    answer_error: Optional[str] = None
    answer_excerpt: str = ""

    @classmethod
    def build(cls, outcomes, answer_outcome: Optional[AnswerOutcome]) -> "DiagnosticReport":
        answer_outcome = answer_outcome or AnswerOutcome()
        return cls(
            booklets=tuple(BookletReport.from_outcome(o) for o in outcomes),
            answers_found=len(answer_outcome.answers),
            answer_error=answer_outcome.error,
            answer_excerpt=answer_outcome.raw_excerpt,
        )

    @property
    def issues(self) -> Tuple[ValidationIssue, ...]:
        return tuple(issue for booklet in self.booklets for issue in booklet.issues)

    @property
    def is_clean(self) -> bool:
        return not self.issues and self.answer_error is None

    def to_dict(self) -> Dict:
        return {
            "booklets": [b.to_dict() for b in self.booklets],
            "answersFound": self.answers_found,
            "answerError": self.answer_error,
        }


def _range(value: Optional[Tuple[int, int]], prefix: str = "") -> str:
    if value is None:
        return "?"
    return f"{prefix}{value[0]}-{prefix}{value[1]}"


def format_report(report: DiagnosticReport, title: str = "") -> str:
    """
    Generate a human-readable extraction report.
    """
    lines = [
        "=" * 50,
        "EXTRACTION REPORT",
        "=" * 50,
    ]
    if title:
        lines.extend(["", f"Document: {title}"])

    lines.extend(["", "Booklets:"])
    for booklet in report.booklets:
        status = "OK" if not booklet.issues else "ISSUES"
        retried = " (retried)" if booklet.retried else ""
        lines.append(
            f"  {booklet.label}: expected {_range(booklet.expected_range, booklet.question_prefix)}, "
            f"found {_range(booklet.found_range, booklet.question_prefix)} "
            f"[{booklet.questions_found} questions] [{status}]{retried}"
        )
        for issue in booklet.issues:
            lines.append(f"    ! {issue.kind.value}: {issue.detail}")
        if booklet.issues and booklet.raw_excerpt:
            lines.append(f"    raw: {booklet.raw_excerpt}")

    lines.extend(["", f"Answers: {report.answers_found}"])
    if report.answer_error:
        lines.append(f"  ! {report.answer_error}")
        if report.answer_excerpt:
            lines.append(f"    raw: {report.answer_excerpt}")

    lines.extend([
        "",
        "-" * 50,
        f"Status: {'CLEAN' if report.is_clean else 'NEEDS REVIEW'}",
        "=" * 50,
    ])
    return "\n".join(lines)
