"""
Per-booklet question boundary extraction with validation and bounded retry.

Each booklet is one oracle call over its own pages. The numbers found are
validated against the booklet plan; on problems the call is repeated once
(by default) with the previous response and a list of the problems.
Nothing in here raises for oracle trouble: failures become issues on the
returned BookletOutcome.
"""

import logging
import math
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from config import QUESTION_MAX_RETRIES, RAW_EXCERPT_CHARS, RETRY_BACKOFF_SECONDS
from pipeline.booklet_partitioner import BookletPlan
from pipeline.models import IssueKind, Question, StructureResult, ValidationIssue
from pipeline.page_remap import PageIndexRemapper
from pipeline.prompts import (
    BOUNDARY_RULE,
    QUESTION_EXTRACTION_PROMPT,
    QUESTION_RETRY_PROMPT,
    build_structure_context,
)
from pipeline.schemas import QuestionPageWire, SchemaError, decode_question_pages
from pipeline.validator import build_retry_feedback, question_suffix, validate_booklet_numbers
from utils.oracle import (
    CancelToken,
    LabeledImage,
    Oracle,
    OracleCancelled,
    OracleError,
    PageImage,
    Turn,
    label_pages,
)
from utils.response_sanitizer import excerpt

logger = logging.getLogger(__name__)

_LABEL_NOISE_RE = re.compile(r"^[Qq]\s*|\.+$|(?<=\d)\)$")


class ExtractionState(Enum):
    PENDING = "pending"
    FIRST_ATTEMPT = "first_attempt"
    VALID = "valid"
    INVALID = "invalid"
    RETRY = "retry"
    DONE = "done"


@dataclass(frozen=True)
class RetryPolicy:
    """How often a booklet with numbering problems is asked again."""
    max_retries: int = QUESTION_MAX_RETRIES
    backoff_seconds: float = RETRY_BACKOFF_SECONDS

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.backoff_seconds < 0:
            raise ValueError("backoff_seconds must be >= 0")


@dataclass(frozen=True)
class BookletOutcome:
    """Questions found for one booklet plus what went wrong on the way."""
    plan: BookletPlan
    pages: Dict[int, Tuple[Question, ...]] = field(default_factory=dict)
    issues: Tuple[ValidationIssue, ...] = ()
    attempts: int = 0
    retried: bool = False
    raw_excerpt: str = ""
    state: ExtractionState = ExtractionState.DONE
    error: Optional[str] = None

    @property
    def label(self) -> str:
        return self.plan.label

    @property
    def question_nums(self) -> List[str]:
        return [q.question_num for idx in sorted(self.pages) for q in self.pages[idx]]

    @property
    def found_range(self) -> Optional[Tuple[int, int]]:
        """Lowest and highest numeric question number found, if any."""
        prefix = self.plan.booklet.question_prefix
        numbers = [n for n in (question_suffix(q, prefix) for q in self.question_nums) if n is not None]
        if not numbers:
            return None
        return min(numbers), max(numbers)

    @property
    def ok(self) -> bool:
        return not self.issues


def failed_outcome(plan: BookletPlan, error: str) -> BookletOutcome:
    """Outcome for a booklet whose extraction could not run at all."""
    return BookletOutcome(
        plan=plan,
        issues=(ValidationIssue(plan.label, IssueKind.NONE_FOUND, f"extraction failed: {error}"),),
        state=ExtractionState.DONE,
        error=error,
    )


@dataclass(frozen=True)
class _Attempt:
    pages: Dict[int, Tuple[Question, ...]]
    issues: Tuple[ValidationIssue, ...]
    raw: Optional[str] = None
    parsed: bool = False
    error: Optional[str] = None
    cancelled: bool = False


def normalize_question_num(question_num: str, prefix: str) -> str:
    """Strip label noise ("Q5.", "5)") and add the booklet prefix if missing."""
    num = _LABEL_NOISE_RE.sub("", str(question_num).strip())
    if prefix and not num.startswith(prefix):
        num = prefix + num
    return num


def _clamp_pct(value: float) -> float:
    return min(max(float(value), 0.0), 100.0)


class QuestionExtractor:
    """Extracts question crop bands for one booklet at a time."""

    def __init__(
        self,
        oracle: Oracle,
        structure: StructureResult,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.oracle = oracle
        self.structure = structure
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._structure_context = build_structure_context(structure)

    def _instruction(self, plan: BookletPlan) -> str:
        first = plan.first_question_num
        last = plan.last_question_num if plan.booklet.expected_question_count else "the last question"
        return QUESTION_EXTRACTION_PROMPT.format(
            structure_context=self._structure_context,
            booklet_label=plan.label,
            question_prefix=plan.booklet.question_prefix,
            first_question_num=first,
            second_question_num=first + 1,
            last_question_num=last,
            boundary_rule=BOUNDARY_RULE,
        )

    def _retry_turn(self, plan: BookletPlan, issues: Sequence[ValidationIssue]) -> str:
        last = plan.last_question_num if plan.booklet.expected_question_count else "the last question"
        return QUESTION_RETRY_PROMPT.format(
            feedback=build_retry_feedback(issues),
            first_question_num=plan.first_question_num,
            last_question_num=last,
        )

    def _normalize(self, plan: BookletPlan, wires: Sequence[QuestionPageWire]) -> Dict[int, Tuple[Question, ...]]:
        remap = PageIndexRemapper(plan.page_indices)
        prefix = plan.booklet.question_prefix
        collected: Dict[int, List[Question]] = {}

        for page in wires:
            page_index = remap(page.page_index)
            for wire in page.questions:
                start = _clamp_pct(wire.y_start_pct)
                end = _clamp_pct(wire.y_end_pct)
                num = normalize_question_num(wire.question_num, prefix)
                if not (math.isfinite(start) and math.isfinite(end)) or start >= end:
                    logger.warning(
                        "[WARN] %s: dropping Q%s on page %d, invalid band %.1f-%.1f",
                        plan.label, num, page_index, start, end,
                    )
                    continue
                collected.setdefault(page_index, []).append(Question(
                    question_num=num,
                    y_start_pct=start,
                    y_end_pct=end,
                    boundary_top_label=wire.boundary_top,
                    boundary_bottom_label=wire.boundary_bottom,
                ))

        if remap.remapped:
            logger.info("%s: remapped %d positional page indices", plan.label, remap.remapped)
        return {
            idx: tuple(sorted(questions, key=lambda q: q.y_start_pct))
            for idx, questions in collected.items()
        }

    def _validate(self, plan: BookletPlan, pages: Dict[int, Tuple[Question, ...]]) -> Tuple[ValidationIssue, ...]:
        nums = [q.question_num for idx in sorted(pages) for q in pages[idx]]
        return tuple(validate_booklet_numbers(
            plan.label,
            nums,
            plan.first_question_num,
            plan.booklet.expected_question_count,
            plan.booklet.question_prefix,
        ))

    def _attempt(
        self,
        plan: BookletPlan,
        images: Sequence[LabeledImage],
        instruction: str,
        history: Sequence[Turn],
        cancel: Optional[CancelToken],
    ) -> _Attempt:
        try:
            raw = self.oracle.infer(images, instruction, history=history, cancel=cancel)
        except OracleCancelled as e:
            issue = ValidationIssue(plan.label, IssueKind.NONE_FOUND, "cancelled before extraction")
            return _Attempt(pages={}, issues=(issue,), error=str(e), cancelled=True)
        except OracleError as e:
            logger.warning("[WARN] %s: question extraction call failed: %s", plan.label, e)
            issue = ValidationIssue(plan.label, IssueKind.NONE_FOUND, f"oracle call failed: {e}")
            return _Attempt(pages={}, issues=(issue,), error=str(e))

        decoded = decode_question_pages(raw)
        if isinstance(decoded, SchemaError):
            logger.warning("[WARN] %s: unusable response: %s", plan.label, decoded.detail)
            issue = ValidationIssue(
                plan.label, IssueKind.NONE_FOUND,
                f"response did not match the question schema: {decoded.detail}",
            )
            return _Attempt(pages={}, issues=(issue,), raw=raw)

        pages = self._normalize(plan, decoded.value)
        return _Attempt(pages=pages, issues=self._validate(plan, pages), raw=raw, parsed=True)

    def extract(
        self,
        plan: BookletPlan,
        images: Sequence[PageImage],
        cancel: Optional[CancelToken] = None,
    ) -> BookletOutcome:
        """
        Extract the questions of one booklet.

        Args:
            plan: booklet plan from partition_booklets
            images: ALL page images of the document, indexed by page
            cancel: optional cancel token checked before every call

        Returns:
            BookletOutcome; never raises for oracle failures
        """
        state = ExtractionState.PENDING
        if not plan.page_indices:
            logger.warning("[WARN] %s: no question pages to extract from", plan.label)
            return BookletOutcome(
                plan=plan,
                issues=(ValidationIssue(plan.label, IssueKind.NONE_FOUND, "booklet has no question pages"),),
                state=ExtractionState.DONE,
            )

        labeled = label_pages([images[i] for i in plan.page_indices], plan.page_indices)
        instruction = self._instruction(plan)
        history: List[Turn] = []
        attempts = 0
        kept: Optional[_Attempt] = None

        state = ExtractionState.FIRST_ATTEMPT
        while True:
            attempt = self._attempt(plan, labeled, instruction, history, cancel)
            attempts += 1
            # a retry replaces the earlier result only when it parsed
            if kept is None or attempt.parsed:
                kept = attempt

            state = ExtractionState.VALID if not kept.issues else ExtractionState.INVALID
            if state == ExtractionState.VALID or attempt.cancelled:
                break
            if attempts > self.policy.max_retries:
                break

            state = ExtractionState.RETRY
            logger.info(
                "[RETRY] %s: %s", plan.label, "; ".join(issue.detail for issue in attempt.issues)
            )
            if attempt.raw is not None:
                history = history + [
                    Turn(role="model", text=attempt.raw),
                    Turn(role="user", text=self._retry_turn(plan, attempt.issues)),
                ]
            if self.policy.backoff_seconds:
                self._sleep(self.policy.backoff_seconds)

        state = ExtractionState.DONE
        outcome = BookletOutcome(
            plan=plan,
            pages=kept.pages,
            issues=kept.issues,
            attempts=attempts,
            retried=attempts > 1,
            raw_excerpt=excerpt(kept.raw or "", RAW_EXCERPT_CHARS),
            state=state,
            error=kept.error,
        )
        logger.info(
            "%s: %d questions on %d pages, %d issue(s), %d attempt(s)",
            plan.label, len(outcome.question_nums), len(outcome.pages), len(outcome.issues), attempts,
        )
        return outcome
