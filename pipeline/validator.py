"""
Validation utilities for the extraction pipeline.

Checks the question numbers found in one booklet against the numbering the
structure analysis predicted, and turns the problems into retry feedback.
"""

import re
from collections import Counter
from typing import List, Optional, Sequence

from config import DEFAULT_PREFIX_PATTERN
from pipeline.models import IssueKind, ValidationIssue

_PREFIX_RE = re.compile(DEFAULT_PREFIX_PATTERN)
_LEADING_NUMBER_RE = re.compile(r"\d+")


def _format_nums(nums: Sequence[int]) -> str:
    return ", ".join(str(n) for n in nums)


def question_suffix(question_num: str, prefix: str = "") -> Optional[int]:
    """
    Numeric part of a question number: "P2-14" -> 14, "7" -> 7, "12a" -> 12.

    Returns None when no number can be read.
    """
    text = str(question_num).strip()
    if prefix and text.startswith(prefix):
        text = text[len(prefix):]
    else:
        text = _PREFIX_RE.sub("", text)
    text = text.lstrip("Qq").strip()
    match = _LEADING_NUMBER_RE.match(text)
    return int(match.group()) if match else None


def validate_booklet_numbers(
    booklet: str,
    question_nums: Sequence[str],
    first_question_num: int,
    expected_count: int = 0,
    prefix: str = "",
) -> List[ValidationIssue]:
    """
    Validate the question numbers extracted for one booklet.

    The numbers must start at first_question_num, have no gaps and no
    duplicates, and (when expected_count is known) stay inside the expected
    range. An empty list means the numbering is exactly contiguous.
    """
    if not question_nums:
        return [ValidationIssue(booklet, IssueKind.NONE_FOUND, "no questions found")]

    issues = []
    numbers = []
    unreadable = []
    for num in question_nums:
        value = question_suffix(num, prefix)
        if value is None:
            unreadable.append(str(num))
        else:
            numbers.append(value)

    if unreadable:
        issues.append(ValidationIssue(
            booklet, IssueKind.UNEXPECTED,
            f"unreadable question numbers: {', '.join(unreadable)}",
        ))
    if not numbers:
        return issues + [ValidationIssue(booklet, IssueKind.NONE_FOUND, "no numbered questions found")]

    counts = Counter(numbers)
    duplicates = sorted(n for n, c in counts.items() if c > 1)
    if duplicates:
        issues.append(ValidationIssue(
            booklet, IssueKind.DUPLICATE, f"duplicate questions: {_format_nums(duplicates)}"
        ))

    lowest = min(numbers)
    if lowest != first_question_num:
        issues.append(ValidationIssue(
            booklet, IssueKind.WRONG_FIRST,
            f"first question should be {first_question_num} but got {lowest}",
        ))

    if expected_count > 0:
        last = first_question_num + expected_count - 1
    else:
        last = max(numbers)

    present = set(numbers)
    missing = [n for n in range(first_question_num, last + 1) if n not in present]
    if missing:
        issues.append(ValidationIssue(
            booklet, IssueKind.GAP, f"missing questions: {_format_nums(missing)}"
        ))

    outside = sorted(n for n in present if n < first_question_num or n > last)
    if outside:
        issues.append(ValidationIssue(
            booklet, IssueKind.UNEXPECTED,
            f"questions outside {first_question_num}-{last}: {_format_nums(outside)}",
        ))

    return issues


def build_retry_feedback(issues: Sequence[ValidationIssue]) -> str:
    """One "- detail" line per issue, for the retry turn."""
    return "\n".join(f"- {issue.detail}" for issue in issues)
