"""
Tests for pipeline.question_extractor

Test Coverage:
- QuestionExtractor.extract(): happy path, gap + retry, retry policy,
  unparsable retries, oracle failures, page remapping, normalization
- normalize_question_num(), RetryPolicy
"""
import json

import pytest

from conftest import ScriptedOracle, question_pages_json
from pipeline.booklet_partitioner import partition_booklets
from pipeline.models import Booklet, ExamHeader, IssueKind, Page, StructureResult
from pipeline.question_extractor import (
    ExtractionState,
    QuestionExtractor,
    RetryPolicy,
    normalize_question_num,
)
from utils.oracle import CancelToken, OracleError


def one_booklet(expected=4, prefix="", pages=3):
    structure = StructureResult(
        header=ExamHeader(title="Test"),
        pages=tuple(Page(index=i) for i in range(pages)),
        booklets=(Booklet("Booklet A", prefix, expected, 0),),
    )
    return structure, partition_booklets(structure)[0]


FULL = question_pages_json({0: [("1", 5, 40), ("2", 40, 90)], 1: [("3", 5, 50), ("4", 50, 95)]})
MISSING_2 = question_pages_json({0: [("1", 5, 90)], 1: [("3", 5, 50), ("4", 50, 95)]})


class TestQuestionExtractor:
    def test_extract_when_valid_first_time_then_single_call(self, page_images):
        structure, plan = one_booklet()
        oracle = ScriptedOracle({"Booklet A": [FULL]})

        outcome = QuestionExtractor(oracle, structure).extract(plan, page_images(3))

        assert outcome.ok
        assert outcome.attempts == 1
        assert outcome.retried is False
        assert outcome.state == ExtractionState.DONE
        assert outcome.question_nums == ["1", "2", "3", "4"]
        assert outcome.found_range == (1, 4)
        assert oracle.calls[0].labels == ["[Page 0]", "[Page 1]", "[Page 2]"]

    def test_extract_when_gap_then_retry_with_feedback_and_prior_response(self, page_images):
        """The retry turn carries the first response and names question 2."""
        structure, plan = one_booklet()
        oracle = ScriptedOracle({"Booklet A": [MISSING_2, FULL]})

        outcome = QuestionExtractor(oracle, structure).extract(plan, page_images(3))

        assert outcome.ok
        assert outcome.attempts == 2
        assert outcome.retried is True
        retry = oracle.calls_for("Booklet A")[1]
        assert retry.instruction == oracle.calls_for("Booklet A")[0].instruction
        assert [t.role for t in retry.history] == ["model", "user"]
        assert retry.history[0].text == MISSING_2
        assert "missing questions: 2" in retry.history[1].text

    def test_extract_when_retry_still_invalid_then_stops_after_policy_limit(self, page_images):
        structure, plan = one_booklet()
        oracle = ScriptedOracle({"Booklet A": [MISSING_2]})

        outcome = QuestionExtractor(oracle, structure).extract(plan, page_images(3))

        assert outcome.attempts == 2
        assert [i.kind for i in outcome.issues] == [IssueKind.GAP]

    def test_extract_when_policy_allows_two_retries_then_history_grows(self, page_images):
        structure, plan = one_booklet()
        oracle = ScriptedOracle({"Booklet A": [MISSING_2, MISSING_2, FULL]})

        outcome = QuestionExtractor(oracle, structure, policy=RetryPolicy(max_retries=2)).extract(plan, page_images(3))

        assert outcome.ok
        assert outcome.attempts == 3
        assert len(oracle.calls[2].history) == 4

    def test_extract_when_no_retries_allowed_then_single_attempt(self, page_images):
        structure, plan = one_booklet()
        oracle = ScriptedOracle({"Booklet A": [MISSING_2, FULL]})

        outcome = QuestionExtractor(oracle, structure, policy=RetryPolicy(max_retries=0)).extract(plan, page_images(3))

        assert outcome.attempts == 1
        assert not outcome.ok

    def test_extract_when_retry_unparsable_then_first_attempt_kept(self, page_images):
        structure, plan = one_booklet()
        oracle = ScriptedOracle({"Booklet A": [MISSING_2, "oops, not json"]})

        outcome = QuestionExtractor(oracle, structure).extract(plan, page_images(3))

        assert outcome.question_nums == ["1", "3", "4"]
        assert [i.kind for i in outcome.issues] == [IssueKind.GAP]

    def test_extract_when_backoff_configured_then_sleeps_between_attempts(self, page_images):
        structure, plan = one_booklet()
        slept = []
        oracle = ScriptedOracle({"Booklet A": [MISSING_2, FULL]})
        extractor = QuestionExtractor(oracle, structure, policy=RetryPolicy(1, 2.5), sleep=slept.append)

        extractor.extract(plan, page_images(3))

        assert slept == [2.5]

    def test_extract_when_schema_mismatch_then_none_found_with_detail(self, page_images):
        structure, plan = one_booklet()
        oracle = ScriptedOracle({"Booklet A": [json.dumps({"items": []})]})

        outcome = QuestionExtractor(oracle, structure, policy=RetryPolicy(0)).extract(plan, page_images(3))

        assert [i.kind for i in outcome.issues] == [IssueKind.NONE_FOUND]
        assert "schema" in outcome.issues[0].detail

    def test_extract_when_oracle_fails_then_outcome_not_exception(self, page_images):
        structure, plan = one_booklet()
        oracle = ScriptedOracle({"Booklet A": [OracleError("quota exceeded")]})

        outcome = QuestionExtractor(oracle, structure).extract(plan, page_images(3))

        assert outcome.attempts == 2
        assert outcome.pages == {}
        assert "quota exceeded" in outcome.issues[0].detail
        assert outcome.error == "quota exceeded"

    def test_extract_when_cancelled_then_no_retry(self, page_images):
        structure, plan = one_booklet()
        token = CancelToken()
        token.cancel()
        oracle = ScriptedOracle({"Booklet A": [FULL]})

        outcome = QuestionExtractor(oracle, structure).extract(plan, page_images(3), cancel=token)

        assert outcome.attempts == 1
        assert outcome.pages == {}

    def test_extract_when_positional_page_indices_then_remapped(self, page_images):
        """Pages numbered 0, 1 by position map back to their labels 5, 6."""
        structure = StructureResult(
            header=ExamHeader(),
            pages=tuple(Page(index=i, is_cover_page=i < 5) for i in range(7)),
            booklets=(Booklet("Booklet A", "", 2, 5),),
        )
        plan = partition_booklets(structure)[0]
        response = question_pages_json({0: [("1", 5, 90)], 1: [("2", 5, 90)]})
        oracle = ScriptedOracle({"Booklet A": [response]})

        outcome = QuestionExtractor(oracle, structure).extract(plan, page_images(7))

        assert sorted(outcome.pages) == [5, 6]
        assert oracle.calls[0].labels == ["[Page 5]", "[Page 6]"]

    def test_extract_when_coordinates_out_of_range_then_clamped_or_dropped(self, page_images):
        """Clamped bands are kept; inverted bands are dropped and show up as a gap."""
        structure, plan = one_booklet(expected=3)
        response = question_pages_json({0: [("2", 60, 30), ("1", -5, 40), ("3", 70, 120)]})
        oracle = ScriptedOracle({"Booklet A": [response]})

        outcome = QuestionExtractor(oracle, structure, policy=RetryPolicy(0)).extract(plan, page_images(3))

        questions = outcome.pages[0]
        assert [q.question_num for q in questions] == ["1", "3"]
        assert (questions[0].y_start_pct, questions[1].y_end_pct) == (0.0, 100.0)
        assert [i.kind for i in outcome.issues] == [IssueKind.GAP]

    def test_extract_when_coordinate_not_finite_then_only_that_question_dropped(self, page_images):
        """A NaN band is dropped like an inverted one; the rest of the page survives."""
        structure, plan = one_booklet(expected=2)
        response = (
            '{"pages": [{"pageIndex": 0, "questions": ['
            '{"questionNum": "1", "yStartPct": 5, "yEndPct": 40},'
            '{"questionNum": "2", "yStartPct": NaN, "yEndPct": 90}]}]}'
        )
        oracle = ScriptedOracle({"Booklet A": [response]})

        outcome = QuestionExtractor(oracle, structure, policy=RetryPolicy(0)).extract(plan, page_images(3))

        assert outcome.question_nums == ["1"]
        assert outcome.error is None
        assert [i.kind for i in outcome.issues] == [IssueKind.GAP]

    def test_extract_when_prefix_missing_then_added(self, page_images):
        structure, plan = one_booklet(expected=2, prefix="P2-")
        response = question_pages_json({0: [("1", 5, 40), ("P2-2", 40, 90)]})
        oracle = ScriptedOracle({"Booklet A": [response]})

        outcome = QuestionExtractor(oracle, structure).extract(plan, page_images(3))

        assert outcome.question_nums == ["P2-1", "P2-2"]
        assert outcome.ok

    def test_extract_when_booklet_has_no_pages_then_none_found_without_call(self, page_images):
        structure = StructureResult(
            header=ExamHeader(),
            pages=(Page(index=0, is_answer_sheet=True),),
            booklets=(Booklet("A", "", 3, 0),),
        )
        plan = partition_booklets(structure)[0]
        oracle = ScriptedOracle({})

        outcome = QuestionExtractor(oracle, structure).extract(plan, page_images(1))

        assert oracle.calls == []
        assert outcome.issues[0].kind == IssueKind.NONE_FOUND


class TestHelpers:
    @pytest.mark.parametrize("raw,prefix,expected", [
        ("5", "", "5"),
        ("Q5.", "", "5"),
        ("5)", "P2-", "P2-5"),
        ("P2-5", "P2-", "P2-5"),
        ("5(a)", "", "5(a)"),
        ("Q12b.", "", "12b"),
    ])
    def test_normalize_question_num(self, raw, prefix, expected):
        assert normalize_question_num(raw, prefix) == expected

    def test_retry_policy_when_negative_then_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_retries=-1)
