"""
Tests for pipeline.reextract
"""
import pytest

from conftest import ScriptedOracle, make_page_image
from pipeline.errors import ReextractionError
from pipeline.models import ImageAnswer, TextAnswer
from pipeline.reextract import display_number, redo_answer, redo_question, validate_crop
from utils.oracle import OracleError


def oracle_returning(text):
    return ScriptedOracle({}, fallback=lambda call: text)


class TestRedoQuestion:
    def test_redo_question_when_valid_then_question_band(self):
        oracle = oracle_returning('{"questionNum": "12", "yStartPct": 15, "yEndPct": 45}')
        question = redo_question(oracle, make_page_image(), "12", ["11", "13"], page_index=4)

        assert (question.question_num, question.y_start_pct, question.y_end_pct) == ("12", 15.0, 45.0)
        call = oracle.calls[0]
        assert call.labels == ["[Page 4]"]
        assert "Other questions on this page: 11, 13" in call.instruction

    def test_redo_question_when_inverted_band_then_raises(self):
        oracle = oracle_returning('{"questionNum": "3", "yStartPct": 50, "yEndPct": 20}')
        with pytest.raises(ReextractionError, match="invalid band"):
            redo_question(oracle, make_page_image(), "3")

    def test_redo_question_when_unparsable_then_raises(self):
        with pytest.raises(ReextractionError):
            redo_question(oracle_returning("no idea"), make_page_image(), "3")

    def test_redo_question_when_oracle_fails_then_raises(self):
        def fail(call):
            raise OracleError("down")

        oracle = ScriptedOracle({}, fallback=fail)
        with pytest.raises(ReextractionError, match="down"):
            redo_question(oracle, make_page_image(), "3")


class TestRedoAnswer:
    def test_redo_answer_when_image_then_page_index_from_caller(self):
        oracle = oracle_returning('{"type": "image", "yStartPct": 10, "yEndPct": 35, "value": "9\\n15"}')
        answer = redo_answer(oracle, make_page_image(), "29", "Paper 2", page_index=17)

        assert answer == ImageAnswer(page_index=17, y_start_pct=10, y_end_pct=35, value="9 | 15")
        assert 'This answer key page is for "Paper 2"' in oracle.calls[0].instruction

    def test_redo_answer_when_not_found_then_empty_text(self):
        answer = redo_answer(oracle_returning('{"type": "text", "value": ""}'), make_page_image(), "29")
        assert answer == TextAnswer("")

    def test_redo_answer_when_image_without_band_then_text(self):
        answer = redo_answer(oracle_returning('{"type": "image", "value": "B"}'), make_page_image(), "2")
        assert answer == TextAnswer("B")


class TestValidateCrop:
    def test_validate_crop_when_valid_then_check_returned(self):
        oracle = oracle_returning('{"valid": false, "reason": "shows question 6"}')
        check = validate_crop(oracle, make_page_image(), "P2-5")

        assert check.valid is False
        assert check.reason == "shows question 6"
        assert 'question number "5"' in oracle.calls[0].instruction

    def test_validate_crop_when_unparsable_then_raises(self):
        with pytest.raises(ReextractionError):
            validate_crop(oracle_returning("[]"), make_page_image(), "5")


@pytest.mark.parametrize("num,expected", [
    ("5", "5"),
    ("P2-5", "5"),
    ("B2-12", "12"),
    ("12b", "12(b)"),
])
def test_display_number(num, expected):
    assert display_number(num) == expected
