"""
Tests for utils.response_sanitizer

Test Coverage:
- sanitize_response(): line breaks inside strings only
- parse_oracle_json(): code fences, prose around JSON, failures
- flatten_lines(), excerpt()
"""
import json

import pytest

from utils.response_sanitizer import (
    ResponseParseError,
    excerpt,
    flatten_lines,
    parse_oracle_json,
    sanitize_response,
    strip_code_fence,
)


class TestSanitizeResponse:
    def test_sanitize_when_newline_inside_string_then_replaced_by_separator(self):
        """Raw newlines inside a value become " | " and the JSON parses."""
        raw = '{"value": "(a) 3/4 x 12 = 9\n(b) 9 + 6 = 15"}'
        cleaned = sanitize_response(raw)
        assert json.loads(cleaned) == {"value": "(a) 3/4 x 12 = 9 | (b) 9 + 6 = 15"}

    def test_sanitize_when_newlines_between_tokens_then_untouched(self):
        """Formatting whitespace outside strings is preserved byte for byte."""
        raw = '{\n  "a": 1,\n  "b": [1, 2]\n}'
        assert sanitize_response(raw) == raw

    def test_sanitize_when_crlf_inside_string_then_single_separator(self):
        """CRLF counts as one line break."""
        raw = '{"v": "x\r\ny\rz"}'
        assert json.loads(sanitize_response(raw)) == {"v": "x | y | z"}

    def test_sanitize_when_escaped_quote_then_string_state_kept(self):
        """An escaped quote does not end the string."""
        raw = '{"v": "say \\"hi\\"\nthere"}'
        assert json.loads(sanitize_response(raw)) == {"v": 'say "hi" | there'}

    def test_sanitize_when_escape_sequence_then_unchanged(self):
        """Valid escapes like \\n are left for the JSON parser."""
        raw = '{"v": "a\\nb"}'
        assert sanitize_response(raw) == raw

    def test_sanitize_when_custom_separator_then_used(self):
        assert json.loads(sanitize_response('["a\nb"]', separator="; ")) == ["a; b"]

    def test_sanitize_round_trip_when_values_have_breaks_then_equal_flattened(self):
        """Serialized values with raw breaks decode to the flattened originals."""
        values = {"1": "B", "2": "line one\nline two", "3": "x\ny\nz"}
        raw = json.dumps(values).replace("\\n", "\n")
        decoded = json.loads(sanitize_response(raw))
        assert decoded == {k: v.replace("\n", " | ") for k, v in values.items()}

    def test_sanitize_when_backslash_before_raw_newline_then_backslash_dropped(self):
        """A dangling backslash before a line break is removed; layout outside strings is kept."""
        raw = '{\n  "v": "a\\\nb"\n}'
        cleaned = sanitize_response(raw)
        assert cleaned == '{\n  "v": "a | b"\n}'
        assert json.loads(cleaned) == {"v": "a | b"}


class TestParseOracleJson:
    def test_parse_when_fenced_then_fence_removed(self):
        assert parse_oracle_json('```json\n{"a": 1}\n```') == {"a": 1}

    def test_parse_when_prose_around_json_then_block_extracted(self):
        text = 'Here is the result:\n{"pages": [{"pageIndex": 0}]}\nHope this helps!'
        assert parse_oracle_json(text) == {"pages": [{"pageIndex": 0}]}

    def test_parse_when_brace_inside_string_then_block_still_balanced(self):
        text = 'Result: {"v": "a } b"} trailing'
        assert parse_oracle_json(text) == {"v": "a } b"}

    def test_parse_when_prose_echoes_page_label_then_later_block_used(self):
        """A bracketed label in the prose is skipped in favour of the JSON after it."""
        assert parse_oracle_json('Questions on [Page 3]:\n{"pages": []}') == {"pages": []}

    def test_parse_when_no_block_parses_then_raises(self):
        with pytest.raises(ResponseParseError):
            parse_oracle_json("See [Page 3] and {Page 4}")

    def test_parse_when_empty_then_raises(self):
        with pytest.raises(ResponseParseError, match="Empty"):
            parse_oracle_json("   ")

    def test_parse_when_garbage_then_raises_with_raw(self):
        with pytest.raises(ResponseParseError) as exc_info:
            parse_oracle_json("not json at all")
        assert exc_info.value.raw == "not json at all"


class TestHelpers:
    def test_strip_code_fence_when_plain_then_unchanged(self):
        assert strip_code_fence(' {"a": 1} ') == '{"a": 1}'

    def test_flatten_lines_when_blank_lines_then_skipped(self):
        assert flatten_lines("a\n\n  b  \r\nc") == "a | b | c"

    def test_flatten_lines_when_single_line_then_unchanged(self):
        assert flatten_lines("  B ") == "  B "

    def test_excerpt_when_long_then_truncated(self):
        assert excerpt("word " * 100, 20) == "word word word word ..."
        assert len(excerpt("x" * 50, 10)) == 13

    def test_excerpt_when_multiline_then_single_line(self):
        assert excerpt("a\n  b\tc", 100) == "a b c"
