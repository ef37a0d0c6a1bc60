"""Test utilities in transloom.utils.*"""
import pytest

from transloom.utils.llm_output import parse_tool_arguments
from transloom.utils.path_safety import ensure_safe_id, validate_path_within
from transloom.utils.quotes import count_quotes, find_quote_loss
from transloom.utils.text import format_id_list, normalize_for_compare, normalize_newlines


# --- normalize_newlines ---

class TestNormalizeNewlines:
    def test_none_returns_empty(self):
        assert normalize_newlines(None) == ""

    def test_empty_string(self):
        assert normalize_newlines("") == ""

    def test_crlf(self):
        assert normalize_newlines("a\r\nb") == "a\nb"

    def test_cr(self):
        assert normalize_newlines("a\rb") == "a\nb"

    def test_mixed(self):
        assert normalize_newlines("a\r\nb\rc\nd") == "a\nb\nc\nd"


# --- normalize_for_compare ---

class TestNormalizeForCompare:
    def test_strips_trailing(self):
        assert normalize_for_compare("hello\r\n  ") == "hello"

    def test_none(self):
        assert normalize_for_compare(None) == ""


# --- format_id_list ---

class TestFormatIdList:
    def test_within_limit(self):
        assert format_id_list(["a", "b"], 5) == "a, b"

    def test_truncated_with_total(self):
        assert format_id_list(["a", "b", "c"], 2) == "a, b (3 total)"

    def test_empty(self):
        assert format_id_list([], 5) == ""


# --- quotes ---

class TestQuotes:
    def test_counts_per_side(self):
        assert count_quotes("「你好」他说。\"走吧\"") == (2, 2)

    def test_single_quotes_ignored(self):
        assert count_quotes("It's ‘fine’") == (0, 0)

    def test_style_substitution_allowed(self):
        assert find_quote_loss("「走吧」", "“Let's go”") is None

    def test_missing_opening(self):
        loss = find_quote_loss("「走吧」他说。", "Let's go, he said.")
        assert loss.side == "opening"
        assert loss.source_count == 1
        assert loss.translated_count == 0

    def test_missing_closing(self):
        loss = find_quote_loss("「走吧」", "«Let's go")
        assert loss.side == "closing"

    def test_no_quotes_in_source(self):
        assert find_quote_loss("他走了。", "He left.") is None


# --- ensure_safe_id ---

class TestEnsureSafeId:
    def test_simple(self):
        assert ensure_safe_id("ch-0001") == "ch-0001"

    def test_chinese_preserved(self):
        assert ensure_safe_id("第一章") == "第一章"

    @pytest.mark.parametrize("raw", ["", None, "../../etc/passwd", "a/b", "...", "my book"])
    def test_unsafe_rejected(self, raw):
        with pytest.raises(ValueError):
            ensure_safe_id(raw)

    def test_max_length(self):
        with pytest.raises(ValueError):
            ensure_safe_id("a" * 20, max_length=10)


# --- validate_path_within ---

class TestValidatePathWithin:
    def test_valid_child(self, tmp_path):
        child = tmp_path / "sub" / "file.txt"
        child.parent.mkdir(parents=True, exist_ok=True)
        child.touch()
        result = validate_path_within(child, tmp_path)
        assert result == child.resolve()

    def test_traversal_rejected(self, tmp_path):
        evil = tmp_path / ".." / "etc" / "passwd"
        with pytest.raises(ValueError, match="escapes"):
            validate_path_within(evil, tmp_path)


# --- parse_tool_arguments ---

class TestParseToolArguments:
    def test_plain_json(self):
        assert parse_tool_arguments('{"status": "working"}') == ({"status": "working"}, "")

    def test_fenced_json(self):
        assert parse_tool_arguments('```json\n{"status": "end"}\n```') == ({"status": "end"}, "")

    def test_surrounding_prose(self):
        data, code = parse_tool_arguments('Here you go: {"status": "review"} thanks')
        assert data == {"status": "review"}
        assert code == ""

    def test_empty(self):
        assert parse_tool_arguments("") == ({}, "empty_arguments")

    def test_invalid(self):
        assert parse_tool_arguments("[1, 2]") == (None, "invalid_json")
