"""Tests for oracle JSON recovery."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from wayfinder.core.llm_json import extract_json_candidate, parse_llm_json, parse_llm_object


class TestParseLlmJson:
    def test_plain_object(self):
        assert parse_llm_json('{"next": "coder"}') == {"next": "coder"}

    def test_markdown_fence(self):
        raw = 'Here you go:\n```json\n{"next": "verifier", "reason": "tests"}\n```'
        assert parse_llm_json(raw) == {"next": "verifier", "reason": "tests"}

    def test_prose_around_object(self):
        raw = 'Sure! {"next": "coder", "reason": "x"} hope it helps'
        assert parse_llm_json(raw) == {"next": "coder", "reason": "x"}

    def test_trailing_commas(self):
        assert parse_llm_json('{"a": 1, "b": [1, 2,],}') == {"a": 1, "b": [1, 2]}

    def test_single_quotes(self):
        assert parse_llm_json("{'next': 'done', 'ok': true}") == {"next": "done", "ok": True}

    def test_truncation_marker_lines_dropped(self):
        raw = '{\n  "next": "coder",\n  ...\n  "reason": "x"\n}'
        assert parse_llm_json(raw) == {"next": "coder", "reason": "x"}

    def test_valid_json_skips_repair(self):
        with patch("wayfinder.core.llm_json.json_repair.loads") as repair:
            assert parse_llm_json('{"next": "coder"}') == {"next": "coder"}
        repair.assert_not_called()

    def test_unquoted_keys(self):
        assert parse_llm_json('{next: "coder"}') == {"next": "coder"}

    def test_truncated_object_is_closed(self):
        assert parse_llm_json('{"next": "coder", "reason": "missing') == {"next": "coder", "reason": "missing"}

    @pytest.mark.parametrize("raw", [None, "", "   ", "no json here"])
    def test_unrecoverable(self, raw):
        assert parse_llm_json(raw) is None


class TestHelpers:
    def test_largest_block_wins(self):
        raw = 'small {"a": 1} and bigger {"b": {"c": 2}}'
        assert extract_json_candidate(raw) == '{"b": {"c": 2}}'

    def test_object_only(self):
        assert parse_llm_object("[1, 2]") is None
        assert parse_llm_object('{"x": 1}') == {"x": 1}
