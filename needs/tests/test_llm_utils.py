"""Tests for shared LLM response parsing utilities."""

import math

from needs.common.llm_utils import clamp01, coerce_str_list, parse_llm_json


class TestParseLlmJson:
    def test_valid_json(self):
        assert parse_llm_json('{"proposed_status": "RED"}') == {"proposed_status": "RED"}

    def test_json_with_markdown_fences(self):
        raw = '```json\n{"proposed_status": "ORANGE", "confidence": 0.8}\n```'
        assert parse_llm_json(raw) == {"proposed_status": "ORANGE", "confidence": 0.8}

    def test_json_embedded_in_text(self):
        raw = 'Here is my assessment: {"proposed_status": "YELLOW"} hope it helps.'
        assert parse_llm_json(raw) == {"proposed_status": "YELLOW"}

    def test_no_json_returns_empty_dict(self):
        assert parse_llm_json("The need looks critical.") == {}

    def test_empty_string_returns_empty_dict(self):
        assert parse_llm_json("") == {}

    def test_non_object_json_returns_empty_dict(self):
        assert parse_llm_json("[1, 2, 3]") == {}

    def test_invalid_json_with_braces_returns_empty(self):
        assert parse_llm_json('{"broken: json') == {}


class TestClamp01:
    def test_in_range_value_kept(self):
        assert clamp01(0.42) == 0.42

    def test_out_of_range_clamped(self):
        assert clamp01(1.7) == 1.0
        assert clamp01(-3) == 0.0

    def test_garbage_becomes_zero(self):
        assert clamp01(None) == 0.0
        assert clamp01("high") == 0.0
        assert clamp01(math.nan) == 0.0

    def test_numeric_string_parsed(self):
        assert clamp01("0.5") == 0.5


class TestCoerceStrList:
    def test_drops_empty_items_and_caps(self):
        assert coerce_str_list(["a", "", None, "b", "c"], limit=2) == ["a", "b"]

    def test_non_list_is_empty(self):
        assert coerce_str_list("a quote") == []
