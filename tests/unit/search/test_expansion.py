"""Tests for query expansion."""

from __future__ import annotations

from fakes import FakeCompleter

from noteindex.search.expansion import MAX_TERMS, expand_query, parse_terms


def test_parse_json_array():
    assert parse_terms('["budget", "forecast", "spending"]') == ["budget", "forecast", "spending"]


def test_parse_fenced_json():
    assert parse_terms('```json\n["budget", "costs"]\n```') == ["budget", "costs"]


def test_parse_line_list_fallback():
    text = "1. budget\n2) forecast\n- \"spending plan\"\n* costs\n\n"
    assert parse_terms(text) == ["budget", "forecast", "spending plan", "costs"]


def test_dedupes_case_insensitively():
    assert parse_terms('["Budget", "budget", " BUDGET ", "costs"]') == ["Budget", "costs"]


def test_caps_terms():
    terms = parse_terms(str([f"term{i}" for i in range(12)]).replace("'", '"'))
    assert len(terms) == MAX_TERMS
    assert terms[0] == "term0"


def test_non_string_items_are_dropped():
    assert parse_terms('["budget", 3, null, {"x": 1}]') == ["budget"]


def test_non_list_json_yields_nothing():
    assert parse_terms('{"terms": ["budget"]}') == []


def test_expand_query_uses_provider():
    completer = FakeCompleter(reply='["approval", "sign-off"]')
    assert expand_query(completer, "who approved the report") == ["approval", "sign-off"]
    assert "who approved the report" in completer.prompts[0]


def test_expand_query_failure_returns_empty():
    assert expand_query(FakeCompleter(fail=True), "anything") == []
