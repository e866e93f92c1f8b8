from __future__ import annotations

import pytest

from codereviewer.review.models import ModelFinding
from codereviewer.review.parser import ParseFailure
from codereviewer.review.parser import coerce_line
from codereviewer.review.parser import extract_brace_span
from codereviewer.review.parser import extract_fenced_json
from codereviewer.review.parser import parse_model_response
from codereviewer.review.parser import parse_whole_text

WELL_FORMED = '{"comments":[{"line":5,"comment":"x"}]}'


@pytest.mark.parametrize(
    "raw",
    [
        WELL_FORMED,
        f"```json\n{WELL_FORMED}\n```",
        f"```\n{WELL_FORMED}\n```",
    ],
)
def test_parse_well_formed_variants(raw: str) -> None:
    assert parse_model_response(raw) == [ModelFinding(line=5, comment="x")]


def test_parse_fenced_with_prose_and_empty_comments() -> None:
    raw = "Sure! Here's my review:\n```json\n{\"comments\":[]}\n```\nLet me know!"
    failures: list[ParseFailure] = []
    assert parse_model_response(raw, failures=failures) == []
    assert failures == []


def test_parse_unparsable_text_is_empty_and_recorded() -> None:
    failures: list[ParseFailure] = []
    assert parse_model_response("I could not find any issues, great job!", failures=failures) == []
    assert len(failures) == 1
    assert failures[0].raw_text == "I could not find any issues, great job!"


def test_parse_object_without_comments_array() -> None:
    failures: list[ParseFailure] = []
    assert parse_model_response('{"issues": []}', failures=failures) == []
    assert "comments" in failures[0].reason


def test_parse_empty_response() -> None:
    assert parse_model_response("") == []
    assert parse_model_response(None) == []


def test_parse_prose_around_bare_json() -> None:
    raw = 'Review follows {"comments": [{"line": 3, "comment": "Off by one"}]} thanks'
    assert parse_model_response(raw) == [ModelFinding(line=3, comment="Off by one")]


def test_parse_drops_bad_elements_individually() -> None:
    raw = (
        '{"comments": ['
        '{"line": 1, "comment": "ok"},'
        '{"line": 2},'
        '{"line": 0, "comment": "zero"},'
        '{"comment": "no line"},'
        '{"line": "7", "comment": "string line"},'
        '{"line": true, "comment": "bool line"},'
        '"not an object",'
        '{"line": 4.0, "comment": "float line"}'
        "]}"
    )
    assert parse_model_response(raw) == [
        ModelFinding(line=1, comment="ok"),
        ModelFinding(line=7, comment="string line"),
        ModelFinding(line=4, comment="float line"),
    ]


def test_parse_keeps_duplicates_in_order() -> None:
    raw = '{"comments": [{"line": 2, "comment": "a"}, {"line": 2, "comment": "a"}]}'
    assert [f.line for f in parse_model_response(raw)] == [2, 2]


def test_extract_fenced_json_skips_non_json_blocks() -> None:
    text = "```python\nprint('{')\n```\n```json\n{\"comments\": []}\n```"
    assert extract_fenced_json(text) == {"comments": []}


def test_extract_fenced_json_none_without_fence() -> None:
    assert extract_fenced_json(WELL_FORMED) is None


def test_extract_brace_span_skips_unbalanced_prefix() -> None:
    text = 'see {broken and then {"comments": []} end'
    assert extract_brace_span(text) == {"comments": []}


def test_extract_brace_span_none_without_object() -> None:
    assert extract_brace_span("no braces here") is None


def test_parse_whole_text() -> None:
    assert parse_whole_text("  [1, 2]  ") == [1, 2]
    assert parse_whole_text("nope") is None


@pytest.mark.parametrize(
    ("value", "expected"),
    [(5, 5), ("12", 12), (" 3 ", 3), (2.0, 2), (2.5, None), (-1, None), (0, None), (False, None), (None, None)],
)
def test_coerce_line(value: object, expected: int | None) -> None:
    assert coerce_line(value) == expected
