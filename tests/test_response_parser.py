"""Tests for turning model replies into validated suggestions."""

from __future__ import annotations

import json

import pytest

from bookmark_curator.errors import ErrorCode, ProviderError
from bookmark_curator.response_parser import (
    RESCUE_CONFIDENCE,
    extract_json_payload,
    normalise_category,
    parse_batch_response,
)

BATCH = ["b1", "b2", "b3"]


def _entry(bid: str, category: str = "Tech > Python", confidence: object = 0.9) -> dict:
    return {
        "bookmarkId": bid,
        "suggestedCategory": category,
        "confidence": confidence,
        "reasoning": "fits",
        "tags": ["python"],
    }


def test_fenced_array_keeps_order() -> None:
    text = "Here you go:\n```json\n" + json.dumps([_entry(b) for b in BATCH]) + "\n```\nThanks"
    result = parse_batch_response(text, BATCH, 0.5)
    got = [s.bookmark_id for s in result.suggestions]
    if got != BATCH:
        msg = f"Expected all entries in order, got {got}"
        raise AssertionError(msg)
    if result.orphan_ids or result.invalid_entries or result.rescued:
        raise AssertionError("Clean reply should report no problems")


def test_orphan_and_repeated_ids_are_reported() -> None:
    payload = [_entry("b1"), _entry("zz"), _entry("b1", "Other"), _entry("b2")]
    result = parse_batch_response(json.dumps(payload), BATCH, 0.5)
    if [s.bookmark_id for s in result.suggestions] != ["b1", "b2"]:
        raise AssertionError("Only in-batch, first-seen entries are kept")
    if result.orphan_ids != ["zz"] or result.repeated_ids != ["b1"]:
        msg = f"Unexpected bookkeeping: {result}"
        raise AssertionError(msg)
    if result.suggestions[0].suggested_category != "Tech > Python":
        raise AssertionError("First entry for a repeated id wins")


def test_confidence_is_clamped_and_thresholded() -> None:
    payload = [_entry("b1", confidence=7), _entry("b2", confidence="high"), _entry("b3", confidence=0.4)]
    result = parse_batch_response(json.dumps(payload), BATCH, 0.5)
    kept = {s.bookmark_id: s.confidence for s in result.suggestions}
    if kept != {"b1": 1.0}:
        msg = f"Expected clamped b1 only, got {kept}"
        raise AssertionError(msg)
    dropped = sorted(s.bookmark_id for s in result.below_threshold)
    if dropped != ["b2", "b3"]:
        msg = f"Low/invalid confidence should be set aside, got {dropped}"
        raise AssertionError(msg)


def test_category_depth_and_separators_normalised() -> None:
    payload = [_entry("b1", " A > B >  C > D > E")]
    result = parse_batch_response(json.dumps(payload), BATCH, 0.0, max_depth=3)
    if result.suggestions[0].suggested_category != "A > B > C":
        msg = f"Unexpected category: {result.suggestions[0].suggested_category}"
        raise AssertionError(msg)
    if normalise_category("  Solo ", None) != "Solo":
        raise AssertionError("Single segment should be trimmed")


def test_invalid_entries_counted() -> None:
    payload = ["nope", {"bookmarkId": "b1"}, {"bookmarkId": "b2", "suggestedCategory": " > "}]
    result = parse_batch_response(json.dumps(payload), BATCH, 0.0)
    if result.suggestions or result.invalid_entries != 3:
        msg = f"All three entries are unusable: {result}"
        raise AssertionError(msg)


def test_rescue_single_object_from_malformed_text() -> None:
    text = '{"suggestedCategory": "Cooking > Cakes", "reasoning": "recipe", trailing garbage'
    result = parse_batch_response(text, ["only"], 0.0)
    if not result.rescued or len(result.suggestions) != 1:
        msg = f"Expected one rescued suggestion, got {result}"
        raise AssertionError(msg)
    suggestion = result.suggestions[0]
    if suggestion.bookmark_id != "only" or suggestion.confidence != RESCUE_CONFIDENCE:
        msg = f"Rescued entry defaults not applied: {suggestion}"
        raise AssertionError(msg)
    if suggestion.suggested_category != "Cooking > Cakes" or suggestion.reasoning != "recipe":
        raise AssertionError("Rescued fields not extracted")


def test_unusable_reply_raises_parse_error() -> None:
    with pytest.raises(ProviderError) as excinfo:
        parse_batch_response("I cannot help with that.", BATCH, 0.5)
    if excinfo.value.code is not ErrorCode.PARSE_ERROR:
        raise AssertionError("Unparseable replies are PARSE_ERROR")
    with pytest.raises(ProviderError):
        extract_json_payload("")
