"""Tolerant parsing of model replies into organisation suggestions.

Model output is not a validated machine interface, so parsing runs in two tiers:
strict JSON extraction first (optionally from inside a fenced code block), then a
regex rescue for a lone single-object reply. Each entry is validated on its own
and checked against the ids of the batch that produced it.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from pydantic import ValidationError

from .errors import ErrorCode, ProviderError
from .models import LLMSuggestionEntryModel, join_category, split_category

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Sequence

    from .models import OrganizationSuggestion

LOGGER = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```[a-zA-Z]*\s*(.*?)```", re.DOTALL)
_ID_RE = re.compile(r"""["']?bookmark_?id["']?\s*:\s*["']([^"']+)["']""", re.IGNORECASE)
_CATEGORY_RE = re.compile(
    r"""["']?(?:suggested_?category|category)["']?\s*:\s*["']([^"']+)["']""", re.IGNORECASE,
)
_CONFIDENCE_RE = re.compile(r"""["']?confidence["']?\s*:\s*(-?[0-9]*\.?[0-9]+)""", re.IGNORECASE)
_REASONING_RE = re.compile(r'["\']?reasoning["\']?\s*:\s*"([^"]*)"', re.IGNORECASE)

RESCUE_CONFIDENCE = 0.5
RESCUE_REASONING = "Parsed from AI response"


@dataclass(slots=True)
class ParsedBatch:
    """Outcome of parsing one batch reply."""

    suggestions: list[OrganizationSuggestion] = field(default_factory=list)
    below_threshold: list[OrganizationSuggestion] = field(default_factory=list)
    orphan_ids: list[str] = field(default_factory=list)
    repeated_ids: list[str] = field(default_factory=list)
    invalid_entries: int = 0
    rescued: bool = False


def strip_code_fences(text: str) -> str:
    """Return the body of the first fenced code block, or the stripped text."""
    match = _FENCE_RE.search(text)
    return match.group(1).strip() if match else text.strip()


def extract_json_payload(text: str) -> object:
    """Strict tier: decode the JSON array (or object) embedded in ``text``."""
    body = strip_code_fences(text)
    candidates = [body]
    for opener, closer in (("[", "]"), ("{", "}")):
        start, end = body.find(opener), body.rfind(closer)
        if start != -1 and end > start:
            candidates.append(body[start : end + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    msg = "No JSON array found in model response"
    raise ProviderError(ErrorCode.PARSE_ERROR, msg)


def rescue_single_entry(text: str) -> dict[str, object] | None:
    """Best-effort tier: pull one suggestion's fields out of malformed text."""
    category = _CATEGORY_RE.search(text)
    if category is None:
        return None
    entry: dict[str, object] = {"suggestedCategory": category.group(1)}

    bookmark_id = _ID_RE.search(text)
    if bookmark_id is not None:
        entry["bookmarkId"] = bookmark_id.group(1)
    confidence = _CONFIDENCE_RE.search(text)
    entry["confidence"] = float(confidence.group(1)) if confidence else RESCUE_CONFIDENCE
    reasoning = _REASONING_RE.search(text)
    entry["reasoning"] = reasoning.group(1) if reasoning else RESCUE_REASONING
    entry["tags"] = []
    return entry


def normalise_category(category: str, max_depth: int | None) -> str:
    """Canonicalise separators and cap the depth of a category path."""
    parts = split_category(category)
    if max_depth is not None and len(parts) > max_depth:
        parts = parts[:max_depth]
    return join_category(parts)


def _raw_entries(text: str, batch_ids: Sequence[str]) -> tuple[list[object], bool]:
    try:
        payload = extract_json_payload(text)
    except ProviderError:
        rescued = rescue_single_entry(text)
        if rescued is None:
            raise
        if "bookmarkId" not in rescued and len(batch_ids) == 1:
            rescued["bookmarkId"] = batch_ids[0]
        return [rescued], True

    if isinstance(payload, list):
        return payload, False
    if isinstance(payload, dict):
        return [payload], False
    msg = "Model response JSON is neither an array nor an object"
    raise ProviderError(ErrorCode.PARSE_ERROR, msg)


def parse_batch_response(
    text: str,
    batch_ids: Sequence[str],
    confidence_threshold: float,
    max_depth: int | None = None,
) -> ParsedBatch:
    """Parse a reply for one batch into validated suggestions.

    Entries are walked in response order. Entries referencing an id outside the
    batch are reported as orphans, repeats of an already accepted id are reported
    separately, and suggestions under ``confidence_threshold`` are set aside.

    Raises ProviderError(PARSE_ERROR) when neither tier finds anything usable.
    """
    entries, rescued = _raw_entries(text, batch_ids)
    result = ParsedBatch(rescued=rescued)
    wanted = set(batch_ids)
    seen: set[str] = set()

    for raw in entries:
        if not isinstance(raw, dict):
            result.invalid_entries += 1
            continue
        try:
            entry = LLMSuggestionEntryModel.model_validate(raw)
        except ValidationError as exc:
            LOGGER.debug("Skipping invalid suggestion entry %r: %s", raw, exc)
            result.invalid_entries += 1
            continue

        if entry.bookmark_id not in wanted:
            result.orphan_ids.append(entry.bookmark_id)
            continue
        if entry.bookmark_id in seen:
            result.repeated_ids.append(entry.bookmark_id)
            continue

        category = normalise_category(entry.suggested_category, max_depth)
        if not category:
            result.invalid_entries += 1
            continue
        seen.add(entry.bookmark_id)
        suggestion = entry.model_copy(update={"suggested_category": category}).to_suggestion()
        if suggestion.confidence < confidence_threshold:
            result.below_threshold.append(suggestion)
        else:
            result.suggestions.append(suggestion)

    return result
