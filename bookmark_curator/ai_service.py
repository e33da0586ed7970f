"""One-off model calls: connection checks and single-bookmark suggestions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .errors import CuratorError
from .prompts import CONNECTION_TEST_PROMPT, build_category_prompt, build_tags_prompt
from .providers import GenerationOptions
from .resolver import build_model

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Sequence

    import httpx

    from .models import AiConfig, Bookmark
    from .providers import GenerativeModel
    from .transport import RetryPolicy

LOGGER = logging.getLogger(__name__)

MAX_SUGGESTED_TAGS = 4

_CONNECTION_CHECK_TOKENS = 10
_SINGLE_SUGGESTION_TOKENS = 50
_STRIP_CHARS = " \t\r\n\"'`.*"


@dataclass(slots=True, frozen=True)
class ConnectionCheck:
    """Outcome of probing one AI configuration."""

    success: bool
    message: str


async def check_connection(
    config: AiConfig,
    *,
    http_client: httpx.AsyncClient | None = None,
    policy: RetryPolicy | None = None,
) -> ConnectionCheck:
    """Send a trivial prompt through ``config`` and report whether it answered."""
    model = build_model(config, http_client=http_client, policy=policy)
    try:
        result = await model.generate_content(
            CONNECTION_TEST_PROMPT,
            GenerationOptions(temperature=0.0, max_tokens=_CONNECTION_CHECK_TOKENS),
        )
    except CuratorError as exc:
        LOGGER.warning("Connection test for %s failed: %s", config.name, exc)
        return ConnectionCheck(success=False, message=f"Connection failed: {exc}")
    finally:
        await model.aclose()
    LOGGER.info("Connection test for %s succeeded", config.name)
    return ConnectionCheck(success=True, message=f"Connection successful: {result.text[:50]}")


def _clean_line(text: str) -> str:
    first = next((line for line in text.splitlines() if line.strip()), "")
    return first.strip(_STRIP_CHARS)


async def suggest_category(
    model: GenerativeModel, bookmark: Bookmark, existing_categories: Sequence[str],
) -> str:
    """Ask for a single category for one bookmark; errors propagate as ProviderError."""
    result = await model.generate_content(
        build_category_prompt(bookmark, existing_categories),
        GenerationOptions(temperature=0.2, max_tokens=_SINGLE_SUGGESTION_TOKENS),
    )
    category = _clean_line(result.text)
    LOGGER.debug("Suggested category %r for %s", category, bookmark.url)
    return category


def parse_tag_list(text: str, limit: int = MAX_SUGGESTED_TAGS) -> list[str]:
    """Lowercase, de-duplicated tags from a comma-separated reply."""
    tags: list[str] = []
    for raw in text.replace("\n", ",").split(","):
        tag = raw.strip(_STRIP_CHARS).lower()
        if tag and tag not in tags:
            tags.append(tag)
    return tags[:limit]


async def suggest_tags(model: GenerativeModel, bookmark: Bookmark) -> list[str]:
    """Ask for up to four lowercase tags for one bookmark."""
    result = await model.generate_content(
        build_tags_prompt(bookmark),
        GenerationOptions(temperature=0.3, max_tokens=_SINGLE_SUGGESTION_TOKENS),
    )
    return parse_tag_list(result.text)
