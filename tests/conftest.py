"""Shared pytest fixtures for bookmark curator tests."""

from __future__ import annotations

import asyncio
import json
import re
from typing import TYPE_CHECKING

import pytest

from bookmark_curator.models import AiConfig, AiConfigGroup, Bookmark, Folder
from bookmark_curator.providers import GenerationResult, GenerativeModel
from bookmark_curator.settings_store import AiSettings, InMemoryConfigRepository
from bookmark_curator.transport import run_cancellable

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from bookmark_curator.models import BookmarkNode
    from bookmark_curator.providers import GenerationOptions

_PROMPT_ID_RE = re.compile(r'ID: "([^"]+)"')


def prompt_ids(prompt: str) -> list[str]:
    """Bookmark ids echoed in a batch prompt, in prompt order."""
    return _PROMPT_ID_RE.findall(prompt)


class ScriptedModel(GenerativeModel):
    """Provider double answering each prompt through a responder function."""

    def __init__(
        self,
        config: AiConfig,
        responder: Callable[[str], str],
        *,
        hang: bool = False,
    ) -> None:
        super().__init__(config)
        self._responder = responder
        self._hang = hang
        self.prompts: list[str] = []

    async def _generate(self, prompt: str, options: GenerationOptions) -> GenerationResult:
        self.prompts.append(prompt)
        if self._hang:
            await run_cancellable(asyncio.Event().wait(), options.cancel_token)
        await asyncio.sleep(0)
        return GenerationResult(text=self._responder(prompt))


def categorise_as(category: str, confidence: float = 0.9) -> Callable[[str], str]:
    """Responder returning a fenced JSON array placing every prompted bookmark in ``category``."""

    def _respond(prompt: str) -> str:
        entries = [
            {
                "bookmarkId": bookmark_id,
                "suggestedCategory": category,
                "confidence": confidence,
                "reasoning": "test",
                "tags": ["Tag"],
            }
            for bookmark_id in prompt_ids(prompt)
        ]
        return f"```json\n{json.dumps(entries)}\n```"

    return _respond


@pytest.fixture
def sample_export_html(tmp_path: Path) -> Path:
    """Create a synthetic bookmark export with a nested folder."""
    content = (
        "<!DOCTYPE NETSCAPE-Bookmark-file-1>\n"
        "<TITLE>Bookmarks</TITLE><H1>Bookmarks</H1>\n"
        "<DL><p>\n"
        '    <DT><H3 ADD_DATE="1700000000" LAST_MODIFIED="1700000100">Tech</H3>\n'
        "    <DL><p>\n"
        '        <DT><A HREF="https://docs.python.org/3/" ADD_DATE="1700000001"'
        ' TAGS="python,docs">Python Docs</A>\n'
        "        <DT><H3>Empty</H3>\n"
        "        <DL><p>\n"
        "        </DL><p>\n"
        "    </DL><p>\n"
        '    <DT><A HREF="https://example.com" ICON="data:image/png;base64,AAA">Example</A>\n'
        '    <DT><A HREF="https://example.org">Example &amp; Org</A>\n'
        "</DL><p>\n"
    )
    p = tmp_path / "sample.html"
    p.write_text(content, encoding="utf-8")
    return p


@pytest.fixture
def sample_tree() -> list[BookmarkNode]:
    """Tree with bookmarks at the root and in two folders."""
    return [
        Folder(
            id="f-tech",
            name="Tech",
            children=[
                Bookmark(id="b1", title="Python docs", url="https://docs.python.org/3/"),
                Folder(
                    id="f-ai",
                    name="AI",
                    children=[Bookmark(id="b2", title="LLM notes", url="https://llm.example/x")],
                ),
            ],
        ),
        Folder(
            id="f-news",
            name="News",
            children=[Bookmark(id="b3", title="Daily", url="https://news.example/today")],
        ),
        Bookmark(id="b4", title="Recipes", url="https://food.example/cake"),
        Bookmark(id="b5", title="Python docs copy", url="https://docs.python.org/3/"),
    ]


def make_config(name: str, provider: str = "openai", **extra: object) -> AiConfig:
    fields: dict[str, object] = {
        "name": name,
        "provider": provider,
        "model_id": f"{name}-model",
        "api_key": "k",
        **extra,
    }
    return AiConfig(**fields)


@pytest.fixture
def two_lane_settings() -> AiSettings:
    """Settings with two configs joined in an active group."""
    settings = AiSettings()
    first = settings.add_config(make_config("alpha"))
    second = settings.add_config(make_config("beta", provider="anthropic"))
    group = settings.add_group(AiConfigGroup(name="lanes", ai_config_ids=[first.id, second.id]))
    settings.set_active_group(group.id)
    return settings


@pytest.fixture
def two_lane_repository(two_lane_settings: AiSettings) -> InMemoryConfigRepository:
    return InMemoryConfigRepository(two_lane_settings)
