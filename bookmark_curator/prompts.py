"""Prompt text sent to the language model."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from .config import CATEGORY_DELIMITER

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Sequence

    from .models import Bookmark

CONNECTION_TEST_PROMPT = (
    "Hello! Please respond with just the word 'OK' to confirm the connection is working."
)

_EXAMPLE_RESPONSE = [
    {
        "bookmarkId": "xyz-123",
        "suggestedCategory": f"Technology{CATEGORY_DELIMITER}AI",
        "confidence": 0.95,
        "reasoning": (
            "The bookmark discusses large language models, which fits the existing AI category."
        ),
        "tags": ["ai", "llm", "research"],
    },
    {
        "bookmarkId": "abc-456",
        "suggestedCategory": f"Personal{CATEGORY_DELIMITER}Recipes{CATEGORY_DELIMITER}Desserts",
        "confidence": 0.88,
        "reasoning": "A cake recipe; a new 'Desserts' subfolder under 'Recipes' is appropriate.",
        "tags": ["baking", "recipes", "dessert"],
    },
]


def build_batch_organize_prompt(
    bookmarks: Sequence[Bookmark],
    existing_folder_structure: str,
    max_depth: int,
    *,
    create_hierarchy: bool,
    generate_tags: bool,
) -> str:
    """Build the prompt for categorising one batch of bookmarks.

    Every bookmark id is echoed verbatim because the response parser matches
    suggestions back to bookmarks by id. The existing folder structure is included
    so the model reuses folders instead of minting near-synonyms.
    """
    if create_hierarchy:
        hierarchy_instruction = (
            f'Create hierarchical category structures using "{CATEGORY_DELIMITER}" as a '
            f'separator (e.g., "Work{CATEGORY_DELIMITER}Projects{CATEGORY_DELIMITER}Q3"). '
            f"Maximum depth is {max_depth} levels."
        )
    else:
        hierarchy_instruction = "Suggest a single, relevant category name for each bookmark."

    tag_instruction = (
        "Also suggest 2-4 relevant, lowercase tags for each bookmark."
        if generate_tags
        else "Do not suggest tags; return an empty tags array."
    )

    bookmark_lines = "\n".join(
        f'{position}. ID: "{bookmark.id}" | Title: "{bookmark.title}" | URL: "{bookmark.url}"'
        for position, bookmark in enumerate(bookmarks, start=1)
    )
    count = len(bookmarks)
    example = json.dumps(_EXAMPLE_RESPONSE, indent=2)

    return f"""You are an expert AI bookmark organizer. Your task is to analyze a batch of bookmarks and categorize them logically.

**EXISTING FOLDER STRUCTURE:**
You are given the following folder structure that already exists. Your primary goal is to use these folders.
{existing_folder_structure}

**INSTRUCTIONS:**
1. Analyze the {count} bookmarks provided below.
2. For EACH bookmark, decide the most appropriate folder for it.
3. **PRIORITIZE USING EXISTING FOLDERS.** If a bookmark clearly fits into an existing folder, use that exact folder path.
4. Only create a NEW folder if there is no suitable existing option. Be consistent; avoid creating folders with similar meanings (e.g., if "AI" exists, don't create "Artificial Intelligence").
5. {hierarchy_instruction}
6. {tag_instruction}

**BOOKMARKS TO ORGANIZE:**
{bookmark_lines}

**RESPONSE FORMAT:**
You MUST return a valid JSON array, with one object per bookmark. Each object must contain:
- "bookmarkId": The original ID of the bookmark.
- "suggestedCategory": The full path of the suggested folder (e.g., "Technology{CATEGORY_DELIMITER}AI").
- "confidence": A score from 0.0 to 1.0 indicating your confidence.
- "reasoning": A brief explanation for your choice.
- "tags": An array of suggested tags (or an empty array if not requested).

**EXAMPLE RESPONSE:**
{example}

IMPORTANT:
- Return a valid JSON array with EXACTLY {count} items.
- Ensure the 'bookmarkId' matches the ID from the input list.
- Be consistent and logical in your categorization.
"""


def build_category_prompt(bookmark: Bookmark, existing_categories: Sequence[str]) -> str:
    """Prompt asking for a single category for one bookmark."""
    categories = ", ".join(existing_categories) if existing_categories else "(none yet)"
    return f"""You are an expert bookmark organizer. Your task is to suggest the best category for a new bookmark.

Analyze the bookmark's title and URL.
Bookmark Title: "{bookmark.title}"
Bookmark URL: "{bookmark.url}"

Here is a list of existing categories:
{categories}

Based on the bookmark's content, choose the most relevant category from the existing list.
If none of the existing categories are a good fit, suggest a concise and appropriate new category name.

Your response MUST be a single category name. Do not add any explanation or punctuation.
"""


def build_tags_prompt(bookmark: Bookmark) -> str:
    """Prompt asking for a comma-separated tag list for one bookmark."""
    return f"""You are an expert at analyzing web bookmarks. Your task is to suggest relevant tags for a bookmark.

Analyze the bookmark's title and URL to suggest 2-4 relevant tags.
Bookmark Title: "{bookmark.title}"
Bookmark URL: "{bookmark.url}"

Suggest tags that would help organize and find this bookmark later. Tags should be lowercase, single words or short phrases.

Return only a comma-separated list of tags, no explanations or punctuation beyond commas.
Example: technology, programming, tutorial
"""
