"""Read-only views over a bookmark tree and the plan pieces derived from them."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from .models import (
    Bookmark,
    FlatBookmark,
    Folder,
    OrganizationConflict,
    join_category,
    split_category,
)

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterator, Sequence

    from .models import BookmarkNode, OrganizationSuggestion

ROOT_LABEL = "Root"


def iter_bookmarks(
    nodes: Sequence[BookmarkNode], path: tuple[str, ...] = (),
) -> Iterator[FlatBookmark]:
    """Yield every bookmark depth-first, in display order, with its folder path."""
    for node in nodes:
        if isinstance(node, Bookmark):
            yield FlatBookmark(bookmark=node, path=path)
        elif isinstance(node, Folder):
            yield from iter_bookmarks(node.children, (*path, node.name))


def extract_bookmarks(nodes: Sequence[BookmarkNode]) -> list[FlatBookmark]:
    """Flatten the tree into its bookmarks, each tagged with its current location."""
    return list(iter_bookmarks(nodes))


def folder_paths(nodes: Sequence[BookmarkNode], path: tuple[str, ...] = ()) -> list[str]:
    """Every folder path in the tree, parents before children."""
    paths: list[str] = []
    for node in nodes:
        if isinstance(node, Folder):
            current = (*path, node.name)
            paths.append(join_category(current))
            paths.extend(folder_paths(node.children, current))
    return paths


def serialize_folder_structure(nodes: Sequence[BookmarkNode]) -> str:
    """JSON snapshot of the existing folder hierarchy, shared by every batch of a run."""
    return json.dumps(folder_paths(nodes), indent=2, ensure_ascii=False)


def identify_conflicts(
    suggestions: Sequence[OrganizationSuggestion],
    nodes: Sequence[BookmarkNode],
) -> list[OrganizationConflict]:
    """Report every suggestion whose category differs from the bookmark's location."""
    locations = {flat.id: flat.current_category for flat in iter_bookmarks(nodes)}
    conflicts: list[OrganizationConflict] = []
    for suggestion in suggestions:
        current = locations.get(suggestion.bookmark_id, "")
        if current != suggestion.suggested_category:
            conflicts.append(
                OrganizationConflict(
                    bookmark_id=suggestion.bookmark_id,
                    current_category=current or ROOT_LABEL,
                    suggested_category=suggestion.suggested_category,
                    confidence=suggestion.confidence,
                ),
            )
    return conflicts


def generate_folder_structure(
    suggestions: Sequence[OrganizationSuggestion], *, create_hierarchy: bool,
) -> list[str]:
    """Sorted, distinct folder paths implied by the suggestions.

    With hierarchy enabled every prefix of a category is included, so
    "A > B > C" contributes "A", "A > B" and "A > B > C".
    """
    folders: set[str] = set()
    for suggestion in suggestions:
        if not create_hierarchy:
            folders.add(suggestion.suggested_category)
            continue
        parts = split_category(suggestion.suggested_category)
        for depth in range(1, len(parts) + 1):
            folders.add(join_category(parts[:depth]))
    return sorted(folders)
