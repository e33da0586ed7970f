"""Apply an approved organisation plan to a bookmark tree."""

from __future__ import annotations

import copy
import logging
import time
from typing import TYPE_CHECKING

from .config import AUTO_SELECT_CONFIDENCE, CATEGORY_DELIMITER
from .models import (
    ApplyOptions,
    Bookmark,
    Folder,
    new_id,
    split_category,
)

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Collection, Sequence

    from .models import BookmarkNode, OrganizationPlan, OrganizationSuggestion

LOGGER = logging.getLogger(__name__)


def apply_organization_plan(
    nodes: Sequence[BookmarkNode],
    plan: OrganizationPlan,
    options: ApplyOptions | None = None,
) -> list[BookmarkNode]:
    """Return a new tree with the plan applied; ``nodes`` is left untouched.

    Order matters: duplicates are removed first, then bookmarks are moved to their
    suggested folders, then any remaining folders from ``plan.new_folders`` are
    created. Folders are matched by exact name per level, so applying the same
    plan twice moves nothing and creates nothing the second time.
    """
    options = options or ApplyOptions()
    tree: list[BookmarkNode] = copy.deepcopy(list(nodes))

    if options.handle_duplicates == "merge":
        duplicate_ids = {
            duplicate.id for group in plan.duplicates for duplicate in group.duplicates
        }
        removed = remove_bookmarks(tree, duplicate_ids)
        LOGGER.info("Removed %d duplicate bookmarks", removed)

    moved = apply_suggestions(tree, plan.suggestions)
    LOGGER.info("Moved %d bookmarks to their suggested folders", moved)

    for folder_path in plan.new_folders:
        ensure_folder_path(tree, split_category(folder_path))
    return tree


def remove_bookmarks(nodes: list[BookmarkNode], bookmark_ids: Collection[str]) -> int:
    """Remove bookmarks with the given ids wherever they sit; return how many went."""
    removed = 0
    kept: list[BookmarkNode] = []
    for node in nodes:
        if isinstance(node, Bookmark) and node.id in bookmark_ids:
            removed += 1
            continue
        if isinstance(node, Folder):
            removed += remove_bookmarks(node.children, bookmark_ids)
        kept.append(node)
    nodes[:] = kept
    return removed


def _collect_moves(
    nodes: Sequence[BookmarkNode],
    suggestions: dict[str, OrganizationSuggestion],
    path: tuple[str, ...],
    moves: list[tuple[Bookmark, list[str]]],
) -> None:
    for node in nodes:
        if isinstance(node, Folder):
            _collect_moves(node.children, suggestions, (*path, node.name), moves)
            continue
        suggestion = suggestions.get(node.id)
        if suggestion is None:
            continue
        target = split_category(suggestion.suggested_category)
        if target != list(path):
            moves.append((node, target))


def apply_suggestions(
    nodes: list[BookmarkNode], suggestions: Sequence[OrganizationSuggestion],
) -> int:
    """Move every suggested bookmark that is not already in its target folder."""
    by_id = {suggestion.bookmark_id: suggestion for suggestion in suggestions}
    moves: list[tuple[Bookmark, list[str]]] = []
    _collect_moves(nodes, by_id, (), moves)

    remove_bookmarks(nodes, {bookmark.id for bookmark, _ in moves})
    for bookmark, target in moves:
        container = ensure_folder_path(nodes, target)
        container.append(bookmark)
    return len(moves)


def get_or_create_folder(nodes: list[BookmarkNode], name: str) -> Folder:
    """First folder named ``name`` at this level, or a new one appended last."""
    for node in nodes:
        if isinstance(node, Folder) and node.name == name:
            return node
    folder = Folder(id=new_id(), name=name, add_date=str(int(time.time())))
    nodes.append(folder)
    return folder


def ensure_folder_path(nodes: list[BookmarkNode], path: Sequence[str]) -> list[BookmarkNode]:
    """Create any missing folders along ``path``; return the deepest children list."""
    container = nodes
    for name in path:
        container = get_or_create_folder(container, name).children
    return container


def filter_plan(
    plan: OrganizationPlan,
    selected_suggestion_ids: Collection[str],
    selected_duplicate_ids: Collection[str],
) -> OrganizationPlan:
    """Narrow a plan to what the user approved.

    Suggestions (and their conflicts) are kept only when selected. Duplicate groups
    keep only selected duplicates and disappear when none remain. New folders are
    kept only when still implied by a remaining suggestion.
    """
    suggestions = [s for s in plan.suggestions if s.bookmark_id in selected_suggestion_ids]
    kept_ids = {s.bookmark_id for s in suggestions}
    conflicts = [c for c in plan.conflicts if c.bookmark_id in kept_ids]

    duplicates = []
    for group in plan.duplicates:
        chosen = [d for d in group.duplicates if d.id in selected_duplicate_ids]
        if chosen:
            duplicates.append(group.model_copy(update={"duplicates": chosen}))

    categories = [s.suggested_category for s in suggestions]
    new_folders = [
        folder
        for folder in plan.new_folders
        if any(
            category == folder or category.startswith(folder + CATEGORY_DELIMITER)
            for category in categories
        )
    ]
    return plan.model_copy(
        update={
            "suggestions": suggestions,
            "conflicts": conflicts,
            "duplicates": duplicates,
            "new_folders": new_folders,
        },
    )


def auto_select(
    plan: OrganizationPlan, min_confidence: float = AUTO_SELECT_CONFIDENCE,
) -> tuple[set[str], set[str]]:
    """Default review selection: confident suggestions and exact-URL duplicates.

    Groups flagged for manual review (same-domain heuristics) are left unselected.
    """
    suggestion_ids = {s.bookmark_id for s in plan.suggestions if s.confidence >= min_confidence}
    duplicate_ids = {
        duplicate.id
        for group in plan.duplicates
        if group.merge_strategy != "manual"
        for duplicate in group.duplicates
    }
    return suggestion_ids, duplicate_ids
