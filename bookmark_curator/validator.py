"""Checks that an applied plan kept every bookmark it was supposed to keep."""

from __future__ import annotations

import collections
import logging
from typing import TYPE_CHECKING

from .structure import iter_bookmarks

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Sequence

    from .models import BookmarkNode, DuplicateHandling, OrganizationPlan

LOGGER = logging.getLogger(__name__)


def validate_application(
    original_nodes: Sequence[BookmarkNode],
    new_nodes: Sequence[BookmarkNode],
    plan: OrganizationPlan,
    handle_duplicates: DuplicateHandling = "merge",
) -> None:
    """Validate an applied tree against the tree it was produced from.

    Every surviving bookmark must appear exactly once, no bookmark may appear out of
    nowhere, and the only removed bookmarks may be merged duplicates.
    """
    original_ids = [flat.id for flat in iter_bookmarks(original_nodes)]
    new_ids = [flat.id for flat in iter_bookmarks(new_nodes)]

    _assert_no_repeats(new_ids)
    _assert_no_additions(original_ids, new_ids)

    expected_removed: set[str] = set()
    if handle_duplicates == "merge":
        expected_removed = {
            duplicate.id for group in plan.duplicates for duplicate in group.duplicates
        }
    _assert_removals(original_ids, new_ids, expected_removed)
    LOGGER.info(
        "Validation successful: %d of %d bookmarks kept", len(new_ids), len(original_ids),
    )


def _assert_no_repeats(new_ids: list[str]) -> None:
    repeated = [bid for bid, count in collections.Counter(new_ids).items() if count > 1]
    if repeated:
        msg = f"Bookmarks appear more than once after applying the plan: {sorted(repeated)}"
        raise ValueError(msg)


def _assert_no_additions(original_ids: list[str], new_ids: list[str]) -> None:
    added = set(new_ids) - set(original_ids)
    if added:
        msg = f"Unknown bookmarks appeared after applying the plan: {sorted(added)}"
        raise ValueError(msg)


def _assert_removals(
    original_ids: list[str], new_ids: list[str], expected_removed: set[str],
) -> None:
    removed = set(original_ids) - set(new_ids)
    present_expected = expected_removed & set(original_ids)
    if removed != present_expected:
        missing = removed - present_expected
        kept = present_expected - removed
        msg = "Bookmark removals do not match the merged duplicates"
        raise ValueError(msg, {"unexpectedly_removed": sorted(missing), "not_removed": sorted(kept)})
