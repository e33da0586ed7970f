"""Duplicate bookmark detection over a flat bookmark list."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from .models import DuplicateGroup

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Sequence

    from .models import Bookmark, MergeStrategy

LOGGER = logging.getLogger(__name__)


def normalise_url(url: str) -> str:
    """Key used by the exact-URL pass."""
    return url.strip().lower()


def bookmark_score(bookmark: Bookmark) -> int:
    """Metadata completeness score; the highest-scoring bookmark is kept."""
    score = 0
    if bookmark.title:
        score += 2
    if bookmark.tags:
        score += 1
    if bookmark.add_date:
        score += 1
    if bookmark.icon:
        score += 1
    return score


def select_primary(bookmarks: Sequence[Bookmark]) -> Bookmark:
    """Highest score wins; ties keep the first encountered."""
    primary = bookmarks[0]
    for candidate in bookmarks[1:]:
        if bookmark_score(candidate) > bookmark_score(primary):
            primary = candidate
    return primary


def _group(
    primary: Bookmark, members: Sequence[Bookmark], strategy: MergeStrategy,
) -> DuplicateGroup:
    return DuplicateGroup(
        primary_bookmark=primary.to_model(),
        duplicates=[member.to_model() for member in members if member.id != primary.id],
        merge_strategy=strategy,
    )


def find_exact_url_duplicates(bookmarks: Sequence[Bookmark]) -> list[DuplicateGroup]:
    """Group bookmarks whose trimmed, case-folded URLs are identical."""
    by_url: dict[str, list[Bookmark]] = defaultdict(list)
    for bookmark in bookmarks:
        by_url[normalise_url(bookmark.url)].append(bookmark)

    groups: list[DuplicateGroup] = []
    for members in by_url.values():
        if len(members) > 1:
            groups.append(_group(select_primary(members), members, "keep_primary"))
    return groups


def _hostname(url: str) -> str | None:
    try:
        return urlparse(url.strip()).hostname
    except ValueError:
        return None


def find_domain_duplicates(bookmarks: Sequence[Bookmark]) -> list[DuplicateGroup]:
    """Group bookmarks sharing a hostname, keeping the shortest, richest entry.

    Members are ordered by URL length (ascending), then title length and tag count
    (both descending); the first is primary. Bookmarks without a parseable hostname
    are skipped. A domain whose members all share one URL is left to the exact pass.
    """
    by_host: dict[str, list[Bookmark]] = defaultdict(list)
    for bookmark in bookmarks:
        host = _hostname(bookmark.url)
        if not host:
            LOGGER.debug("Skipping bookmark %s with unparseable URL %r", bookmark.id, bookmark.url)
            continue
        by_host[host].append(bookmark)

    groups: list[DuplicateGroup] = []
    for members in by_host.values():
        if len(members) < 2:  # noqa: PLR2004
            continue
        if len({normalise_url(member.url) for member in members}) < 2:  # noqa: PLR2004
            continue
        ranked = sorted(
            members,
            key=lambda item: (len(item.url), -len(item.title), -len(item.tags)),
        )
        groups.append(_group(ranked[0], ranked, "manual"))
    return groups


def detect_duplicates(bookmarks: Sequence[Bookmark]) -> list[DuplicateGroup]:
    """Run both passes and return their groups concatenated.

    A bookmark may appear in a group from each pass; the overlap is kept.
    """
    exact = find_exact_url_duplicates(bookmarks)
    by_domain = find_domain_duplicates(bookmarks)
    LOGGER.info(
        "Found %d exact-URL and %d same-domain duplicate groups", len(exact), len(by_domain),
    )
    return exact + by_domain
