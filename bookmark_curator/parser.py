"""Parse a Netscape-format bookmark export into a folder/bookmark tree."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from pathlib import Path

from bs4 import BeautifulSoup, Tag

from .models import Bookmark, BookmarkNode, Folder, new_id

LOGGER = logging.getLogger(__name__)


def parse_bookmark_html(html_path: Path) -> list[BookmarkNode]:
    """Parse a Chrome/Firefox/Brave exported bookmark file into tree nodes."""
    LOGGER.debug("Parsing bookmark export from %s", html_path)
    return parse_bookmark_html_text(html_path.read_text(encoding="utf-8"))


def parse_bookmark_html_text(html_text: str) -> list[BookmarkNode]:
    """Parse exported bookmark HTML; every node gets a fresh id."""
    soup = BeautifulSoup(html_text, "html.parser")
    root_dl = soup.find("dl")
    if not isinstance(root_dl, Tag):
        msg = "Bookmark export is missing <DL> root element"
        raise ValueError(msg)

    nodes = _parse_list(root_dl)
    LOGGER.info("Extracted %d top-level entries", len(nodes))
    return nodes


def _parse_list(dl: Tag) -> list[BookmarkNode]:
    # html.parser never closes <DT>/<p>, so siblings nest; ownership is decided by
    # the nearest enclosing <DL> instead of by direct children.
    nodes: list[BookmarkNode] = []
    for element in dl.find_all(["a", "h3"]):
        if element.find_parent("dl") is not dl:
            continue
        if element.name == "a":
            bookmark = _bookmark_from_anchor(element)
            if bookmark is not None:
                nodes.append(bookmark)
        else:
            nodes.append(_folder_from_header(element))
    return nodes


def _attr(tag: Tag, name: str) -> str | None:
    value = tag.get(name)
    if isinstance(value, list):
        value = " ".join(value)
    if value is None:
        return None
    return str(value).strip() or None


def _bookmark_from_anchor(anchor: Tag) -> Bookmark | None:
    href = _attr(anchor, "href")
    if href is None:
        LOGGER.debug("Skipping anchor without href")
        return None
    tags_attr = _attr(anchor, "tags")
    tags = [tag.strip() for tag in tags_attr.split(",") if tag.strip()] if tags_attr else []
    return Bookmark(
        id=new_id(),
        title=anchor.get_text(strip=True),
        url=href,
        tags=tags,
        add_date=_attr(anchor, "add_date"),
        icon=_attr(anchor, "icon"),
    )


def _folder_from_header(header: Tag) -> Folder:
    children_dl = header.find_next_sibling("dl")
    children = _parse_list(children_dl) if isinstance(children_dl, Tag) else []
    return Folder(
        id=new_id(),
        name=header.get_text(strip=True),
        children=children,
        add_date=_attr(header, "add_date"),
        last_modified=_attr(header, "last_modified"),
    )
