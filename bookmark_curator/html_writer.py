"""Functions for rendering a bookmark tree as Netscape bookmark HTML."""

from __future__ import annotations

import html
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Sequence
    from pathlib import Path

from .models import Bookmark, BookmarkNode, Folder

HTML_HEADER = """<!DOCTYPE NETSCAPE-Bookmark-file-1>
<!-- This is an automatically generated file.
     It will be read and overwritten.
     DO NOT EDIT! -->
<META HTTP-EQUIV="Content-Type" CONTENT="text/html; charset=UTF-8">
<TITLE>Bookmarks</TITLE>
<H1>Bookmarks</H1>
"""


def render_html(nodes: Sequence[BookmarkNode]) -> str:
    """Render the tree as HTML, keeping the display order of every folder."""
    lines: list[str] = [HTML_HEADER.strip(), "<DL><p>"]
    _render_nodes(nodes, lines, 1)
    lines.append("</DL><p>")
    return "\n".join(lines)


def _attributes(pairs: list[tuple[str, str | None]]) -> str:
    return "".join(
        f' {name}="{html.escape(value, quote=True)}"' for name, value in pairs if value
    )


def _render_nodes(nodes: Sequence[BookmarkNode], output: list[str], depth: int) -> None:
    indent = "    " * depth
    for node in nodes:
        if isinstance(node, Folder):
            attrs = _attributes(
                [("ADD_DATE", node.add_date), ("LAST_MODIFIED", node.last_modified)],
            )
            output.append(f"{indent}<DT><H3{attrs}>{html.escape(node.name)}</H3>")
            output.append(f"{indent}<DL><p>")
            _render_nodes(node.children, output, depth + 1)
            output.append(f"{indent}</DL><p>")
        elif isinstance(node, Bookmark):
            attrs = _attributes(
                [
                    ("HREF", node.url),
                    ("ADD_DATE", node.add_date),
                    ("ICON", node.icon),
                    ("TAGS", ",".join(node.tags) or None),
                ],
            )
            output.append(f"{indent}<DT><A{attrs}>{html.escape(node.title)}</A>")


def write_bookmark_html(nodes: Sequence[BookmarkNode], output_path: Path) -> None:
    """Write the tree to an HTML file importable by browsers."""
    output_path.write_text(render_html(nodes) + "\n", encoding="utf-8")
