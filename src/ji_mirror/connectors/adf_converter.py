"""Atlassian Document Format (ADF) to plain text.

Jira returns issue descriptions as an ADF node tree. Block nodes become
lines (separated by a blank line), inline nodes are joined into their
block's line. Unknown node types fall back to their children's text.

Reference: https://developer.atlassian.com/cloud/jira/platform/apis/document/structure/
"""

import logging
from typing import Any

logger = logging.getLogger("ji_mirror.connectors.adf")

__all__ = ["adf_to_text"]

_MARK_WRAPPERS = {"strong": "**", "em": "*", "code": "`", "strike": "~~"}


def adf_to_text(document: dict[str, Any] | str | None) -> str:
    """Render an ADF document (or a legacy plain string) as plain text.

    Example:
        >>> adf_to_text({"type": "doc", "content": [
        ...     {"type": "paragraph", "content": [{"type": "text", "text": "Hello"}]}]})
        'Hello'
    """
    if not document:
        return ""
    if isinstance(document, str):
        return document.strip()

    lines: list[str] = []
    _render_block(document, lines, depth=0)
    while lines and not lines[-1]:
        lines.pop()
    return "\n".join(lines)


def _inline(nodes: list[Any]) -> str:
    parts: list[str] = []
    for node in nodes:
        if isinstance(node, str):
            parts.append(node)
            continue
        if not isinstance(node, dict):
            continue
        kind = node.get("type")
        attrs = node.get("attrs") or {}
        if kind == "text":
            text = node.get("text", "")
            for mark in node.get("marks") or []:
                wrapper = _MARK_WRAPPERS.get(mark.get("type"))
                if wrapper:
                    text = f"{wrapper}{text}{wrapper}"
                elif mark.get("type") == "link" and mark.get("attrs", {}).get("href"):
                    text = f"{text} ({mark['attrs']['href']})"
            parts.append(text)
        elif kind == "hardBreak":
            parts.append("\n")
        elif kind == "mention":
            parts.append("@" + str(attrs.get("text") or attrs.get("displayName") or "unknown").lstrip("@"))
        elif kind in ("inlineCard", "blockCard"):
            parts.append(attrs.get("url", ""))
        elif kind == "emoji":
            parts.append(attrs.get("text") or attrs.get("shortName", ""))
        else:
            parts.append(_inline(node.get("content") or []))
    return "".join(parts)


def _render_list(node: dict[str, Any], lines: list[str], depth: int, ordered: bool) -> None:
    number = (node.get("attrs") or {}).get("order", 1)
    for entry in node.get("content") or []:
        if not isinstance(entry, dict):
            continue
        marker = f"{number}. " if ordered else "- "
        number += 1
        prefix = "  " * depth + marker
        text_parts: list[str] = []
        for child in entry.get("content") or []:
            if not isinstance(child, dict):
                continue
            if child.get("type") in ("bulletList", "orderedList"):
                if text_parts:
                    lines.append(prefix + " ".join(text_parts))
                    text_parts = []
                    prefix = "  " * depth + " " * len(marker)
                _render_list(child, lines, depth + 1, child.get("type") == "orderedList")
            else:
                text_parts.append(_inline(child.get("content") or []))
        if text_parts:
            lines.append(prefix + " ".join(text_parts))
    if depth == 0:
        lines.append("")


def _render_block(node: Any, lines: list[str], depth: int) -> None:
    if not isinstance(node, dict):
        if isinstance(node, str) and node:
            lines.append(node)
        return

    kind = node.get("type")
    children = node.get("content") or []

    if kind == "doc":
        for child in children:
            _render_block(child, lines, depth)
    elif kind == "paragraph":
        text = _inline(children)
        if text.strip():
            lines.extend([text, ""])
    elif kind == "heading":
        level = (node.get("attrs") or {}).get("level", 1)
        lines.extend(["#" * level + " " + _inline(children), ""])
    elif kind in ("bulletList", "orderedList"):
        _render_list(node, lines, depth, kind == "orderedList")
    elif kind == "codeBlock":
        language = (node.get("attrs") or {}).get("language", "") or ""
        lines.extend([f"```{language}", _inline(children), "```", ""])
    elif kind == "blockquote":
        quoted: list[str] = []
        for child in children:
            _render_block(child, quoted, depth)
        lines.extend(f"> {line}" for line in quoted if line.strip())
        lines.append("")
    elif kind == "rule":
        lines.extend(["---", ""])
    elif kind == "panel":
        for child in children:
            _render_block(child, lines, depth)
    elif kind in ("table", "tableRow"):
        for child in children:
            _render_block(child, lines, depth)
    elif kind in ("tableHeader", "tableCell"):
        cell: list[str] = []
        for child in children:
            _render_block(child, cell, depth)
        text = " ".join(line for line in cell if line.strip())
        if text:
            lines.append(f"| {text}")
    elif kind in ("mediaSingle", "mediaGroup", "media"):
        return
    elif kind is None:
        logger.debug("adf_node_missing_type", extra={"node": str(node)[:100]})
    else:
        logger.debug("adf_unknown_node_type", extra={"node_type": kind})
        text = _inline(children)
        if text.strip():
            lines.extend([text, ""])
