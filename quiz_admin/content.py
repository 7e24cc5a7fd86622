"""Helpers for the rich-text documents stored in ``questions.content``.

A document is a tree of typed nodes, ``{"type": "doc", "content": [...]}``,
where paragraphs hold text runs (``{"type": "text", "text": ...}``) and
images carry ``attrs.src``.
"""

from __future__ import annotations

from typing import Any, Dict, Iterator, List

EMPTY_PREVIEW = "No content"
PREVIEW_LIMIT = 50


def _walk(node: Any) -> Iterator[Dict[str, Any]]:
    if isinstance(node, dict):
        yield node
        for child in node.get("content") or []:
            yield from _walk(child)
    elif isinstance(node, list):
        for child in node:
            yield from _walk(child)


def content_to_text(content: Any) -> str:
    """Flatten a document into plain text, one line per paragraph."""
    fragments: List[str] = []
    for node in _walk(content):
        if node.get("type") == "paragraph" and fragments and not fragments[-1].endswith("\n"):
            fragments.append("\n")
        text = node.get("text")
        if isinstance(text, str):
            fragments.append(text)
    return "".join(fragments).strip()


def content_preview(content: Any, limit: int = PREVIEW_LIMIT) -> str:
    if not isinstance(content, dict) or not content.get("content"):
        return EMPTY_PREVIEW
    text = "".join(
        node["text"] for node in _walk(content["content"]) if isinstance(node.get("text"), str)
    )
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def image_sources(content: Any) -> List[str]:
    sources = []
    for node in _walk(content):
        if node.get("type") != "image":
            continue
        src = (node.get("attrs") or {}).get("src")
        if isinstance(src, str) and src:
            sources.append(src)
    return sources


def is_empty(content: Any) -> bool:
    """True when a document has neither text nor images."""
    if not isinstance(content, dict):
        return True
    return not content_to_text(content) and not image_sources(content)


def text_to_content(text: str) -> Dict[str, Any]:
    paragraphs = [line.strip() for line in (text or "").split("\n") if line.strip()]
    return {
        "type": "doc",
        "content": [
            {"type": "paragraph", "content": [{"type": "text", "text": paragraph}]}
            for paragraph in paragraphs
        ],
    }


__all__ = [
    "content_to_text",
    "content_preview",
    "image_sources",
    "is_empty",
    "text_to_content",
]
