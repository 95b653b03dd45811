"""Normalize model output into heading-led editor HTML."""

from __future__ import annotations

import re

_FENCE_RE = re.compile(r"```[\w-]*\n?")
_WRAPPER_RE = re.compile(r"<!doctype[^>]*>|</?(?:html|body)\b[^>]*>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[a-z][\s\S]*>", re.IGNORECASE)
_HEADING_START_RE = re.compile(r"^<h[1-6][\s>]", re.IGNORECASE)
_PARAGRAPH_BREAK_RE = re.compile(r"\n\n+")

PLACEHOLDER_HEADING = "<h1>Document</h1>"


def _paragraphs(text: str) -> str:
    paras = []
    for block in _PARAGRAPH_BREAK_RE.split(text):
        block = block.strip()
        if block:
            paras.append(f"<p>{block.replace(chr(10), '<br>')}</p>")
    return "\n".join(paras)


def sanitize_html(text: str) -> str:
    """Clean raw model text into HTML that starts with a heading.

    Markdown fences and ``<html>``/``<body>`` wrappers are removed.  Plain
    text becomes ``<p>`` paragraphs under a placeholder ``<h1>``; HTML that
    does not open with a heading gets the same placeholder.  Applying the
    function twice gives the same result as applying it once.

    >>> sanitize_html("Hello\\n\\nWorld")
    '<h1>Document</h1>\\n<p>Hello</p>\\n<p>World</p>'
    """
    html = text or ""
    # Dropping a wrapper can join backticks into a new fence.
    while True:
        stripped = _WRAPPER_RE.sub("", _FENCE_RE.sub("", html))
        if stripped == html:
            break
        html = stripped
    html = html.strip()
    if not html:
        return ""

    if not _TAG_RE.search(html):
        html = f"{PLACEHOLDER_HEADING}\n{_paragraphs(html)}"

    if not _HEADING_START_RE.match(html):
        html = f"{PLACEHOLDER_HEADING}\n{html}"
    return html
