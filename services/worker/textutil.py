from __future__ import annotations

import re

import markdown as _markdown

# Letters with inner apostrophes or hyphens count as one word; digits do not count
_WORD_RE = re.compile(r"[^\W\d_]+(?:['\-][^\W\d_]+)*")


def word_count(text: str | None) -> int:
    if not text:
        return 0
    return len(_WORD_RE.findall(text))


def render_markdown(text: str) -> str:
    """Render provider markdown to HTML on a single line."""
    html = _markdown.markdown(text, extensions=["extra"])
    return html.replace("\n", " ")
