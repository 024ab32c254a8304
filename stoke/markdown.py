"""The ``markdown`` template filter.

Page data often carries markdown (post bodies read from data files). The
filter turns it into HTML with slugged heading anchors and Pygments
highlighting for fenced code in a known language.
"""

from __future__ import annotations

import re
from html import escape

import mistune
from markupsafe import Markup
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

PLUGINS = ["strikethrough", "footnotes", "table", "url"]

_FORMATTER = HtmlFormatter(cssclass="highlight")
_UNSAFE_SLUG_RE = re.compile(r"[^\w\s-]")
_SEPARATOR_RE = re.compile(r"[-\s]+")


def slugify(text: str) -> str:
    """Lower-case ``text`` and reduce it to word characters joined by ``-``."""
    slug = _UNSAFE_SLUG_RE.sub("", text.lower().strip())
    return _SEPARATOR_RE.sub("-", slug).strip("-")


def _highlight(code: str, info: str | None) -> str | None:
    if not info:
        return None
    try:
        lexer = get_lexer_by_name(info.split()[0], stripall=True)
    except ClassNotFound:
        return None
    return highlight(code, lexer, _FORMATTER)


class _PageRenderer(mistune.HTMLRenderer):
    """HTML renderer used for one markdown document.

    Repeated headings get ``-1``, ``-2``... suffixes so ids stay unique
    within the document.
    """

    def __init__(self):
        super().__init__(escape=False)
        self._seen: dict[str, int] = {}

    def heading(self, text: str, level: int, **attrs) -> str:
        slug = slugify(text)
        count = self._seen.get(slug)
        self._seen[slug] = 0 if count is None else count + 1
        anchor = slug if count is None else f"{slug}-{count + 1}"
        return f'<h{level} id="{anchor}">{text}</h{level}>\n'

    def block_code(self, code: str, info: str | None = None) -> str:
        highlighted = _highlight(code, info)
        if highlighted is not None:
            return highlighted
        css = f' class="language-{escape(info)}"' if info else ""
        return f"<pre><code{css}>{escape(code, quote=False)}</code></pre>\n"


def render_markdown(text: str | None) -> Markup:
    """Render markdown to HTML that Jinja will not escape again.

    None and empty strings render as an empty string.
    """
    if not text:
        return Markup("")
    convert = mistune.create_markdown(renderer=_PageRenderer(), plugins=PLUGINS)
    return Markup(convert(str(text)))
