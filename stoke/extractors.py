"""Template source extraction for Stoke.

A template file is split into three parts before anything is compiled:
YAML front matter, the Jinja body and the special ``<script>`` blocks the
engine understands.

Recognised openers (case-insensitive):

- ``<script generate>``: generate script run by the engine.
- ``<script generate-use:"other/template">``: reuse another template's
  generate script.
- ``<script entry>``: page script bundled next to every generated page.
- ``<script lib>``: standalone script written to ``js/<template>.js``.

Every other ``<script>`` element is ordinary page markup and stays in the body.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import yaml

from .errors import ConfigurationError

FRONTMATTER_RE = re.compile(r"^---[ \t]*\n(.*?)^---[ \t]*(?:\n|\Z)", re.DOTALL | re.MULTILINE)
SCRIPT_BLOCK_RE = re.compile(r"<script([^>]*)>([\s\S]*?)</script\s*>", re.IGNORECASE)
SIMPLE_OPENER_RE = re.compile(r"^\s*(generate|entry|lib)\s*$", re.IGNORECASE)
USE_OPENER_RE = re.compile(r"^\s*generate-use:\s*(.*?)\s*$", re.IGNORECASE)
REFERENCE_RE = re.compile(r'^"([\w-]+(?:/[\w-]+)*)"$')


class ScriptKind(Enum):
    GENERATE = "generate"
    GENERATE_USE = "generate-use"
    ENTRY = "entry"
    LIB = "lib"


@dataclass
class ScriptBlock:
    """A recognised script block.

    Attributes:
        kind: What the engine does with the block.
        body: Text between the opening and closing tags.
        line: 1-based line of the opening tag in the template file.
        reference: For ``generate-use`` blocks, the referenced template name,
            or None when the reference is malformed.
        raw_reference: The reference text exactly as written.
    """

    kind: ScriptKind
    body: str
    line: int
    reference: str | None = None
    raw_reference: str = ""


@dataclass
class ExtractedTemplate:
    front_matter: dict[str, Any]
    body: str
    scripts: list[ScriptBlock] = field(default_factory=list)

    def scripts_of(self, kind: ScriptKind) -> list[ScriptBlock]:
        return [block for block in self.scripts if block.kind is kind]


def extract_frontmatter(text: str) -> tuple[dict[str, Any], str, int]:
    """Extract YAML frontmatter from content.

    Args:
        text: Raw file content.

    Returns:
        Tuple of (frontmatter dict, remaining content, number of lines the
        frontmatter block occupied).

    Raises:
        ConfigurationError: If a front matter block is present but is not a
            YAML mapping.
    """
    match = FRONTMATTER_RE.match(text)
    if not match:
        return {}, text, 0
    try:
        data = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"invalid front matter: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"front matter must be a mapping, not {type(data).__name__}"
        )
    consumed = text[: match.end()]
    offset = consumed.count("\n")
    if not consumed.endswith("\n"):
        offset += 1
    return data, text[match.end() :], offset


def parse_script_opener(attributes: str) -> tuple[ScriptKind, str | None, str] | None:
    """Classify the attribute text of a ``<script ...>`` opener.

    Returns:
        ``(kind, reference, raw_reference)`` for recognised openers, or None
        for ordinary script elements.
    """
    simple = SIMPLE_OPENER_RE.match(attributes)
    if simple:
        return ScriptKind(simple.group(1).lower()), None, ""
    use = USE_OPENER_RE.match(attributes)
    if use:
        raw = use.group(1)
        ref = REFERENCE_RE.match(raw)
        return ScriptKind.GENERATE_USE, ref.group(1) if ref else None, raw
    return None


def extract_template(text: str) -> ExtractedTemplate:
    """Split a template file into front matter, body and script blocks.

    Args:
        text: Raw template source.

    Returns:
        The extracted parts. The body has recognised script blocks removed
        and surrounding whitespace trimmed.
    """
    front_matter, body, offset = extract_frontmatter(text)
    scripts: list[ScriptBlock] = []
    pieces: list[str] = []
    cursor = 0
    for match in SCRIPT_BLOCK_RE.finditer(body):
        opener = parse_script_opener(match.group(1))
        if opener is None:
            continue
        kind, reference, raw = opener
        line = offset + body.count("\n", 0, match.start()) + 1
        scripts.append(ScriptBlock(kind, match.group(2), line, reference, raw))
        pieces.append(body[cursor : match.start()])
        cursor = match.end()
    pieces.append(body[cursor:])
    return ExtractedTemplate(front_matter, "".join(pieces).strip(), scripts)
