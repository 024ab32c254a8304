"""Template compilation for Stoke.

Template bodies are compiled once with Jinja2 into render functions of the
shape ``render(data, include) -> str``. Compiled templates never load other
templates themselves; nesting goes through the ``include`` callback so the
renderer can track dependencies and wrappers.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from jinja2 import (
    Environment,
    StrictUndefined,
    TemplateSyntaxError,
    Undefined,
    select_autoescape,
)

from .errors import CompileError
from .markdown import render_markdown
from .protocols import IncludeCallback, RenderFunction


class TemplateCompiler:
    """Compiles template bodies into render functions.

    Attributes:
        env: Shared Jinja2 environment.
    """

    def __init__(self, strict: bool = False):
        """Initialize the compiler.

        Args:
            strict: Raise on undefined template variables instead of
                rendering them as empty strings.
        """
        self.env = Environment(
            autoescape=select_autoescape(["html", "xml"], default_for_string=True),
            undefined=StrictUndefined if strict else Undefined,
            keep_trailing_newline=True,
        )
        self.env.filters["markdown"] = render_markdown

    def compile(self, body: str, name: str) -> RenderFunction:
        """Compile a template body.

        Args:
            body: Template source with front matter and scripts removed.
            name: Template name, used in error messages.

        Returns:
            A render function.

        Raises:
            CompileError: If the body is not valid Jinja.
        """
        try:
            template = self.env.from_string(body)
        except TemplateSyntaxError as exc:
            message = (exc.message or str(exc)).splitlines()[0]
            raise CompileError(name, message, exc.lineno) from exc

        def render(data: Mapping[str, Any], include: IncludeCallback) -> str:
            return template.render({**data, "include": include})

        return render
