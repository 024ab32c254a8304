"""Protocol definitions for Stoke.

The renderer only depends on these call shapes, so tests can register plain
functions as compiled templates.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from markupsafe import Markup


@runtime_checkable
class IncludeCallback(Protocol):
    """Callable a template uses to render another template inline."""

    def __call__(self, name: str, data: Mapping[str, Any] | None = None) -> Markup:
        """Render template ``name`` with extra ``data`` layered on top.

        Args:
            name: Template name, or ``_body`` inside a wrapper.
            data: Values that override the current render data.

        Returns:
            The rendered HTML, marked safe.
        """
        ...


@runtime_checkable
class RenderFunction(Protocol):
    """A compiled template."""

    def __call__(self, data: Mapping[str, Any], include: IncludeCallback) -> str:
        """Render the template.

        Args:
            data: Render data.
            include: Callback for nested templates.

        Returns:
            Rendered HTML.
        """
        ...
