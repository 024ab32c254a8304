"""Recursive, wrapper-aware template rendering.

A template may name a ``wrapper`` in its front matter. Rendering it renders
the outermost wrapper instead; each wrapper calls ``include("_body")`` to
render the template it wraps. Templates can also ``include`` any other
template by name.

Every include and wrapper hop is recorded in the dependency graph, so a
change to a shared partial or layout regenerates the pages that used it.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from functools import partial
from typing import Any

from markupsafe import Markup

from .dependencies import DependencyGraph
from .errors import RenderError, StokeError, TemplateNotFoundError
from .templates import TemplateRegistry

BODY = "_body"


@dataclass(frozen=True)
class RenderFrame:
    """State threaded through one recursive render.

    Attributes:
        owner: Template whose page is being rendered.
        wrapped: Templates waiting to be rendered by ``_body``, innermost
            first; the last item is the next one popped.
        data: Render data of the enclosing template.
    """

    owner: str
    wrapped: tuple[str, ...]
    data: Mapping[str, Any]


class Renderer:
    """Renders templates from a registry, recording include edges."""

    def __init__(self, templates: TemplateRegistry, graph: DependencyGraph):
        self.templates = templates
        self.graph = graph

    def render(
        self, owner: str, data: Mapping[str, Any], current: str | None = None
    ) -> str:
        """Render ``current`` (default: ``owner``) and everything it includes.

        Args:
            owner: Template whose page is being produced; include edges are
                recorded against it.
            data: Base render data.
            current: Template to start from.

        Returns:
            The rendered HTML.

        Raises:
            RenderError: If any template in the tree fails.
        """
        frame = RenderFrame(owner, (), data)
        return self._render(frame, current or owner, None)

    def _render(
        self,
        frame: RenderFrame,
        current: str,
        include_data: Mapping[str, Any] | None,
    ) -> str:
        wrapped = frame.wrapped
        if current == BODY:
            if not wrapped:
                raise RenderError(
                    frame.owner, BODY, f"wrapper {frame.owner} was not wrapping anything"
                )
            current, wrapped = wrapped[-1], wrapped[:-1]
        else:
            self.graph.mark_depends_on(frame.owner, current)
            wrapped = ()
            seen = {current}
            inner = current
            wrapper = self._wrapper_of(inner)
            while wrapper:
                if wrapper in seen:
                    raise RenderError(
                        frame.owner, wrapper, f"wrapper cycle through {wrapper}"
                    )
                self.graph.mark_depends_on(current, wrapper)
                wrapped += (inner,)
                seen.add(wrapper)
                inner = wrapper
                wrapper = self._wrapper_of(inner)
            current = inner

        record = self.templates.get(current)
        if record is None or record.render is None:
            raise TemplateNotFoundError(
                frame.owner, current, f"template {current} is missing or failed to compile"
            )

        merged = {**frame.data, **record.front_matter, **(include_data or {})}
        include = partial(self._include, RenderFrame(frame.owner, wrapped, merged))
        try:
            return record.render(merged, include)
        except StokeError:
            raise
        except Exception as exc:
            raise RenderError(frame.owner, current, f"{type(exc).__name__}: {exc}", exc) from exc

    def _include(
        self,
        frame: RenderFrame,
        name: str,
        data: Mapping[str, Any] | None = None,
    ) -> Markup:
        return Markup(self._render(frame, name, data))

    def _wrapper_of(self, name: str) -> str | None:
        record = self.templates.get(name)
        return record.wrapper if record else None
