"""Sandboxed execution of generate scripts.

Generate scripts are restricted Python compiled with RestrictedPython. A
script defines one function::

    <script generate>
    def generate(ctx):
        for name in ctx.get_data_file_names("posts/*.md"):
            ...
            ctx.generate_pages({"path": slug, "data": {"title": title}})
        return {"watch_globs": ["posts/*.md"]}
    </script>

The only things a script can reach are the restricted builtins, the modules
on the import allow-list and the capabilities on :class:`ScriptContext`.

Key pieces:
- compile_script: compile a script block once, at ingestion.
- build_restricted_globals: fresh globals for one run.
- ScriptSandbox: runs a compiled script in a worker thread and validates its
  response.
"""

from __future__ import annotations

import asyncio
import operator
import re
import textwrap
import threading
import traceback
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from types import CodeType
from typing import Any

import click
from RestrictedPython import compile_restricted_exec
from RestrictedPython.Eval import default_guarded_getitem, default_guarded_getiter
from RestrictedPython.Guards import (
    full_write_guard,
    guarded_iter_unpack_sequence,
    guarded_unpack_sequence,
    safe_builtins,
    safer_getattr,
)
from RestrictedPython.Limits import limited_builtins
from RestrictedPython.PrintCollector import PrintCollector
from RestrictedPython.Utilities import utility_builtins

from .console import warn
from .errors import (
    CompileError,
    ScriptProtocolError,
    ScriptRuntimeError,
    StokeError,
)

ENTRY_POINT = "generate"

_LINE_RE = re.compile(r"^Line (\d+):\s*(.*)$")

_INPLACE_OPERATORS: dict[str, Callable[[Any, Any], Any]] = {
    "+=": operator.iadd,
    "-=": operator.isub,
    "*=": operator.imul,
    "/=": operator.itruediv,
    "//=": operator.ifloordiv,
    "%=": operator.imod,
    "**=": operator.ipow,
    "<<=": operator.ilshift,
    ">>=": operator.irshift,
    "&=": operator.iand,
    "|=": operator.ior,
    "^=": operator.ixor,
}

_EXTRA_BUILTINS: dict[str, Any] = {
    "dict": dict,
    "list": list,
    "tuple": tuple,
    "set": set,
    "frozenset": frozenset,
    "range": range,
    "enumerate": enumerate,
    "min": min,
    "max": max,
    "sum": sum,
    "any": any,
    "all": all,
    "map": map,
    "filter": filter,
    "reversed": reversed,
    "iter": iter,
    "next": next,
}


@dataclass
class TriggeredBy:
    """The change that caused a regeneration.

    Attributes:
        path: Changed file.
        reason: ``Added``, ``Modified`` or ``Deleted``.
    """

    path: str
    reason: str


@dataclass
class ScriptInputs:
    triggered_by: TriggeredBy | None
    front_matter: dict[str, Any]
    global_data: Any


@dataclass
class ScriptContext:
    """Capabilities handed to a generate script as ``ctx``.

    Attributes:
        name: Template running the script.
        inputs: Trigger, front matter and tracked global data.
        generate_pages: Emit one page request or a list of them. A request
            is ``{"path": ..., "data": {...}, "ext": "html"}``.
        get_data_file_names: Absolute data file paths, optionally filtered by
            a glob or a list of globs.
        read_data_file: Text of a file inside the data directory.
        cache: This template's live cache namespace.
        log: Print tagged with the template name.
        front_matter_parse: Split text into ``(front_matter, body)``.
        data_dir: Absolute data directory.
        render_template: Render a template to a string without writing it.
        files_written: Read-only snapshot of the output ledger.
    """

    name: str
    inputs: ScriptInputs
    generate_pages: Callable[[Any], None]
    get_data_file_names: Callable[..., list[str]]
    read_data_file: Callable[[str], str]
    cache: dict[str, Any]
    log: Callable[..., None]
    front_matter_parse: Callable[[str], tuple[dict[str, Any], str]]
    data_dir: str
    render_template: Callable[..., str]
    files_written: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class GenerateScript:
    """A compiled generate script.

    Attributes:
        owner: Template that defines the script.
        filename: Name used for the code object and in tracebacks.
        source: Source padded so code line numbers match the template file.
        first_line: Line of the ``<script generate>`` opener.
        code: Compiled code, or None if compilation failed.
        errors: Compiler messages.
    """

    owner: str
    filename: str
    source: str
    first_line: int
    code: CodeType | None
    errors: tuple[str, ...] = ()

    @property
    def compile_error(self) -> CompileError | None:
        if self.code is not None and not self.errors:
            return None
        first = self.errors[0] if self.errors else "script did not compile"
        match = _LINE_RE.match(first)
        if match:
            return CompileError(self.owner, match.group(2), int(match.group(1)))
        return CompileError(self.owner, first)


def compile_script(
    owner: str, body: str, first_line: int = 1, filename: str | None = None
) -> GenerateScript:
    """Compile a generate script once.

    Args:
        owner: Template defining the script.
        body: Text between the script tags.
        first_line: Line of the opener in the template file.
        filename: Name for tracebacks; defaults to ``<owner>``.

    Returns:
        The compiled script. Failures are reported through ``compile_error``.
    """
    filename = filename or f"<{owner}>"
    source = "\n" * (first_line - 1) + textwrap.dedent(body)
    result = compile_restricted_exec(source, filename=filename)
    return GenerateScript(
        owner=owner,
        filename=filename,
        source=source,
        first_line=first_line,
        code=result.code,
        errors=tuple(result.errors),
    )


def _inplacevar(op: str, target: Any, value: Any) -> Any:
    try:
        return _INPLACE_OPERATORS[op](target, value)
    except KeyError:
        raise SyntaxError(f"unsupported in-place operator {op}") from None


def _apply(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    return func(*args, **kwargs)


def _guarded_import(allowed: frozenset[str]) -> Callable[..., Any]:
    def guarded(name, globals=None, locals=None, fromlist=(), level=0):
        if level != 0 or name.split(".")[0] not in allowed:
            raise ImportError(f"import of {name!r} is not allowed")
        return __import__(name, globals, locals, fromlist, level)

    return guarded


def build_restricted_globals(allowed_modules: Iterable[str] = ()) -> dict[str, Any]:
    """Build fresh globals for one script run.

    Args:
        allowed_modules: Top-level module names scripts may import.

    Returns:
        Globals with restricted builtins and the RestrictedPython guards.
    """
    builtins = {
        **safe_builtins,
        **limited_builtins,
        **utility_builtins,
        **_EXTRA_BUILTINS,
        "__import__": _guarded_import(frozenset(allowed_modules)),
    }
    return {
        "__builtins__": builtins,
        "__name__": "stoke_script",
        "__metaclass__": type,
        "_getattr_": safer_getattr,
        "_getitem_": default_guarded_getitem,
        "_getiter_": default_guarded_getiter,
        "_iter_unpack_sequence_": guarded_iter_unpack_sequence,
        "_unpack_sequence_": guarded_unpack_sequence,
        "_write_": full_write_guard,
        "_inplacevar_": _inplacevar,
        "_apply_": _apply,
        "_print_": PrintCollector,
    }


class LivenessMonitor:
    """Warns periodically while a script is running. Never interrupts it."""

    def __init__(self, name: str, interval: float):
        self.name = name
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def __enter__(self) -> LivenessMonitor:
        self._thread = threading.Thread(target=self._watch, daemon=True)
        self._thread.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()

    def _watch(self) -> None:
        while not self._stop.wait(self.interval):
            warn(f"Waiting for generator to resolve: {self.name}")


def diagnose(script: GenerateScript, exc: BaseException) -> str:
    """Describe a script failure with the failing line highlighted.

    Falls back to the formatted traceback when no frame belongs to the
    script.
    """
    frames = [
        frame
        for frame in traceback.extract_tb(exc.__traceback__)
        if frame.filename == script.filename
    ]
    if not frames or frames[-1].lineno is None:
        return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    error_line = frames[-1].lineno
    lines = script.source.split("\n")
    listing = [f"{type(exc).__name__}: {exc} ({script.owner}, line {error_line})"]
    for number in range(script.first_line, len(lines) + 1):
        text = f"{number:4d}: {lines[number - 1]}"
        if number == error_line:
            listing.append(click.style(text, fg="red", bold=True))
        else:
            listing.append(click.style(text, fg="blue"))
    return "\n".join(listing)


def _on_loop(loop: asyncio.AbstractEventLoop, func: Callable[..., Any]) -> Callable[..., Any]:
    """Wrap ``func`` so calls from a worker thread run on ``loop`` and wait."""

    def call(*args: Any, **kwargs: Any) -> Any:
        async def invoke() -> Any:
            return func(*args, **kwargs)

        return asyncio.run_coroutine_threadsafe(invoke(), loop).result()

    return call


class _LoopBoundData:
    """Global data as seen from a script thread. Every read runs on the loop."""

    def __init__(self, data: Any, loop: asyncio.AbstractEventLoop):
        self._data = data
        self._loop = loop

    def _call(self, func: Callable[..., Any], *args: Any) -> Any:
        return _on_loop(self._loop, func)(*args)

    def get(self, key: str, *default: Any) -> Any:
        return self._call(self._data.get, key, *default)

    def __getitem__(self, key: str) -> Any:
        return self._call(operator.getitem, self._data, key)

    def __getattr__(self, key: str) -> Any:
        if key.startswith("_"):
            raise AttributeError(key)
        return self._call(getattr, self._data, key)

    def __contains__(self, key: object) -> bool:
        return self._call(operator.contains, self._data, key)

    def keys(self) -> list[str]:
        return list(self._call(self._data.keys))

    def __iter__(self):
        return iter(self.keys())


def _bind_to_loop(context: ScriptContext, loop: asyncio.AbstractEventLoop) -> ScriptContext:
    inputs = replace(context.inputs, global_data=_LoopBoundData(context.inputs.global_data, loop))
    return replace(
        context,
        inputs=inputs,
        generate_pages=_on_loop(loop, context.generate_pages),
        render_template=_on_loop(loop, context.render_template),
    )


def _execute(script: GenerateScript, scope: dict[str, Any], context: ScriptContext) -> Any:
    exec(script.code, scope)
    generate = scope.get(ENTRY_POINT)
    if not callable(generate):
        raise ScriptProtocolError(f"{script.owner}: script does not define {ENTRY_POINT}(ctx)")
    return generate(context)


class ScriptSandbox:
    """Runs compiled generate scripts.

    Attributes:
        allowed_modules: Modules scripts may import.
        liveness_interval: Seconds between "still waiting" warnings.
    """

    def __init__(
        self, allowed_modules: Iterable[str] = (), liveness_interval: float = 3.0
    ):
        self.allowed_modules = tuple(allowed_modules)
        self.liveness_interval = liveness_interval

    def compile(
        self, owner: str, body: str, first_line: int = 1, filename: str | None = None
    ) -> GenerateScript:
        return compile_script(owner, body, first_line, filename)

    async def run(self, script: GenerateScript, context: ScriptContext) -> dict[str, Any]:
        """Run ``script``'s ``generate(ctx)`` and return its response.

        The script runs in a worker thread so a slow script only holds up its
        own task. Capabilities that touch engine state are called back on the
        event loop.

        Args:
            script: Compiled script.
            context: Capabilities for this run.

        Returns:
            The response mapping; ``{}`` when the script returned None.

        Raises:
            CompileError: If the script never compiled.
            ScriptProtocolError: If ``generate`` is missing or returned
                something other than a mapping.
            ScriptRuntimeError: If the script raised.
            StokeError: Engine errors raised through a capability propagate
                unchanged.
        """
        error = script.compile_error
        if error is not None:
            raise error
        scope = build_restricted_globals(self.allowed_modules)
        bound = _bind_to_loop(context, asyncio.get_running_loop())
        with LivenessMonitor(context.name, self.liveness_interval):
            try:
                response = await asyncio.to_thread(_execute, script, scope, bound)
            except StokeError:
                raise
            except Exception as exc:
                raise ScriptRuntimeError(context.name, diagnose(script, exc), exc) from exc
        if response is None:
            return {}
        if not isinstance(response, Mapping):
            raise ScriptProtocolError(
                f"{context.name}: generate returned {type(response).__name__}, expected a dict"
            )
        return dict(response)
