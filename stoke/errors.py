"""Exception types raised by the Stoke engine.

Every failure the engine reports derives from :class:`StokeError` so the
orchestrator can count it, report it and carry on with sibling work. Anything
that is not a ``StokeError`` is a bug and propagates.
"""

from __future__ import annotations


class StokeError(Exception):
    """Base class for all reportable build errors."""


class ConfigurationError(StokeError):
    """A template, script response or setting is malformed."""


class CacheExpiryError(ConfigurationError):
    """A cache entry carries an ``expires`` value that is not a number.

    Attributes:
        namespace: Template whose cache namespace holds the entry.
        key: Entry key within the namespace.
        value: The offending ``expires`` value.
    """

    def __init__(self, namespace: str, key: str, value: object):
        self.namespace = namespace
        self.key = key
        self.value = value
        super().__init__(
            f"cache entry {namespace}/{key} has a non-numeric expires value: {value!r}"
        )


class CompileError(StokeError):
    """A template body or generate script failed to compile.

    Attributes:
        name: Template name.
        message: First line of the compiler's message.
        lineno: Line number reported by the compiler, if any.
    """

    def __init__(self, name: str, message: str, lineno: int | None = None):
        self.name = name
        self.message = message
        self.lineno = lineno
        where = f" (line {lineno})" if lineno else ""
        super().__init__(f"{name}{where}: {message}")


class ScriptError(StokeError):
    """A generate script failed."""


class ScriptRuntimeError(ScriptError):
    """A generate script raised while running.

    Attributes:
        name: Template owning the script.
        diagnostic: Human readable listing pointing at the failing line.
        original_error: The exception raised inside the script.
    """

    def __init__(self, name: str, diagnostic: str, original_error: BaseException):
        self.name = name
        self.diagnostic = diagnostic
        self.original_error = original_error
        super().__init__(f"{name}: {type(original_error).__name__}: {original_error}")


class ScriptProtocolError(ScriptError):
    """A generate script broke the calling convention (missing hook, bad return)."""


class UndefinedGlobalError(StokeError):
    """Global data was read under a key nobody has set.

    Deliberately not a ``LookupError``: Jinja treats those as undefined values
    and would silently swallow the failure.
    """

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"global data key {key!r} is not defined")


class RenderError(StokeError):
    """Rendering a template failed.

    Attributes:
        owner: Template whose page was being rendered.
        template: Innermost template that failed.
        original_error: Underlying exception, if any.
    """

    def __init__(
        self,
        owner: str,
        template: str,
        message: str,
        original_error: BaseException | None = None,
    ):
        self.owner = owner
        self.template = template
        self.message = message
        self.original_error = original_error
        super().__init__(f"{owner} -> {template}: {message}")


class TemplateNotFoundError(RenderError):
    """A render referenced a template that is missing or failed to compile."""


class OutsideOutputError(StokeError):
    """A write targeted a path outside the output root."""

    def __init__(self, path: object, root: object):
        self.path = path
        self.root = root
        super().__init__(f"refusing to write {path}: outside output directory {root}")


class ErrorCounter:
    """Process-wide count of reported errors.

    Attributes:
        count: Number of errors reported so far.
    """

    def __init__(self) -> None:
        self.count = 0

    def increment(self, amount: int = 1) -> int:
        self.count += amount
        return self.count
