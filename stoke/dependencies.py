"""Dependency tracking between templates, data files and global data.

Every edge means "when the key changes, the dependent template must be
generated again". The four maps are independent:

- templates: included or wrapping template -> templates whose render used it.
  Only populated while rendering, so a new include is known after its first
  render.
- paths: absolute data file path -> templates that asked to watch it.
- globs: glob pattern -> templates that asked to watch it.
- global_keys: global data key -> templates that read it.
"""

from __future__ import annotations

import re
from collections import defaultdict
from collections.abc import Iterable
from functools import lru_cache
from pathlib import Path, PurePath

from .console import log


class DependencyGraph:
    def __init__(self, verbose: bool = False):
        self.templates: defaultdict[str, set[str]] = defaultdict(set)
        self.paths: defaultdict[str, set[str]] = defaultdict(set)
        self.globs: defaultdict[str, set[str]] = defaultdict(set)
        self.global_keys: defaultdict[str, set[str]] = defaultdict(set)
        self.verbose = verbose

    def mark_depends_on(self, dependent: str, dependency: str) -> None:
        """Record that ``dependent`` rendered ``dependency``."""
        self.templates[dependency].add(dependent)

    def record_watch(
        self, name: str, files: Iterable[str | Path] = (), globs: Iterable[str] = ()
    ) -> None:
        """Register file and glob watches requested by template ``name``.

        Args:
            name: Template that wants to be regenerated.
            files: Absolute data file paths.
            globs: Glob patterns matched against the tail of changed paths.
        """
        for path in files:
            self.paths[str(path)].add(name)
        for pattern in globs:
            self.globs[pattern].add(name)

    def record_global_read(self, name: str, key: str) -> None:
        self.global_keys[key].add(name)

    def resolve_affected(self, changed_path: str | Path) -> set[str]:
        """Find templates that watch a changed data file.

        An exact path registration wins. Otherwise the first glob that
        matches the path as ``**/<glob>`` is used.

        Args:
            changed_path: Absolute path of the changed file.

        Returns:
            Names of templates to regenerate; empty if nobody watches it.
        """
        key = str(changed_path)
        if self.paths.get(key):
            return set(self.paths[key])
        for pattern, dependents in self.globs.items():
            if dependents and glob_matches(changed_path, pattern):
                return set(dependents)
        if self.verbose:
            log(f"No dependencies on {key}")
        return set()

    def resolve_template_dependents(self, name: str) -> set[str]:
        """Return the templates that rendered ``name``, plus ``name`` itself."""
        return set(self.templates.get(name, ())) | {name}

    def resolve_global_dependents(self, keys: Iterable[str]) -> set[str]:
        dependents: set[str] = set()
        for key in keys:
            dependents |= self.global_keys.get(key, set())
        return dependents

    def forget(self, name: str) -> None:
        """Remove ``name`` from every dependent set."""
        for table in (self.templates, self.paths, self.globs, self.global_keys):
            for dependents in table.values():
                dependents.discard(name)


_GLOB_TOKEN_RE = re.compile(r"\*\*/|\*\*|\*|\?|\[[^\]/]+\]")


@lru_cache(maxsize=256)
def _glob_regex(pattern: str) -> re.Pattern[str]:
    """Translate a watch glob into a regex matched against the end of a path.

    ``**/`` spans any number of whole directories, ``*`` and ``?`` stay
    within one path segment and ``[...]`` is a character class.
    """
    parts = []
    position = 0
    for match in _GLOB_TOKEN_RE.finditer(pattern):
        parts.append(re.escape(pattern[position : match.start()]))
        token = match.group()
        if token == "**/":
            parts.append("(?:[^/]+/)*")
        elif token == "**":
            parts.append(".*")
        elif token == "*":
            parts.append("[^/]*")
        elif token == "?":
            parts.append("[^/]")
        else:
            body = token[1:-1]
            if body.startswith("!"):
                body = "^" + body[1:]
            parts.append("[" + body.replace("\\", "\\\\") + "]")
        position = match.end()
    parts.append(re.escape(pattern[position:]))
    return re.compile("(?:^|/)" + "".join(parts) + "$")


def glob_matches(path: str | Path, pattern: str) -> bool:
    """Match ``path`` against ``pattern`` anchored at the end, as ``**/pattern``."""
    pattern = pattern.lstrip("/")
    if not pattern or pattern == "**":
        return True
    return _glob_regex(pattern).search(PurePath(path).as_posix()) is not None
