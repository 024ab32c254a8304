"""Output writing and the files-written ledger.

All files the engine produces go through :class:`OutputWriter`, which refuses
any path that escapes the output root and records each successful write in
:class:`FilesWritten`. Scripts see the ledger as a read-only snapshot.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

from .console import log
from .errors import OutsideOutputError
from .utils import is_within, now_iso


@dataclass
class FileWritten:
    """Ledger entry for one output path.

    Attributes:
        kind: ``html``, ``entry``, ``lib``, ``json`` or a page's extension.
        source: ``"<template> <timestamp>"`` for every write, oldest first.
        created: Timestamp of the first write.
        modified: Timestamp of the latest write.
    """

    kind: str
    source: list[str] = field(default_factory=list)
    created: str = ""
    modified: str = ""


@dataclass(frozen=True)
class FileWrittenView:
    kind: str
    source: tuple[str, ...]
    created: str
    modified: str


class FilesWritten:
    """Append-only record of everything written under the output root."""

    def __init__(self) -> None:
        self._entries: dict[str, FileWritten] = {}

    def record(self, kind: str, source: str, path: str) -> FileWritten:
        stamp = now_iso()
        entry = self._entries.get(path)
        if entry is None:
            entry = FileWritten(kind=kind, created=stamp)
            self._entries[path] = entry
        entry.kind = kind
        entry.source.append(f"{source} {stamp}")
        entry.modified = stamp
        return entry

    def get(self, path: str) -> FileWritten | None:
        return self._entries.get(path)

    def __contains__(self, path: object) -> bool:
        return path in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def snapshot(self) -> Mapping[str, FileWrittenView]:
        """Return a read-only copy of the ledger keyed by relative path."""
        return MappingProxyType(
            {
                path: FileWrittenView(
                    entry.kind, tuple(entry.source), entry.created, entry.modified
                )
                for path, entry in self._entries.items()
            }
        )


class OutputWriter:
    """Writes files confined to an output root.

    Attributes:
        root: Resolved output directory.
        ledger: Ledger receiving an entry per successful write.
    """

    def __init__(self, root: Path, ledger: FilesWritten):
        self.root = root.resolve()
        self.ledger = ledger

    def guard(self, path: Path) -> Path:
        """Resolve ``path`` and make sure it lies under the output root.

        Raises:
            OutsideOutputError: If the resolved path escapes the root.
        """
        resolved = path.resolve()
        if not is_within(self.root, resolved):
            raise OutsideOutputError(path, self.root)
        return resolved

    def resolve(self, relative: str) -> Path:
        """Resolve a path relative to the output root and guard it."""
        return self.guard(self.root / relative.lstrip("/"))

    def relative(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def mkdir(self, path: Path) -> Path:
        target = self.guard(path)
        target.mkdir(parents=True, exist_ok=True)
        return target

    def write(self, path: Path, data: str, kind: str, source: str) -> Path:
        """Write ``data`` to ``path`` and record it.

        Args:
            path: Destination, absolute or relative to the output root.
            data: Text to write.
            kind: Ledger kind.
            source: Template responsible for the write.

        Returns:
            The resolved destination.
        """
        target = self.guard(path if path.is_absolute() else self.root / path)
        _write_text(target, data)
        return self._recorded(target, kind, source)

    async def write_async(self, path: Path, data: str, kind: str, source: str) -> Path:
        """Like :meth:`write`, with the file IO done off the event loop."""
        target = self.guard(path if path.is_absolute() else self.root / path)
        await asyncio.to_thread(_write_text, target, data)
        return self._recorded(target, kind, source)

    def _recorded(self, target: Path, kind: str, source: str) -> Path:
        relative = self.relative(target)
        self.ledger.record(kind, source, relative)
        log(f"Wrote: {relative}", fg="magenta" if kind == "html" else "cyan")
        return target


def _write_text(target: Path, data: str) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(data, encoding="utf-8")
