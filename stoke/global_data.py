"""Global data shared by every template.

The store holds plain values set by generate script responses. Scripts and
templates never see the store directly: they get a
:class:`GlobalDataAccessor`, which records a dependency edge for every key it
reads so templates are regenerated when a value they used changes.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from .dependencies import DependencyGraph
from .errors import ConfigurationError, UndefinedGlobalError
from .output import FilesWritten

FILES_WRITTEN = "files_written"

_MISSING = object()


class GlobalDataStore:
    """Process-lifetime key/value store.

    The reserved key ``files_written`` always reads as a snapshot of the
    output ledger and cannot be assigned.
    """

    def __init__(self, files_written: FilesWritten):
        self.values: dict[str, Any] = {}
        self.files_written = files_written
        self.missed: set[str] = set()

    def __contains__(self, key: object) -> bool:
        return key == FILES_WRITTEN or key in self.values

    def keys(self) -> list[str]:
        return [*self.values, FILES_WRITTEN]

    def value(self, key: str) -> Any:
        """Return the value for ``key``.

        Raises:
            UndefinedGlobalError: If nothing has set ``key``.
        """
        if key == FILES_WRITTEN:
            return self.files_written.snapshot()
        try:
            return self.values[key]
        except KeyError:
            self.missed.add(key)
            raise UndefinedGlobalError(key) from None

    def assign(self, key: str, value: Any) -> bool:
        """Set ``key``.

        Returns:
            True if this replaced a different value, or set a key that some
            template already looked up while it was undefined. A first-time
            set that nobody asked for is not a change.
        """
        if key == FILES_WRITTEN:
            raise ConfigurationError(f"global key {FILES_WRITTEN!r} is reserved")
        if key in self.values:
            changed = self.values[key] != value
        else:
            changed = key in self.missed
            self.missed.discard(key)
        self.values[key] = value
        return changed


class GlobalDataAccessor:
    """Read-only view of global data that records what template ``name`` reads.

    Keys are available as items and as attributes::

        ctx.inputs.global_data["site_title"]
        {{ global_data.site_title }}

    Every read, including a failed one, records a dependency edge first, so a
    template that failed on a missing key is regenerated once the key is set.
    """

    def __init__(self, store: GlobalDataStore, graph: DependencyGraph, name: str):
        self._store = store
        self._graph = graph
        self._name = name

    def _read(self, key: str) -> Any:
        self._graph.record_global_read(self._name, key)
        return self._store.value(key)

    def get(self, key: str, default: Any = _MISSING) -> Any:
        if default is not _MISSING and key not in self._store:
            self._graph.record_global_read(self._name, key)
            self._store.missed.add(key)
            return default
        return self._read(key)

    def __getitem__(self, key: str) -> Any:
        return self._read(key)

    def __getattr__(self, key: str) -> Any:
        if key.startswith("_"):
            raise AttributeError(key)
        return self._read(key)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        self._graph.record_global_read(self._name, key)
        if key in self._store:
            return True
        self._store.missed.add(key)
        return False

    def keys(self) -> list[str]:
        return self._store.keys()

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __repr__(self) -> str:
        return f"<GlobalDataAccessor for {self._name}>"
