"""Persistent, namespaced cache for generate scripts.

Each template owns one namespace: a plain dict of ``item -> entry``. An entry
that is a mapping may carry an ``expires`` timestamp in epoch milliseconds;
expired entries are dropped by :meth:`CacheStore.expire` at the start of
every generation pass.

The whole store is kept as a single JSON document, ``<cache_dir>/cache.json``.
"""

from __future__ import annotations

import json
import math
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from .console import log, log_error
from .errors import CacheExpiryError

CACHE_FILE = "cache.json"


def _json_fallback(value: Any) -> Any:
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return None


class CacheStore:
    """Namespaced cache with per-entry expiry.

    Attributes:
        path: Location of the JSON file backing the store.
        data: ``{namespace: {item: entry}}``.
    """

    def __init__(self, cache_dir: Path):
        self.path = cache_dir / CACHE_FILE
        self.data: dict[str, dict[str, Any]] = {}

    def load(self) -> None:
        """Load the cache file if present.

        A missing, empty or corrupt file leaves the store empty.
        """
        if not self.path.exists():
            return
        raw = self.path.read_text(encoding="utf-8")
        if not raw.strip():
            return
        try:
            loaded = json.loads(raw)
        except json.JSONDecodeError as exc:
            log_error(f"Ignoring unreadable cache {self.path}: {exc}")
            return
        if not isinstance(loaded, dict):
            log_error(f"Ignoring cache {self.path}: expected an object")
            return
        self.data = {
            name: items for name, items in loaded.items() if isinstance(items, dict)
        }

    def save(self) -> Path:
        """Write the store to disk, creating the cache directory if needed.

        Values that cannot be represented as JSON are written as ``null``.
        """
        if not self.path.parent.exists():
            log(f"Making cache dir: {self.path.parent}", fg="green")
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            json.dumps(self.data, default=_json_fallback, indent=2), encoding="utf-8"
        )
        log(f"Writing cache: {self.path}", fg="green")
        return self.path

    def namespace(self, name: str) -> dict[str, Any]:
        """Return the live namespace dict for template ``name``."""
        return self.data.setdefault(name, {})

    def merge(self, name: str, items: Mapping[str, Any]) -> None:
        self.namespace(name).update(items)

    def drop(self, name: str) -> None:
        self.data.pop(name, None)

    def expire(self, now_ms: float | None = None) -> dict[str, CacheExpiryError]:
        """Delete entries whose ``expires`` time has passed.

        Entries without ``expires`` (or with a falsy one) never expire. An
        entry whose ``expires`` is not a number is dropped and reported.

        Args:
            now_ms: Current time in epoch milliseconds; defaults to now.

        Returns:
            Errors keyed by the namespace that held an invalid entry.
        """
        if now_ms is None:
            now_ms = time.time() * 1000
        invalid: dict[str, CacheExpiryError] = {}
        for name, items in self.data.items():
            for key in list(items):
                entry = items[key]
                if not isinstance(entry, Mapping):
                    continue
                expires = entry.get("expires")
                if not expires:
                    continue
                if not _is_number(expires):
                    invalid.setdefault(name, CacheExpiryError(name, key, expires))
                    del items[key]
                elif now_ms > expires:
                    log(f"Expired cache item: {name}/{key}", fg="green")
                    del items[key]
        return invalid


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not math.isnan(value)
