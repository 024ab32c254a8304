"""Utility functions for Stoke.

Path handling shared by the engine, the writer and the CLI.

Key functions:
    is_template: Check if a path is a Jinja template.
    template_name: Derive a template's name from its path.
    is_within: Check that a path is contained in a root directory.
    fix_path: Normalise a generated page path.
    entry_script_name: File stem of a page's entry script bundle.
    ensure_clean_dir: Ensure a directory exists and is empty.
    copy_tree: Copy a static directory into the output.
"""

from __future__ import annotations

import shutil
from collections.abc import Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

TEMPLATE_SUFFIXES = (".html.jinja", ".jinja")


def is_template(path: Path) -> bool:
    """Return True for ``.jinja`` files, ``.html.jinja`` included."""
    return path.name.endswith(TEMPLATE_SUFFIXES)


def template_name(path: Path, root: Path) -> str | None:
    """Return the template name for ``path`` relative to ``root``.

    The name is the relative path with ``/`` separators and the template
    suffix removed, e.g. ``posts/page.html.jinja`` -> ``posts/page``.

    Args:
        path: Template file path.
        root: Input root directory.

    Returns:
        The template name, or None if ``path`` is not a template under ``root``.
    """
    if not is_template(path):
        return None
    try:
        relative = path.resolve().relative_to(root.resolve()).as_posix()
    except ValueError:
        return None
    for suffix in TEMPLATE_SUFFIXES:
        if relative.endswith(suffix):
            return relative[: -len(suffix)]
    return relative


def is_within(root: Path, path: Path) -> bool:
    """Check whether ``path`` is ``root`` or lies underneath it.

    Both paths are compared as given; callers resolve them first.
    """
    return path == root or root in path.parents


def fix_path(path: str) -> str:
    """Strip a single trailing slash from a generated page path."""
    if path.endswith("/"):
        return path[:-1]
    return path


def last_segment(path: str) -> str:
    return fix_path(path).split("/")[-1]


def entry_script_name(path: str) -> str:
    """Return the entry script stem for a page path.

    The stem is the page path's last segment, or ``main`` for the site root.
    """
    return last_segment(path) or "main"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def json_default(value: Any) -> Any:
    """``default`` hook for :func:`json.dumps` used for script output."""
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def ensure_clean_dir(path: Path) -> None:
    """Create ``path`` if needed and remove everything inside it.

    The directory itself is kept so a web server or watcher pointed at it
    keeps working across builds. Symlinks are unlinked, never followed.
    """
    path.mkdir(parents=True, exist_ok=True)
    for item in path.iterdir():
        if item.is_dir() and not item.is_symlink():
            shutil.rmtree(item)
        else:
            item.unlink()


def copy_tree(source: Path, target: Path) -> int:
    """Copy every file under ``source`` into ``target``.

    Args:
        source: Directory to copy. Missing directories are skipped.
        target: Destination directory, created if needed.

    Returns:
        Number of files copied.
    """
    if not source.is_dir():
        return 0
    shutil.copytree(source, target, dirs_exist_ok=True)
    return sum(1 for item in source.rglob("*") if item.is_file())
