"""Read access to the data directory for generate scripts."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from .console import warn
from .errors import ConfigurationError
from .utils import is_within


class DataFiles:
    """Lists and reads files under the data root.

    Attributes:
        root: Resolved data directory.
    """

    def __init__(self, root: Path):
        self.root = root.resolve()

    def names(self, owner: str, globs: str | Iterable[str] | None = None) -> list[str]:
        """List data files, optionally filtered by glob.

        Args:
            owner: Template asking, used in the warning when nothing matches.
            globs: A glob or list of globs relative to the data root. Without
                globs every file is listed.

        Returns:
            Sorted absolute paths.
        """
        if globs is None:
            patterns = ["**/*"]
        elif isinstance(globs, str):
            patterns = [globs]
        else:
            patterns = list(globs)
        found: set[str] = set()
        if self.root.is_dir():
            for pattern in patterns:
                for path in self.root.glob(pattern):
                    if path.is_file():
                        found.add(str(path))
        if not found:
            warn(f"No data files found for {owner} (globs: {', '.join(patterns)})")
        return sorted(found)

    def absolute(self, path: str | Path) -> Path:
        """Resolve ``path`` against the data root without confining it."""
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.root / candidate
        return candidate.resolve()

    def resolve(self, path: str | Path) -> Path:
        """Resolve ``path`` against the data root.

        Raises:
            ConfigurationError: If the path escapes the data root.
        """
        resolved = self.absolute(path)
        if not is_within(self.root, resolved):
            raise ConfigurationError(f"{path} is outside the data directory {self.root}")
        return resolved

    def read(self, path: str | Path) -> str:
        """Return the text of a data file."""
        return self.resolve(path).read_text(encoding="utf-8")
