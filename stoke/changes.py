"""Change notifications delivered to the engine by the watcher."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class TriggerReason(Enum):
    ADDED = "Added"
    MODIFIED = "Modified"
    DELETED = "Deleted"


class ChangeKind(Enum):
    DATA = "data"
    TEMPLATE = "template"


@dataclass(frozen=True)
class ChangeNotification:
    """A single file change.

    Attributes:
        kind: Whether the file lives under the data or the template root.
        path: Absolute path of the changed file.
        reason: What happened to it.
    """

    kind: ChangeKind
    path: Path
    reason: TriggerReason
