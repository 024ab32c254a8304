"""Template records and the registry that holds them."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .protocols import RenderFunction

if TYPE_CHECKING:
    from .sandbox import GenerateScript


@dataclass
class TemplateRecord:
    """Everything the engine knows about one template file.

    Attributes:
        name: Path relative to the input root without the template suffix.
        path: Source file, if the template came from disk.
        front_matter: Parsed YAML front matter.
        render: Compiled render function, or None if compilation failed.
        generate_script: Compiled generate script defined in this template.
        generate_ref: Name of the template whose generate script is reused.
        entry_script: Raw entry script text copied next to generated pages.
    """

    name: str
    path: Path | None = None
    front_matter: dict[str, Any] = field(default_factory=dict)
    render: RenderFunction | None = None
    generate_script: GenerateScript | None = None
    generate_ref: str | None = None
    entry_script: str | None = None

    @property
    def pattern(self) -> str | None:
        value = self.front_matter.get("generate")
        return None if value is None else str(value)

    @property
    def wrapper(self) -> str | None:
        value = self.front_matter.get("wrapper")
        return str(value) if value else None


class TemplateRegistry:
    """Templates keyed by name."""

    def __init__(self) -> None:
        self._records: dict[str, TemplateRecord] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._records

    def __len__(self) -> int:
        return len(self._records)

    def get(self, name: str) -> TemplateRecord | None:
        return self._records.get(name)

    def add(self, record: TemplateRecord) -> None:
        self._records[record.name] = record

    def remove(self, name: str) -> TemplateRecord | None:
        return self._records.pop(name, None)

    def generate_script_for(self, name: str) -> GenerateScript | None:
        """Return the generate script template ``name`` runs.

        A template's own script wins; otherwise the script of the template
        it references with ``generate-use`` is returned.
        """
        record = self._records.get(name)
        if record is None:
            return None
        if record.generate_script is not None:
            return record.generate_script
        if record.generate_ref:
            target = self._records.get(record.generate_ref)
            if target is not None:
                return target.generate_script
        return None

    def wrapper_chain(self, name: str) -> list[str]:
        """Return the wrappers of ``name``, nearest first.

        The walk stops at the first missing template or repeated name.
        """
        chain: list[str] = []
        seen = {name}
        record = self._records.get(name)
        while record is not None and record.wrapper:
            wrapper = record.wrapper
            if wrapper in seen:
                break
            chain.append(wrapper)
            seen.add(wrapper)
            record = self._records.get(wrapper)
        return chain
