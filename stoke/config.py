"""Project configuration for Stoke.

Settings are read from ``stoke.yaml`` in the project root and layered over
:data:`DEFAULT_CONFIG`. Unknown keys are kept so plugins and templates can
read them; known keys are validated lightly.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError

CONFIG_FILE = "stoke.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "input_dir": "templates",
    "data_dir": "data",
    "output_dir": "output",
    "cache_dir": "cache",
    "public_dir": "public",
    "clear_output": True,
    "verbose": False,
    "liveness_interval": 3.0,
    "allowed_modules": [
        "json",
        "math",
        "re",
        "datetime",
        "itertools",
        "functools",
        "collections",
        "string",
        "textwrap",
    ],
    "max_followup_passes": 3,
}


def load_config(project_root: Path) -> dict[str, Any]:
    """Load site configuration from stoke.yaml.

    Args:
        project_root: Root directory of the project.

    Returns:
        Dictionary containing configuration values, with defaults applied.

    Raises:
        ConfigurationError: If the file is not valid YAML or a value has the
            wrong type.
    """
    config_path = project_root / CONFIG_FILE
    config = copy.deepcopy(DEFAULT_CONFIG)
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            try:
                loaded = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(f"{config_path}: {exc}") from exc
            if isinstance(loaded, dict):
                config.update(loaded)
    _validate(config)
    return config


def _validate(config: dict[str, Any]) -> None:
    try:
        config["liveness_interval"] = float(config["liveness_interval"])
        config["max_followup_passes"] = int(config["max_followup_passes"])
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"invalid {CONFIG_FILE} value: {exc}") from exc
    if config["liveness_interval"] <= 0:
        raise ConfigurationError("liveness_interval must be positive")
    if config["max_followup_passes"] < 0:
        raise ConfigurationError("max_followup_passes must not be negative")
    modules = config["allowed_modules"]
    if not isinstance(modules, list) or not all(isinstance(m, str) for m in modules):
        raise ConfigurationError("allowed_modules must be a list of module names")
