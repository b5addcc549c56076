"""
Configuration Loader (``royalty_config.loader``).

Responsibility
--------------
Loads a YAML configuration document and parses it into the typed
``royalty_config.schema`` dataclasses.  Runtime callers go through
``royalty_config.get_active_config()``.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  Depends on royalty_kernel only
for ``ConfigurationError``; the kernel never imports royalty_config.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Unknown sections or keys are refused, never ignored.
* Policy values are checked against their closed sets.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key, wrong type, or invalid policy value  -> ``ConfigurationError``.
"""

from __future__ import annotations

from dataclasses import fields, replace
from pathlib import Path
from typing import Any

import yaml

from royalty_config.schema import (
    BatchConfig,
    ConflictsConfig,
    DatabaseConfig,
    LedgerConfig,
    LoggingConfig,
    RoyaltyConfig,
)
from royalty_kernel.exceptions import ConfigurationError

_SECTIONS: dict[str, type] = {
    "database": DatabaseConfig,
    "logging": LoggingConfig,
    "ledger": LedgerConfig,
    "batch": BatchConfig,
    "conflicts": ConflictsConfig,
}

_CHOICES: dict[str, frozenset[str]] = {
    "batch.duplicate_policy": frozenset({"allow", "reject"}),
    "batch.unresolved_settlement_policy": frozenset({"reject", "hold"}),
    "conflicts.split_policy": frozenset({"equal", "proportional"}),
    "logging.level": frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}),
    "logging.format": frozenset({"json", "text"}),
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ConfigurationError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top level must be a mapping")
    return data


def _coerce(path: str, value: Any, expected: Any) -> Any:
    if isinstance(expected, bool):
        if not isinstance(value, bool):
            raise ConfigurationError(path, f"expected true/false, got {value!r}")
        return value
    if isinstance(expected, int):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigurationError(path, f"expected an integer, got {value!r}")
        if value < 0 or (path == "batch.max_workers" and value < 1):
            raise ConfigurationError(path, f"out of range: {value}")
        return value
    if not isinstance(value, str):
        raise ConfigurationError(path, f"expected a string, got {value!r}")
    if path == "logging.level":
        value = value.upper()
    choices = _CHOICES.get(path)
    if choices is not None and value not in choices:
        raise ConfigurationError(path, f"{value!r} is not one of {sorted(choices)}")
    return value


def parse_section(name: str, data: Any) -> Any:
    """Parse one top-level section into its dataclass."""
    section_type = _SECTIONS[name]
    default = section_type()
    if data is None:
        return default
    if not isinstance(data, dict):
        raise ConfigurationError(name, "section must be a mapping")

    known = {f.name for f in fields(section_type)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(name, f"unknown key(s): {', '.join(map(str, unknown))}")

    values = {
        key: _coerce(f"{name}.{key}", value, getattr(default, key))
        for key, value in data.items()
    }
    return replace(default, **values)


def parse_config(data: dict[str, Any]) -> RoyaltyConfig:
    """
    Parse a configuration mapping.

    Postconditions:
        - Missing sections and keys take their schema defaults.
    Raises:
        ConfigurationError: unknown section/key or invalid value.
    """
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ConfigurationError("<root>", f"unknown section(s): {', '.join(map(str, unknown))}")
    return RoyaltyConfig(**{name: parse_section(name, data.get(name)) for name in _SECTIONS})


def load_config(path: Path | str) -> RoyaltyConfig:
    """Load and parse the YAML configuration at ``path``."""
    return parse_config(load_yaml_file(Path(path)))
