"""
royalty_config -- single public entrypoint for runtime configuration.

Responsibility:
    ``get_active_config()`` returns the frozen ``RoyaltyConfig`` for this
    process: the YAML file named by ``ROYALTY_CONFIG`` (or an explicit
    path), else the packaged ``defaults.yaml``.  ``ROYALTY_DATABASE_URL``
    overrides ``database.url``.

Architecture position:
    Configuration.  Sits above ``royalty_kernel``; the kernel MUST NEVER
    import from ``royalty_config``.

Failure modes:
    - ``FileNotFoundError`` -- the named configuration file does not exist.
    - ``ConfigurationError`` -- unknown keys or invalid values.
"""

from __future__ import annotations

import os
from dataclasses import replace
from pathlib import Path

from royalty_config.loader import load_config, parse_config
from royalty_config.schema import (
    BatchConfig,
    ConflictsConfig,
    DatabaseConfig,
    LedgerConfig,
    LoggingConfig,
    RoyaltyConfig,
)
from royalty_kernel.logging_config import configure_logging, get_logger

_logger = get_logger("config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

CONFIG_ENV_VAR = "ROYALTY_CONFIG"
DATABASE_URL_ENV_VAR = "ROYALTY_DATABASE_URL"


def get_active_config(path: Path | str | None = None) -> RoyaltyConfig:
    """The public configuration entrypoint.

    Resolution order for the file: ``path``, then ``$ROYALTY_CONFIG``, then
    the packaged defaults.
    """
    source = Path(path or os.environ.get(CONFIG_ENV_VAR) or DEFAULTS_PATH)
    config = load_config(source)

    database_url = os.environ.get(DATABASE_URL_ENV_VAR)
    if database_url:
        config = replace(config, database=replace(config.database, url=database_url))

    _logger.info(
        "config_loaded",
        extra={
            "source": str(source),
            "database_url_override": bool(database_url),
            "duplicate_policy": config.batch.duplicate_policy,
            "split_policy": config.conflicts.split_policy,
        },
    )
    return config


def apply_logging_config(config: RoyaltyConfig) -> None:
    """Configure the royalty_kernel loggers from the ``logging`` section.

    Call before ``init_engine_from_url``; logging setup only takes effect once.
    """
    configure_logging(level=config.logging.level, fmt=config.logging.format)


__all__ = [
    "CONFIG_ENV_VAR",
    "DATABASE_URL_ENV_VAR",
    "DEFAULTS_PATH",
    "BatchConfig",
    "ConflictsConfig",
    "DatabaseConfig",
    "LedgerConfig",
    "LoggingConfig",
    "RoyaltyConfig",
    "apply_logging_config",
    "get_active_config",
    "load_config",
    "parse_config",
]
