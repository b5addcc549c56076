"""
RoyaltyConfig schema.

The typed form of the YAML configuration.  The loader parses a YAML
document into these frozen dataclasses; every section has defaults, so an
empty document yields a usable configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings passed to ``init_engine_from_url``."""

    url: str = "sqlite:///royalty.db"
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    format: str = "json"  # json | text


@dataclass(frozen=True)
class LedgerConfig:
    # Halt posting for a productora whose chain fails verification
    halt_on_inconsistency: bool = True


@dataclass(frozen=True)
class BatchConfig:
    max_workers: int = 4
    duplicate_policy: str = "allow"  # allow | reject
    unresolved_settlement_policy: str = "reject"  # reject | hold


@dataclass(frozen=True)
class ConflictsConfig:
    split_policy: str = "equal"  # equal | proportional


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RoyaltyConfig:
    """Complete runtime configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    conflicts: ConflictsConfig = field(default_factory=ConflictsConfig)
