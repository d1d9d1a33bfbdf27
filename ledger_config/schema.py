"""
Engine configuration schema.

Frozen dataclasses produced by ``ledger_config.loader`` from YAML.  They
hold plain values only; ``ledger_config.bridges`` turns them into the
kernel's policy and bucket types.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class AgingBucketDef:
    """One aging bucket; None bounds are open-ended."""

    name: str
    min_days: int | None = None
    max_days: int | None = None


DEFAULT_AGING_BUCKETS: tuple[AgingBucketDef, ...] = (
    AgingBucketDef("Current", None, 0),
    AgingBucketDef("1-30", 1, 30),
    AgingBucketDef("31-60", 31, 60),
    AgingBucketDef("61-90", 61, 90),
    AgingBucketDef("Over 90", 91, None),
)


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings handed to ledger_kernel.db.engine."""

    url: str = "sqlite:///ledger.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    pool_pre_ping: bool = True


@dataclass(frozen=True)
class EngineConfig:
    """
    The complete engine configuration.

    checksum identifies the source document (see loader.compute_checksum);
    it is empty for configs built in code.
    """

    config_id: str = "default"
    version: int = 1
    void_date_policy: str = "original_date"
    allow_period_reopen: bool = True
    aging_buckets: tuple[AgingBucketDef, ...] = DEFAULT_AGING_BUCKETS
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    checksum: str = ""
