"""
Configuration Loader (``ledger_config.loader``).

Responsibility
--------------
Loads the engine YAML document and parses it into the frozen dataclasses of
``ledger_config.schema``.  Runtime callers go through
``ledger_config.get_active_config()``.

Invariants enforced
-------------------
* Unknown keys and ill-typed values raise ``ConfigurationError`` naming the
  offending field; there are no silent fallbacks for present-but-invalid
  values.
* Aging buckets are checked for contiguity at load time.
* ``LEDGER_DATABASE_URL`` in the environment overrides ``database.url``.
* ``compute_checksum`` is a deterministic SHA-256 over the source document
  (before the environment override), for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid content  -> ``ConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
import os
from pathlib import Path
from typing import Any, Mapping

import yaml

from ledger_config.schema import (
    DEFAULT_AGING_BUCKETS,
    AgingBucketDef,
    DatabaseConfig,
    EngineConfig,
)
from ledger_kernel.domain.policies import VoidDatePolicy
from ledger_kernel.exceptions import ConfigurationError
from ledger_kernel.reporting.aging import AgeBucket, validate_buckets

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

DATABASE_URL_ENV = "LEDGER_DATABASE_URL"

_TOP_LEVEL_KEYS = frozenset(
    {
        "config_id",
        "version",
        "void_date_policy",
        "allow_period_reopen",
        "aging_buckets",
        "database",
    }
)

_DATABASE_KEYS = frozenset(
    {"url", "echo", "pool_size", "max_overflow", "pool_timeout", "pool_recycle", "pool_pre_ping"}
)


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
        raise ConfigurationError("<root>", f"expected a mapping, got {type(data).__name__}")
    return data


def compute_checksum(data: Mapping[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of data."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _check_keys(section: str, data: Mapping[str, Any], allowed: frozenset[str]) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ConfigurationError(section, f"unknown keys: {', '.join(unknown)}")


def _bool(field: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ConfigurationError(field, f"expected true/false, got {value!r}")
    return value


def _int(field: str, value: Any, minimum: int = 0) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(field, f"expected an integer, got {value!r}")
    if value < minimum:
        raise ConfigurationError(field, f"must be >= {minimum}, got {value}")
    return value


def _optional_int(field: str, value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(field, f"expected an integer or null, got {value!r}")
    return value


def parse_aging_buckets(data: Any) -> tuple[AgingBucketDef, ...]:
    if not isinstance(data, list):
        raise ConfigurationError("aging_buckets", "expected a list of buckets")
    buckets = []
    for index, item in enumerate(data):
        field = f"aging_buckets[{index}]"
        if not isinstance(item, dict):
            raise ConfigurationError(field, "expected a mapping")
        _check_keys(field, item, frozenset({"name", "min_days", "max_days"}))
        name = item.get("name")
        if not isinstance(name, str) or not name:
            raise ConfigurationError(f"{field}.name", "a non-empty name is required")
        buckets.append(
            AgingBucketDef(
                name=name,
                min_days=_optional_int(f"{field}.min_days", item.get("min_days")),
                max_days=_optional_int(f"{field}.max_days", item.get("max_days")),
            )
        )
    validate_buckets([AgeBucket(b.name, b.min_days, b.max_days) for b in buckets])
    return tuple(buckets)


def parse_database(data: Any, environ: Mapping[str, str] | None = None) -> DatabaseConfig:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError("database", "expected a mapping")
    _check_keys("database", data, _DATABASE_KEYS)

    defaults = DatabaseConfig()
    environ = os.environ if environ is None else environ
    url = environ.get(DATABASE_URL_ENV) or data.get("url", defaults.url)
    if not isinstance(url, str) or not url:
        raise ConfigurationError("database.url", "a non-empty URL is required")

    return DatabaseConfig(
        url=url,
        echo=_bool("database.echo", data.get("echo", defaults.echo)),
        pool_size=_int("database.pool_size", data.get("pool_size", defaults.pool_size), 1),
        max_overflow=_int("database.max_overflow", data.get("max_overflow", defaults.max_overflow)),
        pool_timeout=_int("database.pool_timeout", data.get("pool_timeout", defaults.pool_timeout)),
        pool_recycle=_int("database.pool_recycle", data.get("pool_recycle", defaults.pool_recycle)),
        pool_pre_ping=_bool(
            "database.pool_pre_ping", data.get("pool_pre_ping", defaults.pool_pre_ping)
        ),
    )


def parse_config(
    data: Mapping[str, Any], environ: Mapping[str, str] | None = None
) -> EngineConfig:
    """
    Parse an EngineConfig from a dict.

    Missing keys take the schema defaults; present keys must be valid.
    """
    _check_keys("<root>", data, _TOP_LEVEL_KEYS)

    void_date_policy = data.get("void_date_policy", VoidDatePolicy.ORIGINAL_DATE.value)
    valid_policies = sorted(p.value for p in VoidDatePolicy)
    if void_date_policy not in valid_policies:
        raise ConfigurationError(
            "void_date_policy",
            f"expected one of {', '.join(valid_policies)}, got {void_date_policy!r}",
        )

    config_id = data.get("config_id", "default")
    if not isinstance(config_id, str) or not config_id:
        raise ConfigurationError("config_id", "a non-empty string is required")

    buckets = (
        parse_aging_buckets(data["aging_buckets"])
        if "aging_buckets" in data
        else DEFAULT_AGING_BUCKETS
    )

    return EngineConfig(
        config_id=config_id,
        version=_int("version", data.get("version", 1), 1),
        void_date_policy=void_date_policy,
        allow_period_reopen=_bool("allow_period_reopen", data.get("allow_period_reopen", True)),
        aging_buckets=buckets,
        database=parse_database(data.get("database"), environ),
        checksum=compute_checksum(data),
    )


def load_config(
    path: Path | str | None = None, environ: Mapping[str, str] | None = None
) -> EngineConfig:
    """Load and parse a configuration file; the packaged defaults when path is None."""
    return parse_config(load_yaml_file(Path(path) if path else DEFAULTS_PATH), environ)
