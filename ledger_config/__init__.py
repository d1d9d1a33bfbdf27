"""
ledger_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the way to obtain configuration at runtime through
    ``get_active_config()``.  Services never read files or environment
    variables themselves; the bridges in ``ledger_config.bridges`` turn the
    returned ``EngineConfig`` into kernel inputs.

Architecture position:
    Configuration.  Sits above ``ledger_kernel``; the kernel MUST NEVER
    import from ``ledger_config``.

Invariants enforced:
    - The active config is loaded once per process and cached until
      ``reset_active_config()``.
    - Every load emits a ``config_loaded`` log entry carrying the config id,
      version and checksum.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ConfigurationError`` -- invalid content.
"""

from __future__ import annotations

import threading
from pathlib import Path

from ledger_config.loader import load_config, parse_config
from ledger_config.schema import AgingBucketDef, DatabaseConfig, EngineConfig
from ledger_kernel.logging_config import get_logger

_logger = get_logger("config")

_active: EngineConfig | None = None
_lock = threading.Lock()


def get_active_config(path: Path | str | None = None) -> EngineConfig:
    """
    The active engine configuration.

    The first call loads ``path`` (the packaged defaults when None) and
    caches it; later calls return the cached config and ignore ``path``.
    """
    global _active
    with _lock:
        if _active is None:
            config = load_config(path)
            _logger.info(
                "config_loaded",
                extra={
                    "config_id": config.config_id,
                    "config_version": config.version,
                    "checksum": config.checksum,
                    "void_date_policy": config.void_date_policy,
                    "allow_period_reopen": config.allow_period_reopen,
                },
            )
            _active = config
        return _active


def set_active_config(config: EngineConfig) -> None:
    """Replace the active config (tests, embedding applications)."""
    global _active
    with _lock:
        _active = config


def reset_active_config() -> None:
    global _active
    with _lock:
        _active = None


__all__ = [
    "AgingBucketDef",
    "DatabaseConfig",
    "EngineConfig",
    "get_active_config",
    "load_config",
    "parse_config",
    "reset_active_config",
    "set_active_config",
]
