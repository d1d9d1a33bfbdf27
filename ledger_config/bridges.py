"""
Config -> Kernel Bridges.

Functions that convert an EngineConfig into kernel inputs.  They live here
because the kernel never imports ledger_config.

Usage:
    from ledger_config import get_active_config
    from ledger_config.bridges import build_orchestrator, init_engine_from_config

    config = get_active_config()
    init_engine_from_config(config)
    ledger = build_orchestrator(config)
"""

from __future__ import annotations

from sqlalchemy.engine import Engine

from ledger_config.schema import EngineConfig
from ledger_kernel.db.engine import init_engine_from_url
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dependencies import CloseGuard, DependencyCheck
from ledger_kernel.domain.policies import LedgerPolicy, VoidDatePolicy
from ledger_kernel.reporting.aging import AgeBucket, validate_buckets
from ledger_kernel.services.ledger_orchestrator import LedgerOrchestrator


def build_ledger_policy(config: EngineConfig) -> LedgerPolicy:
    return LedgerPolicy(
        void_date_policy=VoidDatePolicy(config.void_date_policy),
        allow_period_reopen=config.allow_period_reopen,
    )


def build_aging_buckets(config: EngineConfig) -> tuple[AgeBucket, ...]:
    return validate_buckets(
        [AgeBucket(b.name, b.min_days, b.max_days) for b in config.aging_buckets]
    )


def init_engine_from_config(config: EngineConfig) -> Engine:
    """Initialize the process-wide engine from config.database."""
    db = config.database
    return init_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_pre_ping=db.pool_pre_ping,
        pool_timeout=db.pool_timeout,
        pool_recycle=db.pool_recycle,
    )


def build_orchestrator(
    config: EngineConfig,
    session_factory=None,
    clock: Clock | None = None,
    dependency_check: DependencyCheck | None = None,
    close_guard: CloseGuard | None = None,
) -> LedgerOrchestrator:
    """
    A LedgerOrchestrator wired with the configured policy and buckets.

    session_factory defaults to the process-wide one, so
    init_engine_from_config() must have run first in that case.
    """
    return LedgerOrchestrator(
        session_factory=session_factory,
        clock=clock,
        policy=build_ledger_policy(config),
        dependency_check=dependency_check,
        close_guard=close_guard,
        aging_buckets=build_aging_buckets(config),
    )
