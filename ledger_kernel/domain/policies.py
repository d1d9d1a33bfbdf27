"""
Engine policies -- the behavioral switches of the ledger kernel.

The kernel never reads configuration itself.  ledger_config.bridges turns an
EngineConfig into a LedgerPolicy and hands it to the services.
"""

from dataclasses import dataclass
from enum import Enum


class VoidDatePolicy(str, Enum):
    """Which date a void's mirror entry is posted on."""

    ORIGINAL_DATE = "original_date"
    CURRENT_DATE = "current_date"


@dataclass(frozen=True)
class LedgerPolicy:
    """
    Guarantees:
        - Defaults: mirror entries dated like the original; closed periods
          may be reopened.
    """

    void_date_policy: VoidDatePolicy = VoidDatePolicy.ORIGINAL_DATE
    allow_period_reopen: bool = True
