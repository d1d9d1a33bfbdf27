"""
Dependency hooks -- policy seams owned by the business modules.

Responsibility:
    The kernel does not know which business records (payments, allocations,
    settlements) depend on a journal entry or keep a period from closing.
    Callers inject that knowledge as plain callables:

        DependencyCheck = (tenant_id, JournalEntryInfo) -> Sequence[BlockingReference]
        CloseGuard      = (tenant_id, FiscalPeriodInfo) -> Sequence[BlockingReference]

    An empty result means "nothing blocks".  DependencyRegistry composes
    per-reference_kind checks into one DependencyCheck.

Architecture position:
    Kernel > Domain -- pure, zero I/O of its own.
"""

from collections import defaultdict
from typing import Callable, Sequence
from uuid import UUID

from ledger_kernel.domain.dtos import BlockingReference, FiscalPeriodInfo, JournalEntryInfo

DependencyCheck = Callable[[UUID, JournalEntryInfo], Sequence[BlockingReference]]

CloseGuard = Callable[[UUID, FiscalPeriodInfo], Sequence[BlockingReference]]


def no_dependencies(tenant_id: UUID, entry: JournalEntryInfo) -> Sequence[BlockingReference]:
    """Default dependency check: nothing ever blocks a void."""
    return ()


def no_open_dependents(tenant_id: UUID, period: FiscalPeriodInfo) -> Sequence[BlockingReference]:
    """Default close guard: nothing ever blocks a close."""
    return ()


class DependencyRegistry:
    """
    Routes dependency checks by the entry's reference_kind.

    Checks registered under "*" run for every entry.  The registry itself is
    a DependencyCheck and can be passed wherever one is expected.
    """

    WILDCARD = "*"

    def __init__(self) -> None:
        self._checks: dict[str, list[DependencyCheck]] = defaultdict(list)

    def register(self, reference_kind: str, check: DependencyCheck) -> None:
        self._checks[reference_kind].append(check)

    def registered_kinds(self) -> tuple[str, ...]:
        return tuple(sorted(self._checks))

    def __call__(self, tenant_id: UUID, entry: JournalEntryInfo) -> tuple[BlockingReference, ...]:
        blocking: list[BlockingReference] = []
        for kind in (entry.reference_kind, self.WILDCARD):
            for check in self._checks.get(kind, ()):
                blocking.extend(check(tenant_id, entry))
        return tuple(blocking)
