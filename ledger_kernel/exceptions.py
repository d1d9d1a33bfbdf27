"""
Typed Exception Hierarchy for the Ledger Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of a ledger must react to failures precisely: a closed period means
"pick another date", an unbalanced entry means "fix the caller", a conflict
means "try again".  Parsing message strings for that is fragile, so every
failure the kernel reports has:

  1. A TYPED exception class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured DATA attributes (not just a message string)

Example:
    try:
        engine.post(tenant_id, entry_date, ...)
    except ClosedPeriodError as e:
        api_response(code=e.code, date=e.entry_date)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerKernelError (base)
    |
    +-- PostingError
    |   +-- UnbalancedEntryError
    |   +-- MalformedLineError
    |   +-- InvalidAccountError
    |       +-- UnknownAccountError
    |
    +-- PeriodError
    |   +-- ClosedPeriodError
    |   |   +-- PeriodNotFoundError
    |   +-- PeriodOverlapError
    |   +-- DuplicatePeriodCodeError
    |   +-- InvalidPeriodTransitionError
    |   +-- PeriodImmutableError
    |   +-- PeriodHasOpenDependentsError
    |
    +-- AccountError
    |   +-- AccountNotFoundError
    |   +-- DuplicateAccountCode
    |   +-- ProtectedAccountError
    |   +-- AccountHierarchyError
    |
    +-- ReversalError
    |   +-- EntryNotFoundError
    |   +-- AlreadyVoidedError
    |   +-- VoidBlockedError
    |
    +-- ConcurrencyError
    |   +-- TransactionConflictError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Posting         | UNBALANCED_ENTRY            | Debits != Credits
                | MALFORMED_LINE              | Bad line shape or amount
                | INVALID_ACCOUNT             | Account can't be posted to
                | UNKNOWN_ACCOUNT             | Account unknown to tenant or inactive
----------------|-----------------------------|-----------------------------------------
Period          | CLOSED_PERIOD               | Posting into a non-open period
                | PERIOD_NOT_FOUND            | No period covers this date
                | PERIOD_OVERLAP              | Date range conflicts
                | DUPLICATE_PERIOD_CODE       | Period code already used by tenant
                | INVALID_PERIOD_TRANSITION   | Lifecycle step not allowed from status
                | PERIOD_IMMUTABLE            | Locked period, or reopen disabled
                | PERIOD_HAS_OPEN_DEPENDENTS  | Close guard reported blockers
----------------|-----------------------------|-----------------------------------------
Account         | ACCOUNT_NOT_FOUND           | Account ID doesn't exist
                | DUPLICATE_ACCOUNT_CODE      | Code already used by tenant
                | PROTECTED_ACCOUNT           | System account, or non-zero balance
                | ACCOUNT_HIERARCHY           | Parent in another category
----------------|-----------------------------|-----------------------------------------
Reversal        | ENTRY_NOT_FOUND             | Entry ID unknown to tenant
                | ALREADY_VOIDED              | Entry was already voided
                | VOID_BLOCKED                | Dependent records prevent the void
----------------|-----------------------------|-----------------------------------------
Concurrency     | TRANSACTION_CONFLICT        | Deadlock / lock timeout / race (retry)
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying an immutable record
----------------|-----------------------------|-----------------------------------------
Configuration   | CONFIGURATION_ERROR         | Invalid engine configuration

===============================================================================
HANDLING PATTERNS
===============================================================================

1. CATCH SPECIFIC EXCEPTIONS, then the category:

    except ClosedPeriodError as e:
        notify_user(f"Period for {e.entry_date} is not open")
    except PostingError as e:
        log.error("posting_failed", extra={"code": e.code})

2. RETRY ONLY WHAT IS RETRYABLE:

    except LedgerKernelError as e:
        if e.retryable:
            ...  # see LedgerOrchestrator.run_with_retry

3. SERIALIZE FOR APIS with to_dict():

    except VoidBlockedError as e:
        return 409, e.to_dict()
"""

from datetime import date
from decimal import Decimal
from typing import Any, Sequence


class LedgerKernelError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_KERNEL_ERROR"
    retryable: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Code, message and the structured attributes of this error."""
        payload: dict[str, Any] = {"code": self.code, "message": str(self)}
        for key, value in vars(self).items():
            if not key.startswith("_"):
                payload[key] = value
        return payload


# Posting-related exceptions


class PostingError(LedgerKernelError):
    """Base exception for posting-related errors."""

    code: str = "POSTING_ERROR"


class UnbalancedEntryError(PostingError):
    """Journal entry debits do not equal credits."""

    code: str = "UNBALANCED_ENTRY"

    def __init__(self, debits: Decimal, credits: Decimal):
        self.debits = debits
        self.credits = credits
        super().__init__(f"Unbalanced entry: debits={debits}, credits={credits}")


class MalformedLineError(PostingError):
    """
    A line (or the line set) has an invalid shape.

    Raised for: no lines, a single line, both or neither side positive,
    negative amounts, float amounts, non-finite amounts, too many decimals.
    """

    code: str = "MALFORMED_LINE"

    def __init__(self, line_no: int | None, reason: str):
        self.line_no = line_no
        self.reason = reason
        where = f"line {line_no}" if line_no is not None else "entry"
        super().__init__(f"Malformed {where}: {reason}")


class InvalidAccountError(PostingError):
    """Account is invalid for posting."""

    code: str = "INVALID_ACCOUNT"

    def __init__(self, account_id: str, reason: str):
        self.account_id = account_id
        self.reason = reason
        super().__init__(f"Invalid account {account_id}: {reason}")


class UnknownAccountError(InvalidAccountError):
    """Account does not exist for this tenant, or is inactive."""

    code: str = "UNKNOWN_ACCOUNT"


# Period-related exceptions


class PeriodError(LedgerKernelError):
    """Base exception for period-related errors."""

    code: str = "PERIOD_ERROR"


class ClosedPeriodError(PeriodError):
    """Attempted to post into a period that is not open."""

    code: str = "CLOSED_PERIOD"

    def __init__(
        self,
        entry_date: date,
        period_code: str | None = None,
        status: str | None = None,
    ):
        self.entry_date = entry_date
        self.period_code = period_code
        self.status = status
        if period_code is None:
            message = f"No open fiscal period covers {entry_date}"
        else:
            message = f"Fiscal period {period_code} is {status}; cannot post {entry_date}"
        super().__init__(message)


class PeriodNotFoundError(ClosedPeriodError):
    """No fiscal period exists for the given date or id."""

    code: str = "PERIOD_NOT_FOUND"

    def __init__(self, entry_date: date | None = None, period_id: str | None = None):
        self.period_id = period_id
        if entry_date is None:
            self.entry_date = None
            self.period_code = None
            self.status = None
            PeriodError.__init__(self, f"Fiscal period not found: {period_id}")
        else:
            super().__init__(entry_date)


class PeriodOverlapError(PeriodError):
    """Period date range overlaps with an existing period."""

    code: str = "PERIOD_OVERLAP"

    def __init__(self, new_period: str, existing_period: str):
        self.new_period = new_period
        self.existing_period = existing_period
        super().__init__(
            f"Period {new_period} overlaps with existing period {existing_period}"
        )


class DuplicatePeriodCodeError(PeriodError):
    """Period code already used by the tenant."""

    code: str = "DUPLICATE_PERIOD_CODE"

    def __init__(self, period_code: str):
        self.period_code = period_code
        super().__init__(f"Period code already exists: {period_code}")


class InvalidPeriodTransitionError(PeriodError):
    """Lifecycle transition is not allowed from the current status."""

    code: str = "INVALID_PERIOD_TRANSITION"

    def __init__(self, period_code: str, from_status: str, to_status: str):
        self.period_code = period_code
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Period {period_code} cannot move from {from_status} to {to_status}"
        )


class PeriodImmutableError(PeriodError):
    """Attempted to modify a period that may no longer change."""

    code: str = "PERIOD_IMMUTABLE"

    def __init__(self, period_code: str, operation: str):
        self.period_code = period_code
        self.operation = operation
        super().__init__(f"Cannot {operation} period {period_code}: period is immutable")


class PeriodHasOpenDependentsError(PeriodError):
    """The close guard reported records that must be settled first."""

    code: str = "PERIOD_HAS_OPEN_DEPENDENTS"

    def __init__(self, period_code: str, dependents: Sequence[Any]):
        self.period_code = period_code
        self.dependents = tuple(dependents)
        super().__init__(
            f"Period {period_code} has {len(self.dependents)} open dependent(s)"
        )


# Account-related exceptions


class AccountError(LedgerKernelError):
    """Base exception for account-related errors."""

    code: str = "ACCOUNT_ERROR"


class AccountNotFoundError(AccountError):
    """Account with given ID was not found."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class DuplicateAccountCode(AccountError):
    """Account code already used by the tenant."""

    code: str = "DUPLICATE_ACCOUNT_CODE"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(f"Account code already exists: {account_code}")


class ProtectedAccountError(AccountError):
    """Account cannot be deactivated."""

    code: str = "PROTECTED_ACCOUNT"

    def __init__(self, account_id: str, reason: str):
        self.account_id = account_id
        self.reason = reason
        super().__init__(f"Account {account_id} is protected: {reason}")


class AccountHierarchyError(AccountError):
    """Parent account is not a valid parent for this account."""

    code: str = "ACCOUNT_HIERARCHY"

    def __init__(self, account_code: str, parent_id: str, reason: str):
        self.account_code = account_code
        self.parent_id = parent_id
        self.reason = reason
        super().__init__(
            f"Invalid parent {parent_id} for account {account_code}: {reason}"
        )


# Reversal-related exceptions


class ReversalError(LedgerKernelError):
    """Base exception for void/reversal errors."""

    code: str = "REVERSAL_ERROR"


class EntryNotFoundError(ReversalError):
    """Journal entry not found for this tenant."""

    code: str = "ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Journal entry not found: {entry_id}")


class AlreadyVoidedError(ReversalError):
    """Journal entry has already been voided."""

    code: str = "ALREADY_VOIDED"

    def __init__(self, entry_id: str, reversal_entry_id: str | None = None):
        self.entry_id = entry_id
        self.reversal_entry_id = reversal_entry_id
        super().__init__(
            f"Journal entry {entry_id} already voided by {reversal_entry_id}"
        )


class VoidBlockedError(ReversalError):
    """Downstream records depend on the entry; it cannot be voided."""

    code: str = "VOID_BLOCKED"

    def __init__(self, entry_id: str, blocking: Sequence[Any]):
        self.entry_id = entry_id
        self.blocking = tuple(blocking)
        super().__init__(
            f"Journal entry {entry_id} is referenced by "
            f"{len(self.blocking)} dependent record(s)"
        )


# Concurrency-related exceptions


class ConcurrencyError(LedgerKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class TransactionConflictError(ConcurrencyError):
    """
    The transaction lost a race (deadlock, lock timeout, serialization
    failure, duplicate counter row).  Nothing was committed; retrying the
    whole operation is safe.
    """

    code: str = "TRANSACTION_CONFLICT"
    retryable: bool = True

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Transaction conflict during {operation}: {detail}")


# Immutability exceptions


class ImmutabilityError(LedgerKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify a record that may not change."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )


# Configuration


class ConfigurationError(LedgerKernelError):
    """Engine configuration is invalid."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid configuration for {field}: {reason}")
