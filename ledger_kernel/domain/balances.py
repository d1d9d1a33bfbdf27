"""
Balance arithmetic shared by the balance cache and the reports.

Pure functions, Decimal in and Decimal out, no rounding.
"""

from decimal import Decimal

from ledger_kernel.db.types import MONEY_CONTEXT
from ledger_kernel.models.account import NormalBalance


def compute_natural_balance(
    debit_total: Decimal,
    credit_total: Decimal,
    normal_balance: NormalBalance | str,
) -> Decimal:
    """
    Balance expressed on the account's normal side.

    Debit-normal accounts (assets, cost of goods, expenses): debit - credit.
    Credit-normal accounts (liabilities, equity, revenue): credit - debit.
    A negative result means the account sits on its contra side.  Never rounds.
    """
    if NormalBalance(normal_balance) == NormalBalance.DEBIT:
        return MONEY_CONTEXT.subtract(debit_total, credit_total)
    return MONEY_CONTEXT.subtract(credit_total, debit_total)
