"""
Module: ledger_kernel.db.types
Responsibility: Column types and SQL helpers for ledger amounts.
    Centralizes amount precision so that every model and service agrees on it.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere in the ledger kernel.  Amounts are Decimal stored as
      Numeric(38, 9) on PostgreSQL; the engine never rounds.
    - pysqlite has no decimal type and passes NUMERIC values through float,
      so on SQLite amounts are stored as fixed-point text and summed with
      the decimal_sum aggregate (registered per connection by db.engine).
      Stored and summed amounts are therefore exact on both backends.
    - In-process money arithmetic runs in MONEY_CONTEXT, which holds every
      NUMERIC(38, 9) digit and raises Inexact instead of rounding.
"""

from decimal import Context, Decimal, Inexact, InvalidOperation, Overflow

from sqlalchemy import Numeric, String
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql.functions import ReturnTypeFromArgs
from sqlalchemy.types import TypeDecorator

MONEY_PRECISION = 38

MONEY_DECIMAL_PLACES = 9

MONEY_QUANTUM = Decimal(1).scaleb(-MONEY_DECIMAL_PLACES)

# Money arithmetic never rounds; a result needing more digits raises Inexact
MONEY_CONTEXT = Context(prec=2 * MONEY_PRECISION, traps=[InvalidOperation, Inexact, Overflow])

# Largest amount a NUMERIC(38, 9) column holds
MONEY_MAX = MONEY_CONTEXT.subtract(
    Decimal(1).scaleb(MONEY_PRECISION - MONEY_DECIMAL_PLACES), MONEY_QUANTUM
)

ZERO = Decimal("0")

SQLITE_SUM_FUNCTION = "decimal_sum"


def fractional_digits(value: Decimal) -> int:
    """Number of significant fractional digits in a finite Decimal."""
    exponent = value.normalize().as_tuple().exponent
    if not isinstance(exponent, int) or exponent >= 0:
        return 0
    return -exponent


def money_total(values) -> Decimal:
    """Exact sum of an iterable of amounts; ZERO when empty."""
    total = ZERO
    for value in values:
        total = MONEY_CONTEXT.add(total, value)
    return total


def money_to_text(value: Decimal) -> str:
    """Fixed-point text with MONEY_DECIMAL_PLACES places, e.g. '530.000000000'."""
    return format(Decimal(value).quantize(MONEY_QUANTUM, context=MONEY_CONTEXT), "f")


class MoneyType(TypeDecorator):
    """
    Exact Decimal amount column.

    Guarantees:
        - PostgreSQL: NUMERIC(38, 9), values pass through unchanged.
        - SQLite: VARCHAR holding fixed-point text; bind Decimal -> str,
          result str -> Decimal.  No float round trip.
    """

    impl = Numeric(MONEY_PRECISION, MONEY_DECIMAL_PLACES)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(MONEY_PRECISION + 2))
        return dialect.type_descriptor(Numeric(MONEY_PRECISION, MONEY_DECIMAL_PLACES))

    def process_bind_param(self, value, dialect):
        if value is None or dialect.name != "sqlite":
            return value
        return money_to_text(value)

    def process_result_value(self, value, dialect):
        if value is None or dialect.name != "sqlite":
            return value
        return Decimal(value)


class money_sum(ReturnTypeFromArgs):
    """SUM over a MoneyType column, exact on every backend."""

    inherit_cache = True


@compiles(money_sum)
def _compile_money_sum(element, compiler, **kw):
    return f"sum({compiler.process(element.clauses, **kw)})"


@compiles(money_sum, "sqlite")
def _compile_money_sum_sqlite(element, compiler, **kw):
    return f"{SQLITE_SUM_FUNCTION}({compiler.process(element.clauses, **kw)})"


class DecimalSum:
    """
    SQLite aggregate behind money_sum (sqlite3 create_aggregate protocol).

    Returns NULL over no rows, like SUM.
    """

    def __init__(self):
        self.total: Decimal | None = None

    def step(self, value):
        if value is None:
            return
        self.total = MONEY_CONTEXT.add(self.total if self.total is not None else ZERO, Decimal(value))

    def finalize(self):
        if self.total is None:
            return None
        return money_to_text(self.total)
