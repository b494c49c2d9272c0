"""Data models and type aliases for ``true_north``.

Transactions, rules and recurring patterns are frozen dataclasses: the
categorization and detection functions are pure transforms that return new
instances (via :func:`dataclasses.replace`) instead of mutating their inputs.
Classifier output is parsed into :class:`AnalysisResult`, a Pydantic model, so
shape and range checks live in one place.

Amounts are :class:`~decimal.Decimal` values with the sign convention used by
bank exports: negative for money out (expenses), positive for money in.
Dates are ISO-8601 strings as produced by the CSV normalizers; only the
calendar date portion is significant.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import NamedTuple

from pydantic import BaseModel, ConfigDict, field_validator

from .categories import UNCATEGORIZED

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

CENT = Decimal("0.01")


def to_decimal(raw: object) -> Decimal:
    """Coerce ``raw`` to ``Decimal`` going through ``str`` for floats.

    ``Decimal(0.1)`` keeps binary noise; ``Decimal(str(0.1))`` does not.
    """

    if isinstance(raw, Decimal):
        return raw
    if isinstance(raw, bool) or raw is None:
        raise ValueError(f"invalid amount: {raw!r}")
    try:
        d = Decimal(str(raw).strip())
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {raw!r}") from exc
    if not d.is_finite():
        raise ValueError(f"invalid amount: {raw!r}")
    return d


def parse_iso_date(value: str) -> date:
    """Return the calendar date of an ISO-8601 date or datetime string.

    Plain dates and naive timestamps keep their date portion as printed.
    Timestamps carrying ``Z`` or a UTC offset, as written by app backups
    (local midnight serialized in UTC, e.g. ``2024-01-31T13:00:00.000Z`` for
    1 February in Sydney), are converted to local time first.
    """

    s = value.strip()
    if len(s) < 10:
        raise ValueError(f"invalid ISO date: {value!r}")
    if len(s) > 10:
        try:
            stamp = datetime.fromisoformat(s)
        except ValueError:
            stamp = None
        if stamp is not None and stamp.tzinfo is not None:
            return stamp.astimezone().date()
    return date.fromisoformat(s[:10])


# ---------------------------------------------------------------------------
# Core records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Transaction:
    """A single statement line.

    ``id`` is derived from the statement content at import time (see
    :func:`true_north.normalizers.transaction_id`), so re-importing the same
    file yields the same ids. Categorization only ever changes ``category``,
    ``is_recurring`` and ``merchant_name``.
    """

    id: str
    date: str
    amount: Decimal
    description: str
    category: str = UNCATEGORIZED
    is_recurring: bool = False
    merchant_name: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, "amount", to_decimal(self.amount))

    @property
    def is_expense(self) -> bool:
        return self.amount < 0

    @property
    def posted_on(self) -> date:
        return parse_iso_date(self.date)


@dataclass(frozen=True, slots=True)
class Rule:
    """A user-defined ``keyword -> category`` mapping.

    The keyword is stored trimmed and upper-cased; matching against
    descriptions is case-insensitive.
    """

    id: str
    keyword: str
    category: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "keyword", self.keyword.strip().upper())


@dataclass(frozen=True, slots=True)
class RecurringPattern:
    """A recurring bill derived from the transaction set (never persisted)."""

    keyword: str
    average_amount: Decimal
    day_of_month: int
    occurrences: int = 1

    def __post_init__(self) -> None:
        if not isinstance(self.average_amount, Decimal):
            object.__setattr__(self, "average_amount", to_decimal(self.average_amount))
        if not 1 <= self.day_of_month <= 31:
            raise ValueError(f"day_of_month must be within 1..31, got {self.day_of_month}")


class AnalysisResult(BaseModel):
    """One classifier decision for one transaction.

    Produced by :mod:`true_north.llm` (or its fallbacks) and consumed once by
    the categorization workflow to patch the matching transaction.
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    category: str
    clean_merchant_name: str
    is_subscription: bool = False
    is_recurring: bool = False
    confidence: float = 0.0
    reasoning: str = ""

    @field_validator("confidence")
    @classmethod
    def _confidence_in_unit_interval(cls, v: float) -> float:
        fv = float(v)
        if 0.0 <= fv <= 1.0:
            return fv
        raise ValueError("confidence must be within [0,1]")


# ---------------------------------------------------------------------------
# Derived/analytics results
# ---------------------------------------------------------------------------


class UpcomingBill(NamedTuple):
    description: str
    amount: Decimal
    due_date: date
    overdue: bool = False


class SafeBalanceResult(NamedTuple):
    safe_balance: Decimal
    upcoming_bills: list[UpcomingBill]
    reserved_for_savings: Decimal
    total_upcoming_bills: Decimal


class PricePoint(NamedTuple):
    date: str
    amount: Decimal


@dataclass(frozen=True, slots=True)
class Subscription:
    """A subscription merchant with its latest and previous charge."""

    name: str
    current_amount: Decimal
    previous_amount: Decimal | None
    price_increased: bool
    history: tuple[PricePoint, ...] = field(default_factory=tuple)


class SurchargeResult(NamedTuple):
    total: Decimal
    transactions: list[Transaction]


class RoundUpResult(NamedTuple):
    total: Decimal
    transaction_count: int


type Transactions = Sequence[Transaction]
"""Any ordered collection of transactions; functions return plain lists."""

type Rules = Sequence[Rule]


__all__ = [
    "CENT",
    "AnalysisResult",
    "PricePoint",
    "RecurringPattern",
    "RoundUpResult",
    "Rule",
    "Rules",
    "SafeBalanceResult",
    "Subscription",
    "SurchargeResult",
    "Transaction",
    "Transactions",
    "UpcomingBill",
    "parse_iso_date",
    "to_decimal",
]
