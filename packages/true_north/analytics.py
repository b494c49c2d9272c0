"""Spending insights derived from the transaction set.

- :func:`detect_subscriptions` lists subscription merchants and flags price
  rises.
- :func:`detect_surcharges` totals card fees and surcharges for a month.
- :func:`calculate_round_up_savings` estimates what rounding every expense
  up to the next dollar would have saved in a month.

All functions are pure and never mutate their inputs.
"""

from __future__ import annotations

from datetime import date
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal

from .categories import FEES_AND_CHARGES, SUBSCRIPTIONS
from .models import (
    CENT,
    PricePoint,
    RoundUpResult,
    Subscription,
    SurchargeResult,
    Transaction,
    Transactions,
)
from .recurring import merchant_key

SURCHARGE_KEYWORDS: tuple[str, ...] = (
    "SURCHARGE",
    "CARD FEE",
    "INTL TRANS FEE",
    "INTERNATIONAL TRANSACTION",
    "FOREIGN CURRENCY",
    "ATM FEE",
    "CASH ADVANCE FEE",
    "OVERSEAS FEE",
    "FOREIGN TRANSACTION",
    "CURRENCY CONVERSION",
    "PAYMENT PROCESSING FEE",
    "EFTPOS SURCHARGE",
)

PRICE_INCREASE_THRESHOLD = Decimal("0.01")
ROUND_UP_EPSILON = Decimal("0.001")


def _in_month(txn: Transaction, month: date) -> bool:
    posted = txn.posted_on
    return posted.year == month.year and posted.month == month.month


def _cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def detect_subscriptions(transactions: Transactions) -> list[Subscription]:
    """Group subscription expenses by merchant and compare the last two charges.

    A transaction counts when it is flagged recurring or categorized as
    ``Subscriptions``. Results are sorted by name.
    """

    groups: dict[str, list[Transaction]] = {}
    for txn in transactions:
        if not txn.is_expense:
            continue
        if not (txn.is_recurring or txn.category == SUBSCRIPTIONS):
            continue
        groups.setdefault(merchant_key(txn), []).append(txn)

    subs: list[Subscription] = []
    for name, txns in groups.items():
        ordered = sorted(txns, key=lambda t: t.posted_on, reverse=True)
        current = abs(ordered[0].amount)
        previous = abs(ordered[1].amount) if len(ordered) > 1 else None
        subs.append(
            Subscription(
                name=name,
                current_amount=current,
                previous_amount=previous,
                price_increased=previous is not None
                and current - previous > PRICE_INCREASE_THRESHOLD,
                history=tuple(PricePoint(t.date, abs(t.amount)) for t in ordered),
            )
        )

    subs.sort(key=lambda s: s.name.casefold())
    return subs


def detect_surcharges(transactions: Transactions, month: date | None = None) -> SurchargeResult:
    """Total the surcharge and fee expenses dated in ``month``.

    ``month`` is any date inside the month of interest (default: today).
    """

    month = month or date.today()
    hits: list[Transaction] = []
    for txn in transactions:
        if not txn.is_expense or not _in_month(txn, month):
            continue
        upper = txn.description.upper()
        if txn.category == FEES_AND_CHARGES or any(kw in upper for kw in SURCHARGE_KEYWORDS):
            hits.append(txn)
    total = sum((abs(t.amount) for t in hits), Decimal(0))
    return SurchargeResult(total=_cents(total), transactions=hits)


def calculate_round_up_savings(
    transactions: Transactions, month: date | None = None
) -> RoundUpResult:
    """Sum ``ceil(|amount|) - |amount|`` over the expenses dated in ``month``.

    Whole-dollar expenses contribute nothing and are not counted.

    >>> txns = [Transaction("a", "2024-03-02", "-4.30", "CAFE"),
    ...         Transaction("b", "2024-03-05", "-0.50", "PARKING")]
    >>> calculate_round_up_savings(txns, date(2024, 3, 1))
    RoundUpResult(total=Decimal('1.20'), transaction_count=2)
    """

    month = month or date.today()
    total = Decimal(0)
    count = 0
    for txn in transactions:
        if not txn.is_expense or not _in_month(txn, month):
            continue
        spent = abs(txn.amount)
        round_up = spent.to_integral_value(rounding=ROUND_CEILING) - spent
        if round_up > ROUND_UP_EPSILON:
            total += round_up
            count += 1
    return RoundUpResult(total=_cents(total), transaction_count=count)


__all__ = [
    "SURCHARGE_KEYWORDS",
    "calculate_round_up_savings",
    "detect_subscriptions",
    "detect_surcharges",
]
