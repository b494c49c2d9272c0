"""Safe-to-spend projection.

``safe_balance = balance - upcoming bills (next 30 days) - savings reserve``

A bill that is due earlier this month and has not been paid yet is kept as
an overdue liability instead of being rolled forward to next month.
"""

from __future__ import annotations

import calendar
from collections.abc import Sequence
from datetime import date, timedelta

from .logging_setup import get_logger
from .models import (
    RecurringPattern,
    SafeBalanceResult,
    Transactions,
    UpcomingBill,
    to_decimal,
)
from .recurring import merchant_key

_logger = get_logger("true_north.safe_balance")

HORIZON_DAYS = 30


def due_date_in_month(year: int, month: int, day_of_month: int) -> date:
    """Return ``day_of_month`` in the given month, clamped to its last day."""

    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(day_of_month, last))


def _next_month(year: int, month: int) -> tuple[int, int]:
    return (year + 1, 1) if month == 12 else (year, month + 1)


def calculate_safe_balance(
    balance: object,
    savings_reserve: object,
    transactions: Transactions,
    patterns: Sequence[RecurringPattern],
    today: date | None = None,
) -> SafeBalanceResult:
    """Project upcoming bills and the balance left for discretionary spend.

    ``balance`` and ``savings_reserve`` accept anything :func:`to_decimal`
    accepts. ``today`` defaults to the local date.
    """

    today = today or date.today()
    bal = to_decimal(balance)
    reserve = to_decimal(savings_reserve)
    horizon = today + timedelta(days=HORIZON_DAYS)

    paid_keys = {
        merchant_key(t)
        for t in transactions
        if t.is_expense
        and (t.posted_on.year, t.posted_on.month) == (today.year, today.month)
    }

    bills: list[UpcomingBill] = []
    for pattern in patterns:
        if pattern.keyword in paid_keys:
            due = due_date_in_month(*_next_month(today.year, today.month), pattern.day_of_month)
            overdue = False
        else:
            due = due_date_in_month(today.year, today.month, pattern.day_of_month)
            overdue = due < today
        if due < horizon:
            bills.append(UpcomingBill(pattern.keyword, pattern.average_amount, due, overdue))

    bills.sort(key=lambda b: b.due_date)
    total = sum((b.amount for b in bills), to_decimal(0))
    _logger.debug(
        "safe_balance:projected today=%s num_bills=%d total=%s", today, len(bills), total
    )
    return SafeBalanceResult(
        safe_balance=bal - total - reserve,
        upcoming_bills=bills,
        reserved_for_savings=reserve,
        total_upcoming_bills=total,
    )


__all__ = ["HORIZON_DAYS", "calculate_safe_balance", "due_date_in_month"]
