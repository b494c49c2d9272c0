"""Recurring bill detection.

Expenses are grouped by :func:`merchant_key` and each group is tested for a
stable amount and a stable day of month. Groups that the rules or the
classifier already flagged as recurring ("explicit" groups) are always kept,
even with a single occurrence.

The merchant key is deliberately coarse: without a classifier-provided
merchant name it falls back to the first 15 characters of the description,
which can merge unrelated merchants sharing a prefix or split one merchant
whose descriptions vary early on.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import replace
from decimal import ROUND_HALF_UP, Decimal

from .config import RecurringSettings
from .logging_setup import get_logger
from .models import CENT, RecurringPattern, Transaction, Transactions

_logger = get_logger("true_north.recurring")

DESCRIPTION_KEY_LENGTH = 15


def merchant_key(txn: Transaction) -> str:
    """Return the grouping key for ``txn``.

    >>> merchant_key(Transaction("1", "2024-01-01", "-9.99", "NETFLIX.COM MELBOURNE AU"))
    'NETFLIX.COM MEL'
    """

    if txn.merchant_name:
        return txn.merchant_name.upper()
    return txn.description[:DESCRIPTION_KEY_LENGTH].upper().strip()


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _group_expenses(transactions: Transactions) -> dict[str, list[Transaction]]:
    groups: dict[str, list[Transaction]] = {}
    for txn in transactions:
        if not txn.is_expense:
            continue
        groups.setdefault(merchant_key(txn), []).append(txn)
    return groups


def _amounts_consistent(amounts: Sequence[Decimal], tolerance: Decimal) -> bool:
    mean = sum(amounts, Decimal(0)) / len(amounts)
    if mean == 0:
        return False
    return all(abs(a - mean) / mean < tolerance for a in amounts)


def _days_consistent(days: Sequence[int], mean_day: int, settings: RecurringSettings) -> bool:
    # Distances of month_wrap_days or more are the same date across a month
    # boundary (day 1 vs day 30).
    return all(
        abs(d - mean_day) <= settings.day_tolerance
        or abs(d - mean_day) >= settings.month_wrap_days
        for d in days
    )


def detect_recurring(
    transactions: Transactions, settings: RecurringSettings | None = None
) -> list[RecurringPattern]:
    """Derive recurring patterns from ``transactions``.

    ``average_amount`` is the absolute amount of the most recent occurrence,
    so a price rise shows up in projections straight away. Patterns are
    returned highest amount first.
    """

    cfg = settings or RecurringSettings()
    patterns: list[RecurringPattern] = []

    for keyword, txns in _group_expenses(transactions).items():
        explicit = any(t.is_recurring for t in txns)
        if not explicit and len(txns) < cfg.min_occurrences:
            continue

        amounts = [abs(t.amount) for t in txns]
        tolerance = cfg.explicit_amount_tolerance if explicit else cfg.amount_tolerance
        amounts_ok = _amounts_consistent(amounts, tolerance)

        days = [t.posted_on.day for t in txns]
        mean_day = round_half_up(sum(days) / len(days))
        days_ok = _days_consistent(days, mean_day, cfg)

        if not explicit and not (amounts_ok and days_ok):
            continue
        if explicit and not amounts_ok:
            _logger.debug(
                "recurring:explicit_amount_drift keyword=%s occurrences=%d", keyword, len(txns)
            )

        latest = max(txns, key=lambda t: t.posted_on)
        patterns.append(
            RecurringPattern(
                keyword=keyword,
                average_amount=abs(latest.amount).quantize(CENT, rounding=ROUND_HALF_UP),
                day_of_month=mean_day,
                occurrences=len(txns),
            )
        )

    patterns.sort(key=lambda p: p.average_amount, reverse=True)
    return patterns


def mark_recurring_transactions(
    transactions: Transactions, patterns: Sequence[RecurringPattern]
) -> list[Transaction]:
    """Flag expenses whose merchant key matches a pattern as recurring.

    Transactions that are already flagged, or do not match, are returned as
    the same objects, which makes the function idempotent.
    """

    keywords = {p.keyword for p in patterns}
    out: list[Transaction] = []
    for txn in transactions:
        if txn.is_expense and not txn.is_recurring and merchant_key(txn) in keywords:
            out.append(replace(txn, is_recurring=True))
        else:
            out.append(txn)
    return out


__all__ = [
    "DESCRIPTION_KEY_LENGTH",
    "detect_recurring",
    "mark_recurring_transactions",
    "merchant_key",
    "round_half_up",
]
