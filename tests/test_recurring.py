from __future__ import annotations

from decimal import Decimal

from true_north.config import RecurringSettings
from true_north.models import Transaction
from true_north.recurring import (
    _days_consistent,
    detect_recurring,
    mark_recurring_transactions,
    merchant_key,
    round_half_up,
)


def _txn(txn_id: str, date: str, amount: str, description: str, **kw) -> Transaction:
    return Transaction(
        id=txn_id, date=date, amount=Decimal(amount), description=description, **kw
    )


def test_explicit_subscription_survives_price_rise():
    txns = [
        _txn("1", "2024-01-15", "-16.99", "NETFLIX", is_recurring=True),
        _txn("2", "2024-02-15", "-22.99", "NETFLIX", is_recurring=True),
    ]

    patterns = detect_recurring(txns)

    assert len(patterns) == 1
    p = patterns[0]
    assert p.keyword == "NETFLIX"
    assert p.average_amount == Decimal("22.99")
    assert p.day_of_month == 15
    assert p.occurrences == 2


def test_single_explicit_transaction_is_a_pattern():
    txn = _txn("1", "2024-03-02", "-89.00", "AGL ENERGY", is_recurring=True)
    patterns = detect_recurring([txn])
    assert [(p.keyword, p.day_of_month) for p in patterns] == [("AGL ENERGY", 2)]


def test_organic_group_needs_stable_amount_and_day():
    stable = [
        _txn("1", "2024-01-05", "-50.00", "GYM MEMBERSHIP"),
        _txn("2", "2024-02-06", "-51.00", "GYM MEMBERSHIP"),
        _txn("3", "2024-03-04", "-50.00", "GYM MEMBERSHIP"),
    ]
    drifting_amount = [
        _txn("4", "2024-01-10", "-30.00", "CAFE NERO"),
        _txn("5", "2024-02-10", "-45.00", "CAFE NERO"),
    ]
    drifting_day = [
        _txn("6", "2024-01-03", "-10.00", "PARKING"),
        _txn("7", "2024-02-20", "-10.00", "PARKING"),
    ]

    patterns = detect_recurring(stable + drifting_amount + drifting_day)

    assert [p.keyword for p in patterns] == ["GYM MEMBERSHIP"]
    assert patterns[0].day_of_month == 5


def test_single_organic_transaction_is_not_a_pattern():
    assert detect_recurring([_txn("1", "2024-01-05", "-50.00", "GYM MEMBERSHIP")]) == []


def test_income_is_ignored():
    txns = [
        _txn("1", "2024-01-14", "3000.00", "SALARY ACME"),
        _txn("2", "2024-02-14", "3000.00", "SALARY ACME"),
    ]
    assert detect_recurring(txns) == []


def test_days_across_month_boundary_are_consistent():
    cfg = RecurringSettings()
    assert _days_consistent([1, 30], 30, cfg)
    assert _days_consistent([28, 31], 30, cfg)
    assert not _days_consistent([3, 20], 12, cfg)


def test_day_of_month_uses_half_up_mean():
    txns = [
        _txn("1", "2024-01-01", "-20.00", "PHONE PLAN", is_recurring=True),
        _txn("2", "2024-01-30", "-20.00", "PHONE PLAN", is_recurring=True),
    ]
    assert detect_recurring(txns)[0].day_of_month == 16


def test_grouping_is_case_insensitive_and_prefers_merchant_name():
    txns = [
        _txn("1", "2024-01-08", "-15.00", "Spotify P0123"),
        _txn("2", "2024-02-08", "-15.00", "SPOTIFY P0456", merchant_name="spotify p0123"),
    ]
    assert merchant_key(txns[0]) == merchant_key(txns[1]) == "SPOTIFY P0123"
    assert len(detect_recurring(txns)) == 1


def test_patterns_sorted_by_amount_descending():
    txns = [
        _txn("1", "2024-01-01", "-9.99", "SMALL SUB", is_recurring=True),
        _txn("2", "2024-01-01", "-450.00", "RENT", is_recurring=True),
        _txn("3", "2024-01-01", "-60.00", "INTERNET", is_recurring=True),
    ]
    assert [p.keyword for p in detect_recurring(txns)] == ["RENT", "INTERNET", "SMALL SUB"]


def test_settings_control_tolerances():
    txns = [
        _txn("1", "2024-01-10", "-100.00", "WATER BILL"),
        _txn("2", "2024-04-10", "-115.00", "WATER BILL"),
    ]
    assert detect_recurring(txns) == []
    loose = RecurringSettings(amount_tolerance=Decimal("0.10"))
    assert [p.keyword for p in detect_recurring(txns, loose)] == ["WATER BILL"]


def test_mark_recurring_transactions_is_idempotent():
    txns = [
        _txn("1", "2024-01-05", "-50.00", "GYM MEMBERSHIP"),
        _txn("2", "2024-02-05", "-50.00", "GYM MEMBERSHIP"),
        _txn("3", "2024-02-07", "-12.00", "KMART"),
        _txn("4", "2024-02-09", "50.00", "GYM MEMBERSHIP REFUND"),
    ]
    patterns = detect_recurring(txns)

    once = mark_recurring_transactions(txns, patterns)
    twice = mark_recurring_transactions(once, patterns)

    assert [t.is_recurring for t in once] == [True, True, False, False]
    assert once[2] is txns[2]
    assert all(a is b for a, b in zip(once, twice, strict=True))


def test_round_half_up():
    assert round_half_up(15.5) == 16
    assert round_half_up(2.5) == 3
    assert round_half_up(2.49) == 2
