from __future__ import annotations

from datetime import date
from decimal import Decimal

from true_north.models import RecurringPattern, Transaction
from true_north.safe_balance import calculate_safe_balance, due_date_in_month

TODAY = date(2024, 1, 10)


def _pattern(keyword: str, amount: str, day: int) -> RecurringPattern:
    return RecurringPattern(keyword=keyword, average_amount=Decimal(amount), day_of_month=day)


def test_unpaid_bill_later_this_month_is_deducted():
    result = calculate_safe_balance(
        Decimal("1000"), Decimal("0"), [], [_pattern("RENT", "500", 15)], today=TODAY
    )

    assert result.safe_balance == Decimal("500")
    assert result.total_upcoming_bills == Decimal("500")
    assert len(result.upcoming_bills) == 1
    bill = result.upcoming_bills[0]
    assert bill.description == "RENT"
    assert bill.due_date == date(2024, 1, 15)
    assert bill.overdue is False


def test_bill_paid_this_month_rolls_to_next_month():
    paid = Transaction(id="p", date="2024-01-03", amount=Decimal("-500"), description="RENT")

    result = calculate_safe_balance(
        "1000", "0", [paid], [_pattern("RENT", "500", 15)], today=TODAY
    )

    # 2024-02-15 is beyond the 30-day window from 2024-01-10.
    assert result.upcoming_bills == []
    assert result.safe_balance == Decimal("1000")


def test_paid_bill_due_early_next_month_is_included():
    paid = Transaction(id="p", date="2024-01-02", amount=Decimal("-80"), description="INTERNET")

    result = calculate_safe_balance(
        "1000", "0", [paid], [_pattern("INTERNET", "80", 2)], today=TODAY
    )

    assert [(b.due_date, b.overdue) for b in result.upcoming_bills] == [(date(2024, 2, 2), False)]


def test_unpaid_earlier_day_is_overdue_not_rolled_forward():
    result = calculate_safe_balance(
        "1000", "0", [], [_pattern("INSURANCE", "120", 5)], today=TODAY
    )

    bill = result.upcoming_bills[0]
    assert bill.due_date == date(2024, 1, 5)
    assert bill.overdue is True
    assert result.safe_balance == Decimal("880")


def test_last_year_payment_does_not_count_as_paid():
    old = Transaction(id="o", date="2023-01-03", amount=Decimal("-500"), description="RENT")
    result = calculate_safe_balance("1000", "0", [old], [_pattern("RENT", "500", 15)], today=TODAY)
    assert result.upcoming_bills[0].due_date == date(2024, 1, 15)


def test_savings_reserve_and_negative_result():
    result = calculate_safe_balance(
        "300.50", "250", [], [_pattern("RENT", "500", 15)], today=TODAY
    )
    assert result.reserved_for_savings == Decimal("250")
    assert result.safe_balance == Decimal("-449.50")


def test_bills_sorted_by_due_date():
    patterns = [
        _pattern("PHONE", "40", 28),
        _pattern("GYM", "20", 12),
        _pattern("POWER", "150", 9),
    ]
    result = calculate_safe_balance("1000", "0", [], patterns, today=TODAY)
    assert [b.description for b in result.upcoming_bills] == ["POWER", "GYM", "PHONE"]


def test_due_day_clamped_to_short_month():
    assert due_date_in_month(2024, 2, 31) == date(2024, 2, 29)
    assert due_date_in_month(2023, 2, 30) == date(2023, 2, 28)
    assert due_date_in_month(2024, 4, 31) == date(2024, 4, 30)

    result = calculate_safe_balance(
        "100", "0", [], [_pattern("LOAN", "10", 31)], today=date(2024, 2, 20)
    )
    assert result.upcoming_bills[0].due_date == date(2024, 2, 29)


def test_december_rolls_into_january():
    paid = Transaction(id="p", date="2024-12-01", amount=Decimal("-9"), description="CLOUD")
    result = calculate_safe_balance(
        "100", "0", [paid], [_pattern("CLOUD", "9", 3)], today=date(2024, 12, 20)
    )
    assert result.upcoming_bills[0].due_date == date(2025, 1, 3)
