from __future__ import annotations

from decimal import Decimal

import pytest

from true_north.normalizers import (
    NO_DATA,
    NO_TRANSACTIONS,
    UNKNOWN_FORMAT,
    Bank,
    CSVNormalizer,
    _to_decimal,
    detect_bank,
    transaction_id,
)

COMMBANK_CSV = """Date,Amount,Description,Balance
25/01/2024,-45.00,WOOLWORTHS 1234 SYDNEY,1200.00
28/01/2024,-10.00,UBER TRIP,1190.00
14/01/2024,2500.00,SALARY ACME,1245.00
"""

NAB_CSV = """Date,Transaction Type,Debit,Credit,Balance
01/01/2024,Grocery,50.00,,950.00
02/01/2024,Salary,,100.00,1050.00
"""

WESTPAC_CSV = """Bank Account,Date,Narrative,Debit Amount,Credit Amount,Balance,Categories,Serial
032000 123456,03/03/2024,NETFLIX.COM,22.99,,500.00,OTHER,
032000 123456,01/03/2024,SALARY,,1500.00,522.99,INC,
"""

SUNCORP_CSV = """"Account History for Account:","Everyday Options 123456"
"3 items",""
"12/03/2024","COLES 1234","-56.40","943.60"
"11/03/2024","TRANSFER FROM SAVINGS","200.00","1000.00"
"10/03/2024","BAD ROW","abc","800.00"
"""

ANZ_CSV = """Date,Particulars,Debit,Balance
02/04/2024,KMART,19.00,81.00
03/04/2024,BP,40.00,41.00
"""


@pytest.mark.parametrize(
    ("headers", "bank"),
    [
        (["Date", "Amount", "Description", "Balance"], Bank.COMMBANK),
        (["Date", "Debit", "Credit", "Balance"], Bank.NAB),
        (["Bank Account", "Date", "Narrative"], Bank.WESTPAC),
        (["Date", "Transaction Details", "Particulars"], Bank.ANZ),
        (["Account History for Account:", "Everyday"], Bank.SUNCORP),
        (["date", "debit"], Bank.COMMBANK),
        (["Foo", "Bar"], Bank.UNKNOWN),
    ],
)
def test_detect_bank(headers, bank):
    assert detect_bank(headers) is bank


def test_commbank_balance_comes_from_latest_row():
    result = CSVNormalizer.parse(COMMBANK_CSV)

    assert result.bank is Bank.COMMBANK
    assert result.errors == []
    assert [t.date for t in result.transactions] == ["2024-01-25", "2024-01-28", "2024-01-14"]
    assert [t.amount for t in result.transactions] == [
        Decimal("-45.00"),
        Decimal("-10.00"),
        Decimal("2500.00"),
    ]
    assert result.balance == Decimal("1190.00")
    assert {t.category for t in result.transactions} == {"Uncategorized"}


def test_nab_debit_and_credit_columns():
    result = CSVNormalizer.parse(NAB_CSV)

    assert result.bank is Bank.NAB
    assert [(t.description, t.amount) for t in result.transactions] == [
        ("Grocery", Decimal("-50.00")),
        ("Salary", Decimal("100.00")),
    ]
    assert result.balance == Decimal("1050.00")


def test_anz_with_debit_and_credit_keeps_description():
    csv_text = (
        "Date,Transaction Details,Debit,Credit,Balance\n"
        "05/04/2024,ALDI STORES,30.00,,70.00\n"
    )
    result = CSVNormalizer.parse(csv_text)

    assert result.bank is Bank.NAB
    assert result.transactions[0].description == "ALDI STORES"
    assert result.transactions[0].amount == Decimal("-30.00")


def test_westpac():
    result = CSVNormalizer.parse(WESTPAC_CSV)

    assert result.bank is Bank.WESTPAC
    assert [(t.description, t.amount) for t in result.transactions] == [
        ("NETFLIX.COM", Decimal("-22.99")),
        ("SALARY", Decimal("1500.00")),
    ]
    assert result.balance == Decimal("500.00")


def test_anz_balance_comes_from_first_row():
    result = CSVNormalizer.parse(ANZ_CSV)

    assert result.bank is Bank.ANZ
    assert [t.description for t in result.transactions] == ["KMART", "BP"]
    assert result.balance == Decimal("81.00")


def test_suncorp_skips_metadata_lines():
    result = CSVNormalizer.parse(SUNCORP_CSV)

    assert result.bank is Bank.SUNCORP
    assert [(t.date, t.description, t.amount) for t in result.transactions] == [
        ("2024-03-12", "COLES 1234", Decimal("-56.40")),
        ("2024-03-11", "TRANSFER FROM SAVINGS", Decimal("200.00")),
    ]
    assert result.balance == Decimal("943.60")


@pytest.mark.parametrize(
    ("csv_text", "bank", "error"),
    [
        ("", Bank.UNKNOWN, NO_DATA),
        ("Foo,Bar\n1,2\n", Bank.UNKNOWN, UNKNOWN_FORMAT),
        ("Date,Amount,Description,Balance\n01/01/2024,invalid,Coffee,1000.00\n", Bank.COMMBANK,
         NO_TRANSACTIONS),
    ],
)
def test_errors_are_reported_not_raised(csv_text, bank, error):
    result = CSVNormalizer.parse(csv_text)
    assert result.bank is bank
    assert result.transactions == []
    assert result.errors == [error]


@pytest.mark.parametrize("raw", ["01/01/2024", "1/1/2024", "01-01-2024", "1 Jan 2024", "1 Jan 24"])
def test_date_formats(raw):
    result = CSVNormalizer.parse(f"Date,Amount,Description\n{raw},-10,Test\n")
    assert [t.date for t in result.transactions] == ["2024-01-01"]


def test_rows_without_date_or_amount_are_dropped():
    csv_text = (
        "Date,Amount,Description,Balance\n"
        "not a date,-5.00,A,10.00\n"
        ",-5.00,B,10.00\n"
        "02/02/2024,0.00,ZERO,10.00\n"
        "02/02/2024,,EMPTY,10.00\n"
        '03/02/2024,-5.00,"CAFE, SYDNEY",5.00\n'
    )
    result = CSVNormalizer.parse(csv_text)
    assert [t.description for t in result.transactions] == ["CAFE, SYDNEY"]


def test_ids_are_stable_across_imports():
    first = CSVNormalizer.parse(COMMBANK_CSV)
    second = CSVNormalizer.parse(COMMBANK_CSV)
    assert [t.id for t in first.transactions] == [t.id for t in second.transactions]
    assert len({t.id for t in first.transactions}) == 3


def test_same_purchase_twice_in_a_day_gets_distinct_ids():
    csv_text = (
        "Date,Amount,Description,Balance\n"
        "05/05/2024,-4.50,COFFEE,95.50\n"
        "05/05/2024,-4.50,COFFEE,91.00\n"
    )
    ids = [t.id for t in CSVNormalizer.parse(csv_text).transactions]
    assert len(set(ids)) == 2


def test_transaction_id_normalizes_amount_precision():
    a = transaction_id("2024-01-01", Decimal("-10.5"), "X")
    b = transaction_id("2024-01-01", Decimal("-10.50"), "X")
    assert a == b
    assert len(a) == 16 and int(a, 16) >= 0
    assert transaction_id("2024-01-01", Decimal("-10.50"), "X", Decimal("1")) != a


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("-$1,234.56", Decimal("-1234.56")),
        ("(12.00)", Decimal("-12.00")),
        ("+$5", Decimal("5")),
        ("abc", None),
        ("", None),
        (None, None),
    ],
)
def test_amount_cells(raw, expected):
    assert _to_decimal(raw) == expected
