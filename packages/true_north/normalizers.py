"""Bank CSV normalizers for CommBank, NAB, Westpac, ANZ and Suncorp exports.

Each supported export is parsed into :class:`~true_north.models.Transaction`
rows (all ``Uncategorized``) plus the account balance the export reports.
Parsing follows RFC 4180 via the stdlib :mod:`csv` module.

Rules shared by every bank
--------------------------
- Dates are Australian day-first (``dd/mm/yyyy``, ``d/m/yyyy``,
  ``dd-mm-yyyy``, ``dd Mon yy``, ``dd Mon yyyy``) or ISO-8601, and are
  emitted as ``YYYY-MM-DD``.
- Separate debit/credit columns become one signed amount (debits negative).
- Rows without a date, with an unparseable date, or with a missing,
  unparseable or zero amount are skipped.
- Ids are a content hash (see :func:`transaction_id`), so importing the same
  file twice produces the same ids.
- An unrecognized layout is reported in ``ParseResult.errors``; ``parse``
  does not raise for bad input.
"""

from __future__ import annotations

import csv
import hashlib
from collections.abc import Callable, Mapping, Sequence
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import StrEnum
from io import StringIO
from typing import NamedTuple

from .logging_setup import get_logger
from .models import CENT, Transaction

_logger = get_logger("true_north.normalizers")


class Bank(StrEnum):
    COMMBANK = "commbank"
    NAB = "nab"
    WESTPAC = "westpac"
    ANZ = "anz"
    SUNCORP = "suncorp"
    UNKNOWN = "unknown"


BANK_NAMES: Mapping[Bank, str] = {
    Bank.COMMBANK: "Commonwealth Bank",
    Bank.NAB: "NAB",
    Bank.WESTPAC: "Westpac",
    Bank.ANZ: "ANZ",
    Bank.SUNCORP: "Suncorp",
    Bank.UNKNOWN: "Unknown",
}

NO_DATA = "No data found in CSV"
UNKNOWN_FORMAT = (
    "Could not detect bank format. Please use a CSV from CommBank, NAB, Westpac, Suncorp or ANZ."
)
NO_TRANSACTIONS = "No valid transactions found in CSV"


class ParseResult(NamedTuple):
    transactions: list[Transaction]
    bank: Bank
    balance: Decimal | None
    errors: list[str]


# ---------------------------------------------------------------------------
# Helpers (amount/date normalization, CSV loading)
# ---------------------------------------------------------------------------


def _to_decimal(raw: str | None) -> Decimal | None:
    """Parse a bank amount such as ``-$1,234.56`` or ``(12.00)``.

    Returns ``None`` when the cell is empty or not a finite number.
    """

    if raw is None:
        return None
    s = raw.strip()
    if not s:
        return None
    negative = False
    if s.startswith("(") and s.endswith(")"):
        negative = True
        s = s[1:-1].strip()
    if s.startswith("-"):
        negative = True
        s = s[1:].lstrip()
    elif s.startswith("+"):
        s = s[1:].lstrip()
    s = s.replace("$", "").replace(",", "").strip()
    try:
        d = Decimal(s)
    except InvalidOperation:
        return None
    if not d.is_finite():
        return None
    return -abs(d) if negative else d


_DATE_FORMATS: tuple[str, ...] = (
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d %b %y",
    "%d %b %Y",
)


def parse_au_date(raw: str | None) -> date | None:
    """Parse a day-first Australian date (or ISO date); ``None`` when invalid.

    ``strptime`` accepts one- or two-digit days and months, which covers the
    ``d/m/yyyy`` variants.
    """

    if raw is None:
        return None
    s = raw.strip()
    if not s:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        _logger.debug("normalizers:date_unparsed value=%r", raw)
        return None


def _fmt_2dp(d: Decimal) -> str:
    return f"{d.quantize(CENT, rounding=ROUND_HALF_UP):.2f}"


def transaction_id(
    iso_date: str, amount: Decimal, description: str, balance: Decimal | None = None
) -> str:
    """Return a stable id for a statement line.

    The hash covers ``date|amount|description`` plus the running balance when
    the export has one, which keeps two identical purchases on the same day
    apart.
    """

    parts = [iso_date, _fmt_2dp(amount), description]
    if balance is not None:
        parts.append(_fmt_2dp(balance))
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()[:16]


def _first_non_empty(row: Mapping[str, str], *names: str) -> str | None:
    for name in names:
        v = row.get(name)
        if v is None:
            continue
        t = v.strip()
        if t:
            return t
    return None


def _read_csv_rows(csv_text: str) -> list[dict[str, str]]:
    with StringIO(csv_text) as f:
        reader = csv.DictReader(f, skipinitialspace=True)
        if reader.fieldnames is not None:
            reader.fieldnames = [h.strip() for h in reader.fieldnames]
        rows: list[dict[str, str]] = []
        for row in reader:
            # DictReader collects surplus cells under a None key.
            normalized = {k: (v if v is not None else "") for k, v in row.items() if k is not None}
            if any(v.strip() for v in normalized.values()):
                rows.append(normalized)
        return rows


def _read_csv_lists(csv_text: str) -> list[list[str]]:
    with StringIO(csv_text) as f:
        return [row for row in csv.reader(f) if any(c.strip() for c in row)]


# ---------------------------------------------------------------------------
# Bank detection
# ---------------------------------------------------------------------------


def detect_bank(headers: Sequence[str]) -> Bank:
    """Identify the exporting bank from the header row.

    Checks run in a fixed order because the layouts overlap (NAB and ANZ
    both have Debit/Credit columns; NAB wins).
    """

    h = ",".join(headers).lower()
    if "bank account" in h or "narrative" in h:
        return Bank.WESTPAC
    if "debit" in h and "credit" in h:
        return Bank.NAB
    if "particulars" in h or "transaction details" in h:
        return Bank.ANZ
    if "account history for account" in h:
        return Bank.SUNCORP
    if "date" in h and "amount" in h and "description" in h:
        return Bank.COMMBANK
    if "date" in h and ("amount" in h or "debit" in h):
        return Bank.COMMBANK
    return Bank.UNKNOWN


# ---------------------------------------------------------------------------
# Row parsing
# ---------------------------------------------------------------------------


class _Line(NamedTuple):
    posted: date
    amount: Decimal
    description: str
    balance: Decimal | None


type _AmountColumn = Callable[[Mapping[str, str]], Decimal | None]


def _debit_credit(
    row: Mapping[str, str], debit_cols: Sequence[str], credit_cols: Sequence[str]
) -> Decimal | None:
    debit = _first_non_empty(row, *debit_cols)
    if debit is not None:
        d = _to_decimal(debit)
        return -abs(d) if d is not None else None
    credit = _first_non_empty(row, *credit_cols)
    if credit is not None:
        c = _to_decimal(credit)
        return abs(c) if c is not None else None
    return None


def _signed_amount(row: Mapping[str, str]) -> Decimal | None:
    return _to_decimal(_first_non_empty(row, "Amount", "amount"))


def _line_from_row(
    row: Mapping[str, str],
    *,
    description_cols: Sequence[str],
    amount: _AmountColumn,
) -> _Line | None:
    posted = parse_au_date(_first_non_empty(row, "Date", "date"))
    if posted is None:
        return None
    value = amount(row)
    if value is None or value == 0:
        return None
    return _Line(
        posted=posted,
        amount=value,
        description=_first_non_empty(row, *description_cols) or "",
        balance=_to_decimal(_first_non_empty(row, "Balance", "balance")),
    )


def _to_transaction(line: _Line) -> Transaction:
    iso = line.posted.isoformat()
    return Transaction(
        id=transaction_id(iso, line.amount, line.description, line.balance),
        date=iso,
        amount=line.amount,
        description=line.description,
    )


def _latest_balance(lines: Sequence[_Line]) -> Decimal | None:
    # Exports are not reliably sorted; the latest-dated row carries the
    # current balance. The first row wins ties.
    best: _Line | None = None
    for line in lines:
        if line.balance is None:
            continue
        if best is None or line.posted > best.posted:
            best = line
    return best.balance if best is not None else None


# ANZ exports that carry both Debit and Credit are detected as NAB, so the NAB
# layout also looks for the ANZ description columns.
_COLUMN_LAYOUTS: Mapping[Bank, tuple[Sequence[str], _AmountColumn]] = {
    Bank.COMMBANK: (("Description", "description", "Narrative"), _signed_amount),
    Bank.NAB: (
        ("Transaction Type", "Description", "Narrative", "Transaction Details", "Particulars"),
        lambda r: _debit_credit(r, ("Debit", "debit"), ("Credit", "credit")),
    ),
    Bank.WESTPAC: (
        ("Narrative", "Description"),
        lambda r: _debit_credit(
            r, ("Debit Amount", "Debit", "debit"), ("Credit Amount", "Credit", "credit")
        ),
    ),
    Bank.ANZ: (
        ("Transaction Details", "Particulars", "Description"),
        lambda r: _debit_credit(r, ("Debit", "debit"), ("Credit", "credit")),
    ),
}


def _parse_suncorp(csv_text: str) -> tuple[list[_Line], Decimal | None]:
    # Two metadata lines precede headerless Date, Description, Amount, Balance rows.
    data = _read_csv_lists(csv_text)[2:]
    lines: list[_Line] = []
    for cells in data:
        cells = cells + [""] * (4 - len(cells))
        posted = parse_au_date(cells[0])
        value = _to_decimal(cells[2])
        if posted is None or value is None or value == 0:
            continue
        lines.append(_Line(posted, value, cells[1].strip(), _to_decimal(cells[3])))
    balance = _to_decimal(data[0][3]) if data and len(data[0]) > 3 else None
    return lines, balance


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------


class CSVNormalizer:
    """Parse bank CSV exports into transactions.

    Usage
    -----
    result = CSVNormalizer.parse(csv_text)  # -> ParseResult
    """

    @staticmethod
    def parse(csv_text: str) -> ParseResult:
        try:
            rows = _read_csv_rows(csv_text)
        except csv.Error as e:
            return ParseResult([], Bank.UNKNOWN, None, [f"Invalid CSV: {e}"])
        if not rows:
            return ParseResult([], Bank.UNKNOWN, None, [NO_DATA])

        bank = detect_bank(list(rows[0].keys()))
        if bank is Bank.UNKNOWN:
            return ParseResult([], bank, None, [UNKNOWN_FORMAT])

        if bank is Bank.SUNCORP:
            lines, balance = _parse_suncorp(csv_text)
        else:
            description_cols, amount = _COLUMN_LAYOUTS[bank]
            parsed = (
                _line_from_row(r, description_cols=description_cols, amount=amount) for r in rows
            )
            lines = [line for line in parsed if line is not None]
            if bank is Bank.ANZ:
                balance = _to_decimal(_first_non_empty(rows[0], "Balance", "balance"))
            else:
                balance = _latest_balance(lines)

        transactions = [_to_transaction(line) for line in lines]
        _logger.info(
            "normalizers:parsed bank=%s num_transactions=%d has_balance=%s",
            bank.value,
            len(transactions),
            balance is not None,
        )
        if not transactions:
            return ParseResult(transactions, bank, balance, [NO_TRANSACTIONS])
        return ParseResult(transactions, bank, balance, [])


__all__ = [
    "BANK_NAMES",
    "Bank",
    "CSVNormalizer",
    "ParseResult",
    "detect_bank",
    "parse_au_date",
    "transaction_id",
]
