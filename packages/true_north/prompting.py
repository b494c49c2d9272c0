"""Prompt construction for chunked transaction classification.

This module builds:
- A compact, pipe-delimited serialization of a chunk (one
  ``id|description|amount|date`` line per transaction). It is far cheaper in
  tokens than JSON and the ids round-trip verbatim.
- The system instructions and the user prompt listing the closed category
  set and the expected JSON shape.
- The ``response_format`` for chat-completions style APIs.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from .categories import CATEGORIES
from .models import Transaction

ROW_FIELDS: tuple[str, ...] = ("id", "description", "amount", "date")
RESULT_FIELDS: tuple[str, ...] = (
    "id",
    "category",
    "cleanMerchantName",
    "isSubscription",
    "isRecurring",
    "confidence",
)

BEGIN_MARKER = "BEGIN_TRANSACTIONS"
END_MARKER = "END_TRANSACTIONS"


def _one_line(value: str) -> str:
    # Pipes and newlines would break the row format.
    return " ".join(value.replace("|", "/").split())


def serialize_rows(transactions: Sequence[Transaction]) -> str:
    """Serialize ``transactions`` as ``id|description|amount|date`` lines."""

    return "\n".join(
        f"{t.id}|{_one_line(t.description)}|{t.amount}|{t.date}" for t in transactions
    )


def build_system_instructions() -> str:
    return (
        "You categorize personal bank transactions. Choose exactly one category per "
        "transaction from the provided list and never invent categories. Output JSON only."
    )


def build_user_content(rows: str, categories: Sequence[str] = CATEGORIES) -> str:
    """Return the user prompt for one chunk.

    The shape line mirrors ``RESULT_FIELDS`` so the parser and the prompt
    cannot drift apart silently.
    """

    shape = (
        '{"results":[{"id":string,"category":string,"cleanMerchantName":string,'
        '"isSubscription":bool,"isRecurring":bool,"confidence":0-1}]}'
    )
    return (
        f"Categorize: {','.join(categories)}.\n"
        f"JSON:{shape}.\n"
        "Use the id exactly as given. cleanMerchantName is the merchant's common name "
        "without locations, card numbers or payment-rail words.\n"
        f"{BEGIN_MARKER}\n{rows}\n{END_MARKER}"
    )


def build_response_format() -> dict[str, Any]:
    return {"type": "json_object"}


__all__ = [
    "BEGIN_MARKER",
    "END_MARKER",
    "RESULT_FIELDS",
    "ROW_FIELDS",
    "build_response_format",
    "build_system_instructions",
    "build_user_content",
    "serialize_rows",
]
