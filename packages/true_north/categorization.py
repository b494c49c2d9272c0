"""Parsing classifier responses into per-transaction results.

The parser is strict about the envelope and lenient about individual items:

- An empty body, text that is not JSON, a top level that is not an object, or
  a ``results`` value that is not a list raises
  :class:`~true_north.errors.ClassificationError` with
  ``kind=PARSE_FAILURE``. The caller retries those like any other failure.
- Individual items that cannot be read (no id, wrong shape) are dropped, and
  ids the model invents are ignored.
- Categories outside the closed set become ``Uncategorized``.
- Every transaction of the chunk that did not receive a result is filled with
  a "Skipped by LLM" fallback, so the returned mapping always has exactly one
  entry per input transaction.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .categories import UNCATEGORIZED, coerce_category
from .errors import ClassificationError, ErrorKind
from .logging_setup import get_logger
from .models import AnalysisResult, Transaction

BULK_REASONING = "Bulk Analysis"
SKIPPED_REASONING = "Skipped by LLM"
UNKNOWN_MERCHANT = "Unknown"

_logger = get_logger("true_north.categorization")


class _ResultItem(BaseModel):
    """Typed view of one element of ``results`` in the model output."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    category: str = UNCATEGORIZED
    clean_merchant_name: str | None = Field(default=None, alias="cleanMerchantName")
    is_subscription: bool = Field(default=False, alias="isSubscription")
    is_recurring: bool = Field(default=False, alias="isRecurring")
    confidence: float = 0.0

    @field_validator("id", mode="before")
    @classmethod
    def _id_non_empty(cls, v: Any) -> str:
        if isinstance(v, bool) or not isinstance(v, str | int):
            raise ValueError("id must be a string")
        s = str(v).strip()
        if not s:
            raise ValueError("id must be non-empty")
        return s

    @field_validator("category", mode="before")
    @classmethod
    def _known_category(cls, v: Any) -> str:
        return coerce_category(v)

    @field_validator("clean_merchant_name", mode="before")
    @classmethod
    def _merchant_name(cls, v: Any) -> str | None:
        if not isinstance(v, str) or not v.strip():
            return None
        return v.strip()

    @field_validator("is_subscription", "is_recurring", mode="before")
    @classmethod
    def _truthy(cls, v: Any) -> bool:
        return bool(v)

    @field_validator("confidence", mode="before")
    @classmethod
    def _unit_interval(cls, v: Any) -> float:
        try:
            f = float(v)
        except (TypeError, ValueError):
            return 0.0
        if math.isnan(f):
            return 0.0
        return min(1.0, max(0.0, f))


def decode_body(content: str | None) -> Mapping[str, Any]:
    """Decode the raw response text into a JSON object."""

    if content is None or not content.strip():
        raise ClassificationError(ErrorKind.PARSE_FAILURE, "No content received")
    try:
        decoded = json.loads(content)
    except json.JSONDecodeError as e:
        raise ClassificationError(
            ErrorKind.PARSE_FAILURE, "Invalid JSON response from LLM"
        ) from e
    if not isinstance(decoded, Mapping):
        raise ClassificationError(
            ErrorKind.PARSE_FAILURE, "Invalid response: expected a JSON object at top level"
        )
    return decoded


def skipped_result(txn: Transaction) -> AnalysisResult:
    return AnalysisResult(
        category=UNCATEGORIZED,
        clean_merchant_name=txn.description,
        confidence=0.0,
        reasoning=SKIPPED_REASONING,
    )


def error_result(txn: Transaction, message: str) -> AnalysisResult:
    return AnalysisResult(
        category=UNCATEGORIZED,
        clean_merchant_name=txn.description,
        confidence=0.0,
        reasoning=f"Error: {message or 'Unknown'}",
    )


def parse_chunk_results(
    content: str | None, chunk: Sequence[Transaction]
) -> dict[str, AnalysisResult]:
    """Parse ``content`` and return one :class:`AnalysisResult` per chunk id."""

    body = decode_body(content)
    raw_results = body.get("results")
    if raw_results is None:
        raw_results = []
    if not isinstance(raw_results, list):
        raise ClassificationError(
            ErrorKind.PARSE_FAILURE, "Invalid response: 'results' must be a list"
        )

    wanted = {t.id for t in chunk}
    out: dict[str, AnalysisResult] = {}
    for raw in raw_results:
        if not isinstance(raw, Mapping):
            continue
        try:
            item = _ResultItem.model_validate(raw)
        except ValidationError:
            _logger.debug("llm:result_item_dropped item=%r", raw, exc_info=True)
            continue
        if item.id not in wanted:
            _logger.debug("llm:result_unknown_id id=%s", item.id)
            continue
        out[item.id] = AnalysisResult(
            category=item.category,
            clean_merchant_name=item.clean_merchant_name or UNKNOWN_MERCHANT,
            is_subscription=item.is_subscription,
            is_recurring=item.is_recurring,
            confidence=item.confidence,
            reasoning=BULK_REASONING,
        )

    skipped = 0
    for txn in chunk:
        if txn.id not in out:
            out[txn.id] = skipped_result(txn)
            skipped += 1
    if skipped:
        _logger.info("llm:results_skipped count=%d chunk_size=%d", skipped, len(chunk))
    return out


__all__ = [
    "BULK_REASONING",
    "SKIPPED_REASONING",
    "decode_body",
    "error_result",
    "parse_chunk_results",
    "skipped_result",
]
