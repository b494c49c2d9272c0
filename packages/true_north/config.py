"""Environment-driven settings.

All tunables are read from environment variables (the CLI loads a local
``.env`` with python-dotenv first). Reads happen when a ``from_env``
constructor is called, never at import time, so tests can ``monkeypatch``
the environment freely.

Variables
---------
``TRUE_NORTH_MODEL``               chat model name (default ``llama-3.3-70b``)
``OPENAI_BASE_URL``                OpenAI-compatible endpoint (SDK default when unset)
``TRUE_NORTH_BATCH_SIZE``          transactions per classification chunk (default 50)
``TRUE_NORTH_RESIDUAL_BATCH_SIZE`` chunk size for store re-analysis (default 20)
``TRUE_NORTH_CHUNK_DELAY_MS``      pause between chunks (default 1000)
``TRUE_NORTH_MAX_ATTEMPTS``        attempts per chunk (default 3)
``TRUE_NORTH_BACKOFF_BASE_MS``     rate-limit backoff base (default 2000)
``TRUE_NORTH_EXPLICIT_TOLERANCE``  amount tolerance for explicitly recurring groups (default 0.40)
``TRUE_NORTH_DATABASE_URL``        SQLAlchemy URL for saved state
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

DEFAULT_MODEL = "llama-3.3-70b"
DEFAULT_DATABASE_URL = "sqlite:///./true_north.db"


def _env_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_decimal(name: str, default: Decimal) -> Decimal:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return Decimal(raw.strip())
    except InvalidOperation as exc:
        raise ValueError(f"{name} must be a decimal number, got {raw!r}") from exc


@dataclass(frozen=True, slots=True)
class ClassifierSettings:
    model: str = DEFAULT_MODEL
    base_url: str | None = None
    batch_size: int = 50
    residual_batch_size: int = 20
    chunk_delay_ms: int = 1000
    max_attempts: int = 3
    backoff_base_ms: int = 2000

    @classmethod
    def from_env(cls) -> ClassifierSettings:
        base_url = (os.getenv("OPENAI_BASE_URL") or "").strip() or None
        return cls(
            model=(os.getenv("TRUE_NORTH_MODEL") or "").strip() or DEFAULT_MODEL,
            base_url=base_url,
            batch_size=_env_int("TRUE_NORTH_BATCH_SIZE", 50, minimum=1),
            residual_batch_size=_env_int("TRUE_NORTH_RESIDUAL_BATCH_SIZE", 20, minimum=1),
            chunk_delay_ms=_env_int("TRUE_NORTH_CHUNK_DELAY_MS", 1000),
            max_attempts=_env_int("TRUE_NORTH_MAX_ATTEMPTS", 3, minimum=1),
            backoff_base_ms=_env_int("TRUE_NORTH_BACKOFF_BASE_MS", 2000),
        )


@dataclass(frozen=True, slots=True)
class RecurringSettings:
    """Tolerances for recurring-bill detection.

    ``explicit_amount_tolerance`` applies to groups already flagged recurring
    by rules or the classifier; it has to absorb price rises such as a
    subscription going from 16.99 to 22.99.
    """

    amount_tolerance: Decimal = Decimal("0.05")
    explicit_amount_tolerance: Decimal = Decimal("0.40")
    day_tolerance: int = 3
    month_wrap_days: int = 28
    min_occurrences: int = 2

    @classmethod
    def from_env(cls) -> RecurringSettings:
        return cls(
            explicit_amount_tolerance=_env_decimal(
                "TRUE_NORTH_EXPLICIT_TOLERANCE", Decimal("0.40")
            ),
        )


def database_url(override: str | None = None) -> str:
    url = override or os.getenv("TRUE_NORTH_DATABASE_URL")
    return url.strip() if url and url.strip() else DEFAULT_DATABASE_URL


__all__ = [
    "ClassifierSettings",
    "RecurringSettings",
    "database_url",
]
