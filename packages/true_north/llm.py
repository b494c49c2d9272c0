"""Chunked transaction classification through a language model.

Public API:
    - :class:`LLMClassifier` with ``analyze_chunk``, ``analyze_batch`` and
      ``analyze_transaction``
    - :class:`RetryPolicy`
    - :class:`TextClassifier` (the capability protocol) and its OpenAI-backed
      implementation :class:`OpenAIChatClassifier`

Guarantees
----------
- ``analyze_chunk`` returns exactly one result per input transaction and does
  not raise for classification failures: after the attempt budget is spent,
  every transaction in the chunk receives an ``Uncategorized`` fallback whose
  ``reasoning`` carries the error message.
- ``analyze_batch`` processes chunks strictly one after another with a fixed
  pause between them. The pause and the rate-limit backoff are the provider's
  rate budget; do not parallelize chunks.

No side effects occur at import time (no client creation, no environment
reads).
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from openai import APIConnectionError, APIStatusError, OpenAI, RateLimitError

from . import prompting
from .categorization import error_result, parse_chunk_results
from .config import ClassifierSettings
from .errors import ClassificationError, ErrorKind
from .logging_setup import get_logger
from .models import AnalysisResult, Transaction, Transactions

type ProgressCallback = Callable[[int, int], None]

_logger = get_logger("true_north.llm")


# ---- Capability --------------------------------------------------------------


class TextClassifier(Protocol):
    """Submit a prompt, receive the raw JSON text of the answer.

    Implementations raise :class:`ClassificationError` on failure. Other
    exceptions are tolerated and treated as transport failures.
    """

    def complete(self, prompt: str, *, system: str) -> str: ...


def _retry_after_ms(exc: APIStatusError) -> int | None:
    headers = getattr(getattr(exc, "response", None), "headers", None)
    if not headers:
        return None
    raw = headers.get("retry-after")
    try:
        return int(float(raw) * 1000) if raw is not None else None
    except (TypeError, ValueError):
        return None


class OpenAIChatClassifier:
    """Chat-completions capability backed by the ``openai`` SDK.

    Works with any OpenAI-compatible endpoint via ``settings.base_url``. SDK
    retries are disabled: :class:`LLMClassifier` owns the retry policy.
    """

    def __init__(self, settings: ClassifierSettings | None = None, client: Any = None) -> None:
        self._settings = settings or ClassifierSettings.from_env()
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = _create_client(self._settings)
        return self._client

    def complete(self, prompt: str, *, system: str) -> str:
        client = self._get_client()
        try:
            resp = client.chat.completions.create(
                model=self._settings.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                response_format=prompting.build_response_format(),
                temperature=0,
            )
        except RateLimitError as e:
            raise ClassificationError(
                ErrorKind.RATE_LIMIT, str(e), status=429, retry_after_ms=_retry_after_ms(e)
            ) from e
        except APIStatusError as e:
            kind = ErrorKind.RATE_LIMIT if e.status_code == 429 else ErrorKind.TRANSPORT
            raise ClassificationError(kind, str(e), status=e.status_code) from e
        except APIConnectionError as e:
            raise ClassificationError(ErrorKind.TRANSPORT, str(e)) from e

        choices = getattr(resp, "choices", None) or []
        message = getattr(choices[0], "message", None) if choices else None
        content = getattr(message, "content", None)
        if not isinstance(content, str) or not content.strip():
            raise ClassificationError(ErrorKind.PARSE_FAILURE, "No content received")
        return content


def _create_client(settings: ClassifierSettings) -> OpenAI:
    return OpenAI(base_url=settings.base_url, max_retries=0)


# ---- Retry policy ------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """How many times a chunk is attempted and how long to wait in between.

    Rate-limit failures wait ``2**attempt * base_delay_ms`` (attempt counts
    from 1, so 4s then 8s with the defaults), or the server's ``Retry-After``
    hint when that is longer. Other failures are retried immediately.
    """

    max_attempts: int = 3
    base_delay_ms: int = 2000

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def from_settings(cls, settings: ClassifierSettings) -> RetryPolicy:
        return cls(max_attempts=settings.max_attempts, base_delay_ms=settings.backoff_base_ms)

    def is_retryable(self, error: ClassificationError) -> bool:
        # Parse failures are retried like transport errors: a second sample
        # from the model is usually well-formed.
        return error.kind in (ErrorKind.TRANSPORT, ErrorKind.RATE_LIMIT, ErrorKind.PARSE_FAILURE)

    def delay_ms(self, attempt: int, error: ClassificationError) -> int:
        if error.kind is not ErrorKind.RATE_LIMIT:
            return 0
        backoff = (2**attempt) * self.base_delay_ms
        return max(backoff, error.retry_after_ms or 0)


# ---- Classifier --------------------------------------------------------------


class LLMClassifier:
    """Classify transactions in sequential chunks with retries and fallbacks."""

    def __init__(
        self,
        capability: TextClassifier | None = None,
        *,
        settings: ClassifierSettings | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or ClassifierSettings.from_env()
        self.capability = capability or OpenAIChatClassifier(self.settings)
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.settings)
        self._sleep = sleep

    def analyze_chunk(
        self, chunk: Sequence[Transaction], *, chunk_index: int = 0
    ) -> dict[str, AnalysisResult]:
        """Classify up to one chunk of transactions with a single request."""

        if not chunk:
            return {}

        prompt = prompting.build_user_content(prompting.serialize_rows(chunk))
        system = prompting.build_system_instructions()
        policy = self.retry_policy

        attempt = 1
        while True:
            t0 = time.perf_counter()
            try:
                content = self.capability.complete(prompt, system=system)
                results = parse_chunk_results(content, chunk)
                _logger.info(
                    "llm:chunk_done chunk_index=%d num_transactions=%d attempt=%d latency_ms=%.2f",
                    chunk_index,
                    len(chunk),
                    attempt,
                    (time.perf_counter() - t0) * 1000.0,
                )
                return results
            except ClassificationError as e:
                err = e
            except Exception as e:  # noqa: BLE001 - capability errors are classified below
                err = ClassificationError.from_exception(e)

            if attempt >= policy.max_attempts or not policy.is_retryable(err):
                _logger.error(
                    "llm:chunk_failed_terminal chunk_index=%d num_transactions=%d attempt=%d "
                    "kind=%s error=%s",
                    chunk_index,
                    len(chunk),
                    attempt,
                    err.kind.value,
                    err.message,
                )
                return {t.id: error_result(t, err.message) for t in chunk}

            wait_ms = policy.delay_ms(attempt, err)
            _logger.warning(
                "llm:chunk_retry chunk_index=%d attempt=%d kind=%s wait_ms=%d error=%s",
                chunk_index,
                attempt,
                err.kind.value,
                wait_ms,
                err.message,
            )
            if wait_ms > 0:
                self._sleep(wait_ms / 1000.0)
            attempt += 1

    def analyze_batch(
        self,
        transactions: Transactions,
        batch_size: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> dict[str, AnalysisResult]:
        """Classify ``transactions`` chunk by chunk.

        ``on_progress(completed, total)`` is called after every chunk,
        whether that chunk succeeded or fell back.
        """

        size = self.settings.batch_size if batch_size is None else batch_size
        if not isinstance(size, int) or size <= 0:
            raise ValueError("batch_size must be a positive integer")

        items = list(transactions)
        total = len(items)
        results: dict[str, AnalysisResult] = {}
        completed = 0
        delay_s = self.settings.chunk_delay_ms / 1000.0

        for chunk_index, base in enumerate(range(0, total, size)):
            chunk = items[base : base + size]
            _logger.info(
                "llm:chunk_start chunk_index=%d num_transactions=%d", chunk_index, len(chunk)
            )
            results.update(self.analyze_chunk(chunk, chunk_index=chunk_index))
            completed += len(chunk)
            if on_progress is not None:
                on_progress(completed, total)
            if base + size < total and delay_s > 0:
                self._sleep(delay_s)

        return results

    def analyze_transaction(self, txn: Transaction) -> AnalysisResult:
        result = self.analyze_chunk([txn]).get(txn.id)
        return result if result is not None else error_result(txn, "Error")


__all__ = [
    "LLMClassifier",
    "OpenAIChatClassifier",
    "ProgressCallback",
    "RetryPolicy",
    "TextClassifier",
]
