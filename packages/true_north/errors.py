"""Exception types shared across ``true_north``.

``ClassificationError`` is the only error that crosses the boundary of a
classification capability. Provider SDK exceptions are translated into it
where the SDK is called (see :class:`true_north.llm.OpenAIChatClassifier`),
so retry decisions look at ``kind`` and never at SDK-specific attributes.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    TRANSPORT = "transport"
    RATE_LIMIT = "rate_limit"
    PARSE_FAILURE = "parse_failure"


class ClassificationError(Exception):
    """A failed classification request.

    Attributes
    ----------
    kind:
        What went wrong: transport (network/HTTP), rate limiting, or an
        unusable response body.
    message:
        Human-readable description, embedded into fallback results.
    status:
        HTTP status code when one is known.
    retry_after_ms:
        Server-provided wait hint for rate limits, when available.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        status: int | None = None,
        retry_after_ms: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status = status
        self.retry_after_ms = retry_after_ms

    def __repr__(self) -> str:
        return (
            f"ClassificationError(kind={self.kind.value!r}, message={self.message!r}, "
            f"status={self.status!r})"
        )

    @classmethod
    def from_exception(cls, exc: BaseException) -> ClassificationError:
        """Wrap an arbitrary exception raised by a capability.

        Any ``status``/``status_code`` of 429, or a message mentioning
        "rate limit", marks the error as rate limiting; everything else is a
        transport failure.
        """

        if isinstance(exc, ClassificationError):
            return exc
        status = getattr(exc, "status_code", None)
        if not isinstance(status, int):
            status = getattr(exc, "status", None)
        status = status if isinstance(status, int) else None
        message = str(exc) or exc.__class__.__name__
        if status == 429 or "rate limit" in message.lower():
            return cls(ErrorKind.RATE_LIMIT, message, status=status)
        return cls(ErrorKind.TRANSPORT, message, status=status)


class StoreBusyError(RuntimeError):
    """Raised when a categorization run is already in progress on a store."""


__all__ = ["ClassificationError", "ErrorKind", "StoreBusyError"]
