"""Retry policy shared by the HTTP clients.

Callers drive their own request loop: classify the failure with
``is_retryable``, stop once ``RetryState.exhausted`` and otherwise sleep for
``backoff_delay`` before the next attempt.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx

RETRY_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def is_retryable(exc: httpx.HTTPError) -> bool:
    """Transport failures, rate limiting and server errors are worth another attempt."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRY_STATUS_CODES
    return isinstance(exc, httpx.TransportError)


def backoff_delay(attempt: int, *, base: float = 1.0, cap: float = 5.0) -> float:
    """Exponential delay for ``attempt`` (0-based), capped at ``cap`` seconds."""
    return min(base * (2 ** attempt), cap)


@dataclass(frozen=True, slots=True)
class RetryState:
    """Progress of one request across retries.

    ``limit`` is the page size to request on the next attempt, or None for
    requests that are not paginated. The first timeout halves it, never below
    ``min_limit``.
    """

    limit: int | None = None
    attempt: int = 0
    min_limit: int = 10
    shrunk: bool = False

    def advance(self, *, timed_out: bool = False) -> RetryState:
        if timed_out and self.limit is not None and not self.shrunk:
            return RetryState(
                limit=max(self.limit // 2, self.min_limit),
                attempt=self.attempt + 1,
                min_limit=self.min_limit,
                shrunk=True,
            )
        return RetryState(self.limit, self.attempt + 1, self.min_limit, self.shrunk)

    def exhausted(self, max_retries: int) -> bool:
        return self.attempt >= max_retries
