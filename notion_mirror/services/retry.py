"""Bounded exponential backoff with jitter for async operations."""

import asyncio
import errno
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx
from sqlalchemy.exc import DBAPIError, OperationalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}
RETRYABLE_NOTION_CODES = {"rate_limited", "service_unavailable", "internal_server_error"}
RETRYABLE_ERRNO = {
    errno.ECONNRESET,
    errno.ETIMEDOUT,
    errno.ECONNREFUSED,
    errno.ENETUNREACH,
}
RETRYABLE_ERROR_NAMES = {"ECONNRESET", "ENOTFOUND", "ETIMEDOUT", "ECONNREFUSED", "ENETUNREACH", "EAI_AGAIN"}
SCHEMA_ERROR_MARKERS = (
    "no such table",
    "no such column",
    "has no column named",
    "does not exist",
    "schema cache",
    "undefinedcolumn",
    "undefinedtable",
)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry parameters. Delays are in seconds."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.1

    @classmethod
    def from_config(cls, max_retries: int, retry_delay_ms: int) -> "RetryPolicy":
        # max_retries counts retries, so one more attempt than that in total
        return cls(max_attempts=max_retries + 1, base_delay=retry_delay_ms / 1000)


@dataclass
class BatchOutcome:
    index: int
    success: bool
    result: Any = None
    error: Optional[str] = None


def compute_delay(attempt: int, policy: RetryPolicy, rand: Callable[[], float] = random.random) -> float:
    """Delay before retrying after 0-indexed `attempt`: base * 2^n plus up to 10% jitter, capped."""
    exponential = policy.base_delay * (2 ** attempt)
    jitter = rand() * policy.jitter * exponential
    return min(exponential + jitter, policy.max_delay)


def _status_of(exc: BaseException) -> Optional[int]:
    status = getattr(exc, "status", None)
    if isinstance(status, int):
        return status
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


def is_retryable_error(exc: BaseException) -> bool:
    """Default classification of transient failures."""
    if isinstance(exc, (httpx.TransportError, ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True

    status = _status_of(exc)
    if status is not None and status in RETRYABLE_STATUS_CODES:
        return True

    code = getattr(exc, "code", None)
    if isinstance(code, str) and (code in RETRYABLE_NOTION_CODES or code in RETRYABLE_ERROR_NAMES):
        return True

    if isinstance(exc, OSError) and exc.errno in RETRYABLE_ERRNO:
        return True

    if isinstance(exc, DBAPIError):
        if exc.connection_invalidated:
            return True
        message = str(exc).lower()
        # SQLite reports missing tables/columns as OperationalError too
        if any(marker in message for marker in SCHEMA_ERROR_MARKERS):
            return False
        if isinstance(exc, OperationalError) or "connection" in message:
            return True

    return False


async def run_with_retry(
    op: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    description: str = "operation",
) -> T:
    """
    Await `op()` until it succeeds, the error is not retryable, or attempts run out.

    The final underlying error is re-raised unchanged.
    """
    attempts = max(1, policy.max_attempts)
    for attempt in range(attempts):
        try:
            return await op()
        except Exception as e:
            if attempt >= attempts - 1 or not is_retryable(e):
                raise
            delay = compute_delay(attempt, policy)
            logger.warning(
                f"Retrying {description} after error: {e} "
                f"(attempt {attempt + 1}/{attempts}, waiting {delay:.2f}s)"
            )
            await asyncio.sleep(delay)

    raise RuntimeError("unreachable")  # pragma: no cover


async def run_batch(
    ops: list[Callable[[], Awaitable[Any]]],
    policy: RetryPolicy,
    is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    description: str = "batch operation",
) -> list[BatchOutcome]:
    """Run independent operations one after another, recording each outcome."""
    outcomes = []
    for index, op in enumerate(ops):
        try:
            result = await run_with_retry(op, policy, is_retryable, f"{description} #{index}")
            outcomes.append(BatchOutcome(index=index, success=True, result=result))
        except Exception as e:
            outcomes.append(BatchOutcome(index=index, success=False, error=str(e)))

    failed = [o for o in outcomes if not o.success]
    if failed:
        logger.warning(
            f"{description} completed with errors: {len(ops) - len(failed)}/{len(ops)} succeeded, "
            f"first errors: {[o.error for o in failed[:5]]}"
        )
    return outcomes
