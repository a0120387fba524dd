# This file is licensed under the Prosperity Public License 3.0.0.
# You may use, copy, and share it for noncommercial purposes.
# Commercial use is allowed for a 30-day trial only.
#
# Contributor: Scienting Studio
# Source Code: https://github.com/scienting/simlify
#
# See the LICENSE.md file for full license terms.


from typing import Any, TypeVar

import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger

from batchwise.backoff import BackoffStrategy, FullJitterBackoff

T = TypeVar("T")

THROTTLING_ERRORS = frozenset(
    {
        "ThrottlingException",
        "TooManyRequestsException",
        "ProvisionedThroughputExceededException",
        "RequestLimitExceeded",
    }
)

TRANSIENT_ERRORS = frozenset(
    {
        "RequestTimeout",
        "ServiceUnavailable",
        "InternalServerError",
        "NetworkingError",
    }
)


def error_code(error: BaseException) -> str | None:
    """Best-effort error code of a remote API error.

    Looks at a botocore-style `response["Error"]["Code"]`, then at `code` and
    `name` attributes.
    """
    response = getattr(error, "response", None)
    if isinstance(response, dict):
        code = response.get("Error", {}).get("Code")
        if code:
            return str(code)
    for attr in ("code", "name"):
        value = getattr(error, attr, None)
        if isinstance(value, str) and value:
            return value
    return None


def is_retryable_error(error: BaseException, attempt: int = 1) -> bool:
    """`True` for throttling and transient service errors."""
    code = error_code(error)
    return code in THROTTLING_ERRORS or code in TRANSIENT_ERRORS


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    backoff: BackoffStrategy | None = None,
    should_retry: Callable[[BaseException, int], bool] = is_retryable_error,
    on_retry: Callable[[BaseException, int, float], Any] | None = None,
) -> T:
    """Call `fn` until it succeeds, retrying errors `should_retry` accepts.

    This is for single remote calls (describe, list, get). Batch calls should go
    through [`BatchProcessor`][processor.BatchProcessor], which retries only
    the rejected entries.

    Args:
        fn: Zero-argument coroutine function performing the call.
        max_attempts: Total attempts including the first one.
        backoff: Delay strategy; defaults to
            [`FullJitterBackoff`][backoff.FullJitterBackoff].
        should_retry: Decides whether an error is worth another attempt. Gets
            the error and the 1-based attempt that raised it.
        on_retry: Called with the error, the attempt number and the delay
            before sleeping.

    Returns:
        Whatever `fn` returned on the first successful attempt.

    Raises:
        The last error once attempts are exhausted or `should_retry` declines.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
    backoff = backoff or FullJitterBackoff()

    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as exc:
            if attempt >= max_attempts or not should_retry(exc, attempt):
                raise
            delay = backoff.delay(attempt)
            logger.debug(
                f"Attempt {attempt} failed with {type(exc).__name__}; retrying in {delay:.2f}s"
            )
            if on_retry is not None:
                on_retry(exc, attempt, delay)
            await asyncio.sleep(delay)
            attempt += 1
