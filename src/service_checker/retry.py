"""
Bounded retry with linear backoff for probe attempts.
"""

import asyncio
from typing import Awaitable, Callable

from service_checker.logging import get_logger

logger = get_logger("service_checker.retry")

Attempt = Callable[[], Awaitable[bool]]
Sleep = Callable[[float], Awaitable[None]]


async def run_with_retries(
    attempt: Attempt,
    *,
    retry_count: int,
    backoff_ms: int,
    label: str = "probe",
    sleep: Sleep = asyncio.sleep,
) -> bool:
    """
    Run ``attempt`` until it succeeds or ``retry_count`` attempts are used up.

    ``attempt`` returns True when it failed. After failed attempt ``i`` the
    loop waits ``i * backoff_ms`` before trying again; there is no wait after
    the last attempt.

    Returns:
        True if every attempt failed, False on the first success.
    """
    max_attempts = max(1, retry_count)

    for i in range(1, max_attempts + 1):
        failed = await attempt()
        if not failed:
            return False

        if i < max_attempts:
            delay_ms = i * backoff_ms
            logger.log_probe_retry(label, next_attempt=i + 1, delay_ms=delay_ms)
            await sleep(delay_ms / 1000.0)

    return True
