"""HTTP helpers with retry/backoff for ticket provider calls."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)

DEFAULT_RETRY_STATUSES = {429, 500, 502, 503, 504}
MAX_RETRY_AFTER_SECONDS = 10.0


def _backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    delay = min(max_delay, base_delay * (2**attempt))
    if delay:
        delay = delay + random.uniform(0, delay / 2)
    return delay


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return min(float(value), MAX_RETRY_AFTER_SECONDS)
    except ValueError:
        return None


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int | None = None,
    base_delay: float | None = None,
    max_delay: float = 4.0,
    retry_statuses: set[int] | None = None,
) -> httpx.Response:
    """Execute an HTTP request with exponential backoff retries.

    Transport errors and 429/5xx responses are retried; the last response
    (or transport error) is returned/raised unchanged.
    """
    attempts = max_attempts or settings.PROVIDER_MAX_ATTEMPTS
    base = settings.PROVIDER_RETRY_BASE_DELAY if base_delay is None else base_delay
    statuses = retry_statuses or DEFAULT_RETRY_STATUSES

    for attempt in range(attempts):
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if attempt >= attempts - 1:
                raise
            delay = _backoff_delay(attempt, base, max_delay)
            logger.warning("Provider request failed, retrying", exc_info=exc)
            if delay:
                await asyncio.sleep(delay)
            continue

        if response.status_code in statuses and attempt < attempts - 1:
            delay = _retry_after(response)
            if delay is None:
                delay = _backoff_delay(attempt, base, max_delay)
            logger.warning("Provider request returned %s, retrying", response.status_code)
            if delay:
                await asyncio.sleep(delay)
            continue

        return response

    return response
