"""
Retrying wrapper around a single HTTP call.

Retries only two things: transport errors and 429 responses. Every other status,
error or not, goes straight back to the caller.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import httpx

from lib.catalog.errors import NetworkFailure, RateLimited

logger = logging.getLogger(__name__)

Sender = Callable[[], Awaitable[httpx.Response]]
Sleeper = Callable[[float], Awaitable[None]]


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Retry-After as seconds, or None when absent / not numeric (e.g. an HTTP date)."""
    if value is None:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    if seconds < 0:
        return None
    return seconds


class ResilientFetch:
    def __init__(
        self,
        max_attempts: int = 3,
        base_delay_s: float = 1.0,
        sleep: Sleeper = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay_s = base_delay_s
        self._sleep = sleep

    def backoff(self, attempt: int, base_delay_s: Optional[float] = None) -> float:
        base = self.base_delay_s if base_delay_s is None else base_delay_s
        return base * (2 ** attempt)

    def _check_rate_limit(self, response: httpx.Response, attempt: int, base_delay_s: float) -> None:
        if response.status_code != 429:
            return
        wait_s = parse_retry_after(response.headers.get("retry-after"))
        if wait_s is None:
            wait_s = self.backoff(attempt, base_delay_s)
        raise RateLimited(response, wait_s)

    async def call(
        self,
        send: Sender,
        name: str = "request",
        max_attempts: Optional[int] = None,
        base_delay_s: Optional[float] = None,
    ) -> httpx.Response:
        """
        Run `send` until it yields a non-429 response or the attempt budget is spent.
        `max_attempts` / `base_delay_s` override the instance defaults for this call only.
        """
        attempts = self.max_attempts if max_attempts is None else max_attempts
        base = self.base_delay_s if base_delay_s is None else base_delay_s
        if attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        for attempt in range(attempts):
            last = attempt == attempts - 1
            try:
                response = await send()
                self._check_rate_limit(response, attempt, base)
                return response
            except RateLimited as e:
                if last:
                    logger.warning(f"[fetch] {name} still rate limited after {attempts} attempts")
                    return e.response
                logger.warning(
                    f"[fetch] Rate limited on {name}. Waiting {e.wait_s:.2f}s "
                    f"before retry {attempt + 1}/{attempts}"
                )
                await self._sleep(e.wait_s)
            except httpx.TransportError as e:
                if last:
                    raise NetworkFailure(
                        f"{name} failed after {attempts} attempts: {e}",
                        attempts=attempts,
                    ) from e
                wait_s = self.backoff(attempt, base)
                logger.warning(
                    f"[fetch] Network error on {name} ({e!r}). Waiting {wait_s:.2f}s "
                    f"before retry {attempt + 1}/{attempts}"
                )
                await self._sleep(wait_s)

        # unreachable: the final attempt always returns or raises
        raise NetworkFailure(f"{name} failed after {attempts} attempts", attempts=attempts)
