"""Sliding-window rate limiting for the relay endpoints."""

import asyncio
import time
from collections import deque
from typing import Deque, Dict, Optional

from fastapi import Request
from structlog import get_logger

logger = get_logger()


class RateLimitExceeded(Exception):
    """Raised when a client exceeds its request budget."""

    def __init__(self, message: str, retry_after: int):
        super().__init__(message)
        self.retry_after = retry_after


class RateLimiter:
    """Per-key sliding window of request timestamps."""

    def __init__(self, rate_limit: int = 50, time_window: int = 60):
        self.rate_limit = rate_limit
        self.time_window = time_window  # in seconds
        self.requests: Dict[str, Deque[float]] = {}
        self._lock = asyncio.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None
        logger.info("rate_limiter_initialized", rate_limit=rate_limit, time_window=time_window)

    async def start(self) -> None:
        """Start the periodic cleanup task."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._periodic_cleanup())

    async def stop(self) -> None:
        """Stop the periodic cleanup task."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

    def _evict(self, key: str, now: float) -> Deque[float]:
        window = self.requests.setdefault(key, deque())
        while window and now - window[0] > self.time_window:
            window.popleft()
        return window

    async def _periodic_cleanup(self) -> None:
        """Drop keys whose window has emptied."""
        while True:
            await asyncio.sleep(self.time_window)
            async with self._lock:
                now = time.monotonic()
                for key in list(self.requests):
                    if not self._evict(key, now):
                        del self.requests[key]

    async def check_rate_limit(self, key: str) -> None:
        """Record a request for ``key`` or raise RateLimitExceeded."""
        await self.start()
        now = time.monotonic()
        async with self._lock:
            window = self._evict(key, now)
            if len(window) >= self.rate_limit:
                retry_after = max(1, int(self.time_window - (now - window[0])) + 1)
                logger.warning(
                    "rate_limit_exceeded",
                    key=key,
                    current_requests=len(window),
                    rate_limit=self.rate_limit,
                )
                raise RateLimitExceeded(
                    f"Rate limit of {self.rate_limit} requests per {self.time_window} seconds exceeded",
                    retry_after=retry_after,
                )
            window.append(now)

    async def remaining(self, key: str) -> int:
        async with self._lock:
            return max(0, self.rate_limit - len(self._evict(key, time.monotonic())))


def client_key(request: Request) -> str:
    client_ip = request.client.host if request.client else "unknown"
    return f"{client_ip}:{request.url.path}"
