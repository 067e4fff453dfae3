"""Per-client throttling for the unauthenticated webhook endpoint.

Stripe retries aggressively and anyone can reach the endpoint, so deliveries
are counted per client address in a sliding window kept in process memory.
"""

import time
from collections import deque
from dataclasses import dataclass

from fastapi import HTTPException, Request, status

from app.config import settings


@dataclass(frozen=True)
class RateLimitConfig:
    """At most `requests` hits per `window_seconds` for one client and scope."""

    requests: int
    window_seconds: int


WEBHOOK_LIMIT = RateLimitConfig(
    requests=settings.webhook_rate_limit_requests,
    window_seconds=settings.webhook_rate_limit_window_seconds,
)


class RateLimiter:
    """Sliding-window counter keyed by (client, scope).

    Single-process only: each worker keeps its own counts.
    """

    def __init__(self, cleanup_interval: float = 300) -> None:
        self._requests: dict[tuple[str, str], deque[float]] = {}
        self._last_cleanup = time.time()
        self._cleanup_interval = cleanup_interval

    def _cleanup_expired(self, now: float, window_seconds: int) -> None:
        """Sweep clients whose hits have all aged out. Runs at most once per interval."""
        if now - self._last_cleanup < self._cleanup_interval:
            return

        cutoff = now - window_seconds
        for key in list(self._requests):
            self._window(key, cutoff)

        self._last_cleanup = now

    @property
    def tracked_clients(self) -> int:
        return len(self._requests)

    def _window(self, key: tuple[str, str], cutoff: float) -> deque[float]:
        hits = self._requests.get(key)
        if hits is None:
            return deque()
        while hits and hits[0] <= cutoff:
            hits.popleft()
        if not hits:
            # Drop idle clients
            del self._requests[key]
        return hits

    def check_rate_limit(self, client_key: str, scope: str, config: RateLimitConfig) -> None:
        """Record one hit, or raise 429 with Retry-After when the window is full."""
        now = time.time()
        key = (client_key, scope)
        self._cleanup_expired(now, config.window_seconds)
        hits = self._window(key, now - config.window_seconds)

        if len(hits) >= config.requests:
            retry_after = int(hits[0] + config.window_seconds - now) + 1
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=f"Rate limit exceeded. Try again in {retry_after} seconds.",
                headers={"Retry-After": str(retry_after)},
            )

        hits.append(now)
        self._requests[key] = hits

    def get_remaining(self, client_key: str, scope: str, config: RateLimitConfig) -> int:
        """Slots left for a client in the current window."""
        now = time.time()
        hits = self._window((client_key, scope), now - config.window_seconds)
        return max(0, config.requests - len(hits))


rate_limiter = RateLimiter()


def limit_webhook_requests(request: Request) -> None:
    """Dependency: throttle webhook deliveries per client address."""
    client_key = request.client.host if request.client else "unknown"
    rate_limiter.check_rate_limit(client_key, "stripe_webhook", WEBHOOK_LIMIT)
