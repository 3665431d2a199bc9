"""
Outbound rate limiting for the transform provider.

Built on `limits` (the engine underneath slowapi) with a fixed-window
strategy. Each acquisition is checked against a per-client window and a
single global window covering the provider quota; nothing is consumed
unless both allow it.
"""

from __future__ import annotations

import threading
import time

from limits import RateLimitItem, parse
from limits.storage import MemoryStorage, Storage
from limits.strategies import FixedWindowRateLimiter
from loguru import logger
from pydantic import BaseModel

GLOBAL_SCOPE = "global"
CLIENT_SCOPE = "client"


class RateDecision(BaseModel):
    """Result of RateLimiter.try_acquire."""

    allowed: bool
    retry_after: float = 0.0
    scope: str | None = None

    model_config = {"frozen": True}


class RateLimiter:
    """
    Per-client plus global admission budget for provider calls.

    Usage:
        limiter = RateLimiter(client_limit="5/minute", global_limit="60/minute")
        decision = limiter.try_acquire("client-1")
        if not decision.allowed:
            ...  # come back after decision.retry_after seconds
    """

    def __init__(
        self,
        client_limit: str | RateLimitItem = "5/minute",
        global_limit: str | RateLimitItem = "60/minute",
        storage: Storage | None = None,
    ):
        """
        Initialize the limiter.

        Args:
            client_limit: Rate string (e.g. "5/minute") applied to each client.
            global_limit: Rate string applied to all clients together.
            storage: Optional limits storage backend (in-memory by default).
        """
        self.client_item = parse(client_limit) if isinstance(client_limit, str) else client_limit
        self.global_item = parse(global_limit) if isinstance(global_limit, str) else global_limit
        self._storage = storage or MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self._storage)
        self._lock = threading.Lock()

    def _retry_after(self, item: RateLimitItem, *identifiers: str) -> float:
        stats = self._strategy.get_window_stats(item, *identifiers)
        return max(stats.reset_time - time.time(), 0.0)

    def try_acquire(self, client_id: str) -> RateDecision:
        """
        Try to take one provider slot for a client.

        Args:
            client_id: Identifier of the requesting client.

        Returns:
            RateDecision: allowed, or denied with the seconds until the
            exhausted window resets.
        """
        with self._lock:
            if not self._strategy.test(self.global_item, GLOBAL_SCOPE):
                wait = self._retry_after(self.global_item, GLOBAL_SCOPE)
                logger.info(f"Provider quota exhausted, retry in {wait:.2f}s")
                return RateDecision(allowed=False, retry_after=wait, scope=GLOBAL_SCOPE)

            if not self._strategy.test(self.client_item, CLIENT_SCOPE, client_id):
                wait = self._retry_after(self.client_item, CLIENT_SCOPE, client_id)
                logger.info(f"Client {client_id} rate limited, retry in {wait:.2f}s")
                return RateDecision(allowed=False, retry_after=wait, scope=CLIENT_SCOPE)

            self._strategy.hit(self.global_item, GLOBAL_SCOPE)
            self._strategy.hit(self.client_item, CLIENT_SCOPE, client_id)
            return RateDecision(allowed=True)

    def reset(self) -> None:
        """Forget all recorded hits."""
        with self._lock:
            self._storage.reset()
