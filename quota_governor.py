# ABOUTME: Per-provider call-rate windows and quota-exceeded retry policy.
# ABOUTME: Reports grants or wait durations; never sleeps so callers own scheduling.

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Union

import internal_configs as cfg
from internal_configs import ProviderQuota

logger = logging.getLogger(__name__)


@dataclass
class QuotaWindow:
    """Mutable call counter for one provider's current fixed window."""
    count: int = 0
    resetAt: float = 0.0


@dataclass(frozen=True)
class QuotaGrant:
    provider: str
    callNumber: int
    windowResetAt: float


@dataclass(frozen=True)
class QuotaWait:
    provider: str
    delaySeconds: float


QuotaTicket = Union[QuotaGrant, QuotaWait]


class QuotaGovernor:
    """
    Owns the per-provider quota windows shared by every session.

    acquire() is one atomic read-compare-increment per provider. Each provider has
    its own lock, so unrelated providers never serialize against each other.
    """

    def __init__(
        self,
        quotas: Optional[Dict[str, ProviderQuota]] = None,
        defaultQuota: ProviderQuota = cfg.DEFAULT_QUOTA,
        clock: Callable[[], float] = time.monotonic
    ):
        self.quotas = dict(cfg.PROVIDER_QUOTAS if quotas is None else quotas)
        self.defaultQuota = defaultQuota
        self.clock = clock
        self._windows: Dict[str, QuotaWindow] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registryLock = threading.Lock()

    def quotaFor(self, provider: str) -> ProviderQuota:
        return self.quotas.get(provider, self.defaultQuota)

    def _lockFor(self, provider: str) -> threading.Lock:
        with self._registryLock:
            lock = self._locks.get(provider)
            if lock is None:
                lock = threading.Lock()
                self._locks[provider] = lock
            return lock

    def _currentWindow(self, provider: str, now: float) -> QuotaWindow:
        """Caller must hold the provider lock. Windows are created lazily and only move forward."""
        window = self._windows.get(provider)
        if window is None or now >= window.resetAt:
            window = QuotaWindow(count=0, resetAt=now + self.quotaFor(provider).windowSeconds)
            self._windows[provider] = window
        return window

    def acquire(self, provider: str) -> QuotaTicket:
        """Claim one call slot, or report how long until the window clears."""
        quota = self.quotaFor(provider)
        with self._lockFor(provider):
            now = self.clock()
            window = self._currentWindow(provider, now)
            if window.count >= quota.maxCalls:
                delay = max(0.0, window.resetAt - now)
                logger.warning(
                    f"Rate limit reached for {provider} ({window.count}/{quota.maxCalls}). "
                    f"Window clears in {delay:.1f}s"
                )
                return QuotaWait(provider, delay)
            window.count += 1
            return QuotaGrant(provider, window.count, window.resetAt)

    def retryDelay(self, provider: str, failedAttempt: int) -> Optional[float]:
        """
        Backoff before retrying a provider-reported quota failure.
        Returns None once failedAttempt has reached the provider's attempt cap.
        """
        quota = self.quotaFor(provider)
        if failedAttempt >= quota.maxQuotaAttempts:
            return None
        return quota.retryBackoffSeconds

    def maxAttempts(self, provider: str) -> int:
        return self.quotaFor(provider).maxQuotaAttempts

    def timeoutFor(self, provider: str) -> float:
        return self.quotaFor(provider).timeoutSeconds

    def callCount(self, provider: str) -> int:
        with self._lockFor(provider):
            return self._currentWindow(provider, self.clock()).count

    def timeUntilReset(self, provider: str) -> float:
        with self._lockFor(provider):
            now = self.clock()
            return max(0.0, self._currentWindow(provider, now).resetAt - now)

    def snapshot(self) -> Dict[str, Dict[str, float]]:
        """Point-in-time view of every known provider window."""
        summary = {}
        for provider in list(self._windows):
            with self._lockFor(provider):
                window = self._windows[provider]
                summary[provider] = {
                    "count": window.count,
                    "limit": self.quotaFor(provider).maxCalls,
                    "resetAt": window.resetAt,
                }
        return summary
