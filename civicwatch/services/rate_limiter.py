from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    max_attempts: int
    window_ms: int


@dataclass
class RateLimitEntry:
    attempts: int
    window_start: int
    blocked_until: int | None = None


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining_attempts: int | None
    retry_after_ms: int | None = None

    @property
    def retry_after_seconds(self) -> int | None:
        if self.retry_after_ms is None:
            return None
        return max(1, math.ceil(self.retry_after_ms / 1000))


MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS

LIMITS: dict[str, RateLimitConfig] = {
    "login": RateLimitConfig(5, 15 * MINUTE_MS),
    "login_ip": RateLimitConfig(20, 15 * MINUTE_MS),
    "register": RateLimitConfig(3, HOUR_MS),
    "password_reset": RateLimitConfig(3, HOUR_MS),
    "report_submission": RateLimitConfig(10, HOUR_MS),
    "comment_posting": RateLimitConfig(20, 10 * MINUTE_MS),
    "evidence_upload": RateLimitConfig(50, HOUR_MS),
}


class RateLimitStore:
    """Key-value store for window entries. Entries expire at `expires_at` (ms)."""

    def get(self, key: str) -> RateLimitEntry | None:
        raise NotImplementedError

    def set(self, key: str, entry: RateLimitEntry, expires_at: int) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def purge_expired(self, now: int) -> int:
        raise NotImplementedError


class InMemoryRateLimitStore(RateLimitStore):
    """Process-local store; each service instance throttles independently."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._entries: dict[str, tuple[RateLimitEntry, int]] = {}

    def get(self, key: str) -> RateLimitEntry | None:
        with self._lock:
            item = self._entries.get(key)
            return item[0] if item else None

    def set(self, key: str, entry: RateLimitEntry, expires_at: int) -> None:
        with self._lock:
            self._entries[key] = (entry, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def purge_expired(self, now: int) -> int:
        with self._lock:
            expired = [k for k, (_, expires_at) in self._entries.items() if expires_at <= now]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def _now_ms() -> int:
    return int(time.time() * 1000)


class RateLimiter:
    def __init__(
        self,
        store: RateLimitStore | None = None,
        limits: dict[str, RateLimitConfig] | None = None,
        clock: Callable[[], int] = _now_ms,
        cleanup_interval_ms: int = 5 * MINUTE_MS,
    ) -> None:
        self.store = store if store is not None else InMemoryRateLimitStore()
        self.limits = dict(LIMITS if limits is None else limits)
        self.clock = clock
        self.cleanup_interval_ms = cleanup_interval_ms
        self._lock = Lock()
        self._last_cleanup = clock()

    @staticmethod
    def _key(action: str, identifier: str) -> str:
        return f"{action}:{identifier}"

    def check(self, action: str, identifier: str) -> RateLimitDecision:
        config = self.limits.get(action)
        if config is None:
            return RateLimitDecision(allowed=True, remaining_attempts=None)

        key = self._key(action, identifier)
        with self._lock:
            now = self.clock()
            self._maybe_cleanup(now)
            entry = self.store.get(key)
            expires_at = (entry.window_start if entry else now) + config.window_ms

            if entry is None or now - entry.window_start >= config.window_ms:
                entry = RateLimitEntry(attempts=1, window_start=now)
                self.store.set(key, entry, now + config.window_ms)
                return RateLimitDecision(allowed=True, remaining_attempts=config.max_attempts - 1)

            if entry.blocked_until is not None and now < entry.blocked_until:
                return self._deny(action, entry.blocked_until - now)

            if entry.attempts >= config.max_attempts:
                entry.blocked_until = expires_at
                self.store.set(key, entry, expires_at)
                return self._deny(action, expires_at - now)

            entry.attempts += 1
            self.store.set(key, entry, expires_at)
            return RateLimitDecision(allowed=True, remaining_attempts=config.max_attempts - entry.attempts)

    @staticmethod
    def _deny(action: str, retry_after_ms: int) -> RateLimitDecision:
        logger.warning("Rate limit exceeded for %s (retry in %sms)", action, retry_after_ms)
        return RateLimitDecision(allowed=False, remaining_attempts=0, retry_after_ms=retry_after_ms)

    def reset(self, action: str, identifier: str) -> None:
        with self._lock:
            self.store.delete(self._key(action, identifier))

    def cleanup_expired(self) -> int:
        with self._lock:
            return self._cleanup(self.clock())

    def _maybe_cleanup(self, now: int) -> None:
        if now - self._last_cleanup >= self.cleanup_interval_ms:
            self._cleanup(now)

    def _cleanup(self, now: int) -> int:
        self._last_cleanup = now
        removed = self.store.purge_expired(now)
        if removed:
            logger.debug("Purged %s expired rate-limit entries", removed)
        return removed


def format_retry_time(ms: int) -> str:
    minutes = max(1, math.ceil(ms / MINUTE_MS))
    if minutes >= 60:
        hours = minutes // 60
        return f"{hours} hour{'s' if hours > 1 else ''}"
    return f"{minutes} minute{'s' if minutes > 1 else ''}"
