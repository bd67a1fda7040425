"""
Deduplication locks.

Every message id moves through:
    unlocked -> soft-locked (processing, expires after soft_ttl)
             -> hard-locked (processed, kept for hard_ttl)
or back to unlocked when processing fails.

Expiry is owned by the lock store, so a crashed consumer's soft lock
eventually times out and the message becomes processable again.
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Union

import redis

from .constants import (
    DEFAULT_HARD_TTL,
    DEFAULT_REDIS_URL,
    DEFAULT_SOFT_TTL,
    LOCK_NAMESPACE,
    LOCK_STRATEGIES,
)
from .errors import ConfigurationError, LockConfigurationError


class LockBase(ABC):
    """Soft/hard lock protocol over a key-value store with expiry."""

    def __init__(self, soft_ttl: int = DEFAULT_SOFT_TTL, hard_ttl: int = DEFAULT_HARD_TTL,
                 namespace: str = LOCK_NAMESPACE):
        self.soft_ttl = int(soft_ttl)
        self.hard_ttl = int(hard_ttl)
        self.namespace = namespace

    def soft_lock(self, message_id: str) -> bool:
        """Claim the id for processing. False means it is already locked (duplicate)."""
        return self._lock(self._key(message_id), self.soft_ttl)

    def hard_lock(self, message_id: str) -> None:
        """Mark the id processed. Overwrites any soft lock; idempotent."""
        self._force_lock(self._key(message_id), self.hard_ttl)

    def unlock(self, message_id: str) -> None:
        """Release the id; idempotent."""
        self._unlock(self._key(message_id))

    def _key(self, message_id: str) -> str:
        return f"{self.namespace}:{message_id}"

    @abstractmethod
    def _lock(self, key: str, ttl: int) -> bool:
        ...

    @abstractmethod
    def _force_lock(self, key: str, ttl: int) -> None:
        ...

    @abstractmethod
    def _unlock(self, key: str) -> None:
        ...


class NOOPLock(LockBase):
    """Deduplication disabled: every delivery is treated as new."""

    def _lock(self, key: str, ttl: int) -> bool:
        return True

    def _force_lock(self, key: str, ttl: int) -> None:
        pass

    def _unlock(self, key: str) -> None:
        pass


class MemoryLock(LockBase):
    """
    Thread-safe in-process lock store.
    Forked dispatch units get a copy of the store, so use RedisLock
    when messages are processed in child processes or on several hosts.

    Expired entries are evicted at most once per soft_ttl, on the next
    soft_lock() call.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._store: Dict[str, float] = {}
        self._mutex = threading.Lock()
        self._next_purge = time.monotonic() + self.soft_ttl

    def _lock(self, key: str, ttl: int) -> bool:
        now = time.monotonic()
        with self._mutex:
            if now >= self._next_purge:
                self._purge(now)
            expires_at = self._store.get(key)
            if expires_at is not None and expires_at > now:
                return False
            self._store[key] = now + ttl
            return True

    def _force_lock(self, key: str, ttl: int) -> None:
        with self._mutex:
            self._store[key] = time.monotonic() + ttl

    def _unlock(self, key: str) -> None:
        with self._mutex:
            self._store.pop(key, None)

    def purge_expired(self) -> int:
        """Drop expired entries; returns how many were removed."""
        with self._mutex:
            return self._purge(time.monotonic())

    @property
    def size(self) -> int:
        """Entries currently stored, expired ones included until evicted."""
        with self._mutex:
            return len(self._store)

    def _purge(self, now: float) -> int:
        # caller holds _mutex
        expired = [k for k, exp in self._store.items() if exp <= now]
        for k in expired:
            del self._store[k]
        self._next_purge = now + self.soft_ttl
        return len(expired)


class RedisLock(LockBase):
    """Lock store shared across processes and hosts (SET NX EX)."""

    def __init__(self, client: Optional[Any] = None, url: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.client = client if client is not None else redis.Redis.from_url(url or DEFAULT_REDIS_URL)

    def _lock(self, key: str, ttl: int) -> bool:
        return bool(self.client.set(key, "1", nx=True, ex=ttl))

    def _force_lock(self, key: str, ttl: int) -> None:
        self.client.set(key, "1", ex=ttl)

    def _unlock(self, key: str) -> None:
        self.client.delete(key)


# ============================================================================
# RESOLUTION
# ============================================================================

LockValue = Union[bool, LockBase]


def resolve_lock(value: LockValue, default: LockBase) -> LockBase:
    """Turn the subscriber `lock` option into a concrete strategy."""
    if value is True:
        return default
    if value is False:
        return NOOPLock()
    if isinstance(value, LockBase):
        return value
    raise LockConfigurationError(
        f"Invalid value `{value!r}`, must be one of `True`, `False`, or instance of `LockBase`"
    )


def build_lock(spec: Optional[Dict[str, Any]]) -> LockBase:
    """
    Build a lock strategy from its config-file description.

    Example:
        build_lock({"strategy": "redis", "url": "redis://cache:6379/1", "hard_ttl": 3600})
    """
    spec = dict(spec or {})
    strategy = str(spec.pop("strategy", "memory")).lower()
    if strategy not in LOCK_STRATEGIES:
        raise LockConfigurationError(
            f"Invalid lock strategy `{strategy}`, must be one of {list(LOCK_STRATEGIES)}"
        )

    kwargs: Dict[str, Any] = {}
    for name in ("soft_ttl", "hard_ttl"):
        if name in spec:
            try:
                kwargs[name] = int(spec.pop(name))
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"lock.{name} must be an integer") from e
            if kwargs[name] <= 0:
                raise ConfigurationError(f"lock.{name} must be positive")

    if strategy == "noop":
        return NOOPLock(**kwargs)
    if strategy == "redis":
        return RedisLock(url=spec.pop("url", None), **kwargs)
    return MemoryLock(**kwargs)


def with_lock(lock: LockBase, message_id: str, block: Callable[[], Any]) -> bool:
    """
    Run `block` under the soft/hard lock protocol.

    Returns False (block not run) for a duplicate. If the block raises, the
    soft lock is released and the error propagates; otherwise the id is
    hard-locked and True is returned.
    """
    if not lock.soft_lock(message_id):
        return False

    try:
        block()
    except BaseException:
        lock.unlock(message_id)
        raise

    lock.hard_lock(message_id)
    return True


__all__ = [
    "LockBase",
    "NOOPLock",
    "MemoryLock",
    "RedisLock",
    "resolve_lock",
    "build_lock",
    "with_lock",
]
