"""Resource-keyed mutual exclusion with TTL leases.

A lease covers several resource keys at once and is taken atomically: either
every key is acquired or none is. Leases expire on their own so a crashed
holder cannot block a resource forever; ``Lease.expired`` lets the holder
detect that its validity window is gone before committing anything.
"""

from __future__ import annotations

import asyncio
import random
import secrets
import threading
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Generic, TypeVar

from redis.asyncio import Redis

from cart_coupons.core.config import settings
from cart_coupons.core.logging import get_logger
from cart_coupons.core.metrics import record_lock_acquisition
from cart_coupons.core.redis import get_redis

logger = get_logger(__name__)

T = TypeVar("T")

LOCK_NOT_ACQUIRED = "LOCK_NOT_ACQUIRED"

# Sets every key only when none of them exists.
_ACQUIRE_SCRIPT = """
for i = 1, #KEYS do
    if redis.call('exists', KEYS[i]) == 1 then
        return 0
    end
end
for i = 1, #KEYS do
    redis.call('set', KEYS[i], ARGV[1], 'PX', ARGV[2])
end
return 1
"""

# Deletes only the keys still owned by this token.
_RELEASE_SCRIPT = """
local released = 0
for i = 1, #KEYS do
    if redis.call('get', KEYS[i]) == ARGV[1] then
        redis.call('del', KEYS[i])
        released = released + 1
    end
end
return released
"""


def coupon_lock_keys(coupon_id, customer_id: str) -> list[str]:
    """Keys guarding the coupon-wide total and the customer's own count."""
    return [f"coupon:{coupon_id}", f"coupon:{coupon_id}:user:{customer_id}"]


@dataclass(frozen=True, slots=True)
class Lease:
    keys: tuple[str, ...]
    token: str
    ttl_ms: int
    acquired_at: float
    validity_ms: float

    def remaining_ms(self) -> float:
        elapsed_ms = (time.monotonic() - self.acquired_at) * 1000
        return self.validity_ms - elapsed_ms

    @property
    def expired(self) -> bool:
        return self.remaining_ms() <= 0


@dataclass(frozen=True, slots=True)
class LockResult(Generic[T]):
    success: bool
    result: T | None = None
    reason: str | None = None


class LockManager:
    """Retry/lease bookkeeping shared by every backend."""

    backend = "abstract"

    def __init__(
        self,
        *,
        ttl_ms: int | None = None,
        retry_count: int | None = None,
        retry_delay_ms: int | None = None,
        retry_jitter_ms: int | None = None,
        drift_factor: float | None = None,
        prefix: str | None = None,
    ) -> None:
        self.ttl_ms = ttl_ms if ttl_ms is not None else settings.COUPON_LOCK_TTL_MS
        self.retry_count = retry_count if retry_count is not None else settings.COUPON_LOCK_RETRY_COUNT
        self.retry_delay_ms = retry_delay_ms if retry_delay_ms is not None else settings.COUPON_LOCK_RETRY_DELAY_MS
        self.retry_jitter_ms = (
            retry_jitter_ms if retry_jitter_ms is not None else settings.COUPON_LOCK_RETRY_JITTER_MS
        )
        self.drift_factor = drift_factor if drift_factor is not None else settings.COUPON_LOCK_DRIFT_FACTOR
        self.prefix = prefix if prefix is not None else settings.COUPON_LOCK_PREFIX

    async def _try_acquire(self, keys: tuple[str, ...], token: str, ttl_ms: int) -> bool:
        raise NotImplementedError

    async def _release(self, keys: tuple[str, ...], token: str) -> int:
        raise NotImplementedError

    def _keys(self, resource_keys: Iterable[str]) -> tuple[str, ...]:
        unique = sorted({str(key) for key in resource_keys})
        if not unique:
            raise ValueError("At least one resource key is required")
        return tuple(f"{self.prefix}:{key}" for key in unique)

    def _retry_pause(self) -> float:
        jitter = random.uniform(0, self.retry_jitter_ms) if self.retry_jitter_ms else 0
        return (self.retry_delay_ms + jitter) / 1000

    async def acquire(self, resource_keys: Iterable[str], ttl_ms: int | None = None) -> Lease | None:
        """Take every key or none; ``None`` once retries are exhausted."""
        keys = self._keys(resource_keys)
        ttl = ttl_ms or self.ttl_ms
        token = secrets.token_hex(16)
        attempts = self.retry_count + 1

        for attempt in range(attempts):
            started = time.monotonic()
            if await self._try_acquire(keys, token, ttl):
                elapsed_ms = (time.monotonic() - started) * 1000
                drift_ms = ttl * self.drift_factor + 2
                validity_ms = ttl - elapsed_ms - drift_ms
                if validity_ms > 0:
                    record_lock_acquisition(self.backend, "acquired")
                    logger.debug("coupon_lock_acquired", extra={"lock_keys": list(keys), "attempt": attempt + 1})
                    return Lease(
                        keys=keys,
                        token=token,
                        ttl_ms=ttl,
                        acquired_at=started,
                        validity_ms=validity_ms,
                    )
                await self._release(keys, token)
            if attempt < attempts - 1:
                await asyncio.sleep(self._retry_pause())

        record_lock_acquisition(self.backend, "busy")
        logger.warning("coupon_lock_not_acquired", extra={"lock_keys": list(keys), "attempts": attempts})
        return None

    async def release(self, lease: Lease) -> None:
        try:
            released = await self._release(lease.keys, lease.token)
        except Exception:
            logger.exception("coupon_lock_release_failed", extra={"lock_keys": list(lease.keys)})
            return
        if released < len(lease.keys):
            logger.error(
                "coupon_lock_expired",
                extra={"lock_keys": list(lease.keys), "released": released, "ttl_ms": lease.ttl_ms},
            )

    async def with_lock(
        self,
        resource_keys: Iterable[str],
        fn: Callable[[Lease], Awaitable[T]],
        ttl_ms: int | None = None,
    ) -> LockResult[T]:
        """Run ``fn`` while holding every key; the lease is always released."""
        lease = await self.acquire(resource_keys, ttl_ms)
        if lease is None:
            return LockResult(success=False, reason=LOCK_NOT_ACQUIRED)
        try:
            result = await fn(lease)
            return LockResult(success=True, result=result)
        finally:
            await self.release(lease)


class RedisLockManager(LockManager):
    """Leases stored as Redis keys with PX expiry, shared across instances."""

    backend = "redis"

    def __init__(self, redis: Redis, **kwargs) -> None:
        super().__init__(**kwargs)
        self._redis = redis
        self._acquire_script = redis.register_script(_ACQUIRE_SCRIPT)
        self._release_script = redis.register_script(_RELEASE_SCRIPT)

    async def _try_acquire(self, keys: tuple[str, ...], token: str, ttl_ms: int) -> bool:
        acquired = await self._acquire_script(keys=list(keys), args=[token, ttl_ms])
        return int(acquired) == 1

    async def _release(self, keys: tuple[str, ...], token: str) -> int:
        released = await self._release_script(keys=list(keys), args=[token])
        return int(released)


class InMemoryLockManager(LockManager):
    """Process-local leases for single-instance deployments and tests."""

    backend = "memory"

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._guard = threading.Lock()
        self._leases: dict[str, tuple[str, float]] = {}

    async def _try_acquire(self, keys: tuple[str, ...], token: str, ttl_ms: int) -> bool:
        now = time.monotonic()
        with self._guard:
            for key in keys:
                held = self._leases.get(key)
                if held is not None and held[1] > now:
                    return False
            expires_at = now + ttl_ms / 1000
            for key in keys:
                self._leases[key] = (token, expires_at)
            return True

    async def _release(self, keys: tuple[str, ...], token: str) -> int:
        now = time.monotonic()
        released = 0
        with self._guard:
            for key in keys:
                held = self._leases.get(key)
                if held is None or held[0] != token:
                    continue
                del self._leases[key]
                if held[1] > now:
                    released += 1
        return released

    def is_locked(self, resource_key: str) -> bool:
        held = self._leases.get(f"{self.prefix}:{resource_key}")
        return held is not None and held[1] > time.monotonic()


_lock_manager: LockManager | None = None


def build_lock_manager() -> LockManager:
    if settings.COUPON_LOCK_BACKEND == "memory":
        return InMemoryLockManager()
    return RedisLockManager(get_redis())


def get_lock_manager() -> LockManager:
    global _lock_manager
    if _lock_manager is None:
        _lock_manager = build_lock_manager()
    return _lock_manager


def set_lock_manager(manager: LockManager | None) -> None:
    global _lock_manager
    _lock_manager = manager
