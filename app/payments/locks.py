"""
Concurrency control for settlement operations.

Three complementary mechanisms:

1. **Distributed Locks** (DistributedLock)
   - Redis-based mutual exclusion across processes/servers
   - TTL prevents deadlocks from crashed processes
   - Held across the gateway call, which runs outside any transaction

2. **Settlement Lock** (settlement_lock)
   - One DistributedLock per order, keyed "order:{id}:settlement"
   - Re-entrant within a thread, so cancel -> refund or
     confirm_receipt -> release never wait on themselves

3. **Optimistic Locking** (check_version)
   - Version-based conflict detection
   - No blocking - detect conflicts at write time

Usage:

    from payments.locks import settlement_lock

    with settlement_lock(order.id):
        with transaction.atomic():
            escrow = Escrow.objects.select_for_update().get(order_id=order.id)
            ...  # re-check preconditions
        StripeAdapter.transfer(...)  # outside the transaction
        with transaction.atomic():
            ...  # record the outcome

Note:
    Row locks (select_for_update) only last until the transaction ends,
    and gateway calls must not run inside a transaction. The settlement
    lock is what keeps release, refund, freeze and confirm_receipt from
    interleaving on one order across that gap.
"""

from __future__ import annotations

import threading
import time
import uuid as uuid_module
from contextlib import contextmanager
from typing import TYPE_CHECKING, TypeVar

from django.conf import settings
from django.db import models, transaction

from django_redis import get_redis_connection

from core.exceptions import NotFoundError
from payments.exceptions import LockAcquisitionError, StaleRecordError

if TYPE_CHECKING:
    from collections.abc import Generator
    from typing import Any

    from redis import Redis

# Type variable for model classes
T = TypeVar("T", bound=models.Model)


# =============================================================================
# Distributed Locks
# =============================================================================


class DistributedLock:
    """
    Redis-based distributed lock with TTL.

    Example:
        with DistributedLock("order:123:settlement", ttl=120):
            release_escrow()

        lock = DistributedLock("order:123:settlement", blocking=False)
        try:
            with lock:
                release_escrow()
        except LockAcquisitionError:
            # Another worker is settling this order
            handle_contention()

    Args:
        key: Lock identifier (will be prefixed with "lock:")
        ttl: Lock TTL in seconds (auto-releases after this time)
        blocking: If True, acquire() waits until lock is available
        timeout: Maximum wait time in seconds (only if blocking=True)

    Note:
        The TTL should be longer than the gateway timeout, or the lock can
        expire while a transfer is still in flight.
    """

    # Lua script for atomic check-and-delete (release)
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    # Lua script for atomic check-and-extend
    EXTEND_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("expire", KEYS[1], ARGV[2])
    else
        return 0
    end
    """

    def __init__(
        self,
        key: str,
        ttl: int = 30,
        blocking: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None
        self._redis: Redis | None = None

    def _get_redis(self) -> Redis:
        """Get Redis connection (lazy initialization)."""
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    def acquire(self) -> bool:
        """
        Acquire the lock.

        Raises:
            LockAcquisitionError: If the lock couldn't be acquired
        """
        self._token = str(uuid_module.uuid4())
        redis = self._get_redis()

        if self.blocking:
            end_time = time.time() + self.timeout
            while time.time() < end_time:
                if self._try_acquire(redis):
                    return True
                time.sleep(0.05)

            self._token = None
            raise LockAcquisitionError(
                f"Failed to acquire lock '{self.key}' within {self.timeout}s",
                details={"key": self.key, "timeout": self.timeout},
            )

        if not self._try_acquire(redis):
            self._token = None
            raise LockAcquisitionError(
                f"Lock '{self.key}' is already held",
                details={"key": self.key},
            )
        return True

    def _try_acquire(self, redis: Redis) -> bool:
        return bool(redis.set(self.key, self._token, nx=True, ex=self.ttl))

    def release(self) -> bool:
        """
        Release the lock if we hold it.

        Safe to call multiple times; only deletes the key if our token
        still owns it.
        """
        if self._token is None:
            return False

        redis = self._get_redis()
        result = redis.eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(result)

    def extend(self, additional_ttl: int | None = None) -> bool:
        """
        Reset the lock TTL if we hold it.

        The new TTL replaces the remaining time (not added to it).
        """
        if self._token is None:
            return False

        ttl = additional_ttl or self.ttl
        redis = self._get_redis()
        result = redis.eval(self.EXTEND_SCRIPT, 1, self.key, self._token, ttl)
        return bool(result)

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> bool:
        self.release()
        return False


# =============================================================================
# Settlement Lock
# =============================================================================

_held = threading.local()


def _held_keys() -> set[str]:
    if not hasattr(_held, "keys"):
        _held.keys = set()
    return _held.keys


def settlement_lock_key(order_id: Any) -> str:
    return f"order:{order_id}:settlement"


@contextmanager
def settlement_lock(
    order_id: Any,
    blocking: bool = True,
) -> Generator[None, None, None]:
    """
    Serialize settlement mutations for one order.

    Re-entrant within the current thread: a nested call for an order the
    thread already holds does not touch Redis.

    Args:
        order_id: Order whose escrow/dispute/refund state is being changed
        blocking: Wait up to SETTLEMENT_LOCK_TIMEOUT_SECONDS (True) or
            fail immediately if another worker holds it (False)

    Raises:
        LockAcquisitionError: Another worker holds the lock
    """
    key = settlement_lock_key(order_id)
    held = _held_keys()
    if key in held:
        yield
        return

    lock = DistributedLock(
        key,
        ttl=settings.SETTLEMENT_LOCK_TTL_SECONDS,
        blocking=blocking,
        timeout=settings.SETTLEMENT_LOCK_TIMEOUT_SECONDS,
    )
    with lock:
        held.add(key)
        try:
            yield
        finally:
            held.discard(key)


# =============================================================================
# Optimistic Locking
# =============================================================================


def check_version(
    model_class: type[T],
    pk: Any,
    expected_version: int,
) -> T:
    """
    Lock a record for update after checking its version.

    Raises:
        StaleRecordError: If version doesn't match (concurrent modification)
        NotFoundError: If record doesn't exist

    Example:
        with transaction.atomic():
            escrow = check_version(Escrow, escrow_id, expected_version=3)
            escrow.frozen = True
            escrow.save()  # Version auto-increments to 4

    Note:
        Must be called within a transaction context. The row lock is held
        until the transaction commits or rolls back.
    """
    with transaction.atomic():
        instance = (
            model_class.objects.select_for_update()
            .filter(pk=pk, version=expected_version)
            .first()
        )

        if instance is None:
            model_name = model_class.__name__
            current = model_class.objects.filter(pk=pk).values_list("version", flat=True).first()
            if current is None:
                raise NotFoundError(
                    f"{model_name} {pk} not found",
                    error_code=f"{model_name.upper()}_NOT_FOUND",
                    details={"pk": str(pk)},
                )

            raise StaleRecordError(
                f"{model_name} {pk} has been modified "
                f"(expected version {expected_version}, current {current})",
                details={
                    "pk": str(pk),
                    "expected_version": expected_version,
                    "current_version": current,
                },
            )

        return instance


__all__ = [
    "DistributedLock",
    "check_version",
    "settlement_lock",
    "settlement_lock_key",
]
