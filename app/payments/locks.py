"""
Concurrency control for the payment ledger.

Two complementary mechanisms:

1. **Distributed locks** (DistributedLock, refund_lock, reconciliation_lock)
   Redis mutual exclusion across web and worker processes. Used to make
   sure only one request at a time runs the refund protocol for a payment
   and only one reconciliation sweep runs at a time.

2. **Row compare-and-set** (check_version, lock_row)
   ``select_for_update`` plus a version check, used for every ledger
   mutation. A writer that read version N can only write if the row is
   still at version N; the loser gets StaleRecordError.

Usage:
    from payments.locks import check_version, refund_lock

    with refund_lock(payment.id):
        with transaction.atomic():
            payment = check_version(Payment, payment.id, expected_version=3)
            payment.pending_refund = {...}
            payment.save()  # version becomes 4
"""

from __future__ import annotations

import time
import uuid as uuid_module
from typing import TYPE_CHECKING, TypeVar

from django.db import models, transaction
from django_redis import get_redis_connection

from core.exceptions import NotFoundError
from payments.exceptions import LockAcquisitionError, StaleRecordError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

T = TypeVar("T", bound=models.Model)

REFUND_LOCK_TTL_SECONDS = 120
REFUND_LOCK_TIMEOUT_SECONDS = 10.0
RECONCILIATION_LOCK_KEY = "reconciliation:run"
RECONCILIATION_LOCK_TTL_SECONDS = 3600
RECONCILIATION_LOCK_TIMEOUT_SECONDS = 5.0


# =============================================================================
# Distributed Locks
# =============================================================================


class DistributedLock:
    """
    Redis-based distributed lock with TTL.

    Ownership is tracked with a random token so a process can only release
    a lock it acquired; the TTL frees locks held by crashed processes.

    Example:
        with DistributedLock("refund:execute:123", ttl=120):
            run_refund()

        lock = DistributedLock("reconciliation:run", blocking=False)
        try:
            with lock:
                sweep()
        except LockAcquisitionError:
            pass  # another worker is sweeping

    Args:
        key: Lock identifier (prefixed with "lock:")
        ttl: Seconds until the lock auto-releases
        blocking: If True, acquire() polls until the timeout
        timeout: Maximum wait in seconds (blocking mode only)
    """

    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    EXTEND_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("expire", KEYS[1], ARGV[2])
    else
        return 0
    end
    """

    POLL_INTERVAL_SECONDS = 0.05

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
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    def acquire(self) -> bool:
        """
        Acquire the lock.

        Raises:
            LockAcquisitionError: If the lock is held elsewhere (non-blocking)
                or could not be acquired before the timeout (blocking)
        """
        self._token = str(uuid_module.uuid4())
        redis = self._get_redis()

        if self.blocking:
            end_time = time.monotonic() + self.timeout
            while time.monotonic() < end_time:
                if self._try_acquire(redis):
                    return True
                time.sleep(self.POLL_INTERVAL_SECONDS)

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
        Release the lock if we hold it. Safe to call more than once.

        Returns:
            True if the lock was released, False if we didn't hold it
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

        Used by long reconciliation sweeps between phases.
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


def refund_lock(payment_id: Any) -> DistributedLock:
    """Lock serializing the refund protocol for one payment."""
    return DistributedLock(
        f"refund:execute:{payment_id}",
        ttl=REFUND_LOCK_TTL_SECONDS,
        timeout=REFUND_LOCK_TIMEOUT_SECONDS,
    )


def reconciliation_lock() -> DistributedLock:
    """Global lock so only one reconciliation sweep runs at a time."""
    return DistributedLock(
        RECONCILIATION_LOCK_KEY,
        ttl=RECONCILIATION_LOCK_TTL_SECONDS,
        timeout=RECONCILIATION_LOCK_TIMEOUT_SECONDS,
    )


# =============================================================================
# Row Compare-and-Set
# =============================================================================


def _not_found(model_class: type[models.Model], pk: Any) -> NotFoundError:
    model_name = model_class.__name__
    return NotFoundError(
        f"{model_name} {pk} not found",
        error_code=f"{model_name.upper()}_NOT_FOUND",
        details={"pk": str(pk)},
    )


def check_version(
    model_class: type[T],
    pk: Any,
    expected_version: int,
) -> T:
    """
    Lock a record for update only if it is still at the expected version.

    Args:
        model_class: Model with a ``version`` field (core.models.VersionedModel)
        pk: Primary key of the record
        expected_version: Version the caller read before deciding to write

    Returns:
        The locked instance. The row lock lasts until the caller's
        transaction ends, so call this inside ``transaction.atomic()``.

    Raises:
        NotFoundError: If the record doesn't exist
        StaleRecordError: If another writer bumped the version
    """
    with transaction.atomic():
        instance = (
            model_class.objects.select_for_update()
            .filter(pk=pk, version=expected_version)
            .first()
        )

        if instance is None:
            current_version = (
                model_class.objects.filter(pk=pk)
                .values_list("version", flat=True)
                .first()
            )
            if current_version is None:
                raise _not_found(model_class, pk)

            model_name = model_class.__name__
            raise StaleRecordError(
                f"{model_name} {pk} has been modified "
                f"(expected version {expected_version}, current {current_version})",
                details={
                    "pk": str(pk),
                    "expected_version": expected_version,
                    "current_version": current_version,
                },
            )

        return instance


def lock_row(model_class: type[T], **lookup: Any) -> T | None:
    """
    Lock a record by an arbitrary unique lookup, or return None.

    Used where the caller has no version to compare (webhook application
    looks payments up by intent id). Must run inside a transaction.
    """
    return model_class.objects.select_for_update().filter(**lookup).first()


__all__ = [
    "DistributedLock",
    "check_version",
    "lock_row",
    "reconciliation_lock",
    "refund_lock",
]
