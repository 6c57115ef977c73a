"""
Tests for payment concurrency control.

Covers:
- DistributedLock acquire/release/extend against a mocked Redis
- refund_lock and reconciliation_lock key naming
- check_version compare-and-set
- lock_row lookups
"""

import pytest

from core.exceptions import NotFoundError
from payments.exceptions import LockAcquisitionError, StaleRecordError
from payments.locks import (
    RECONCILIATION_LOCK_TTL_SECONDS,
    REFUND_LOCK_TTL_SECONDS,
    DistributedLock,
    check_version,
    lock_row,
    reconciliation_lock,
    refund_lock,
)
from payments.models import Payment


class TestDistributedLock:
    def test_acquire_success(self, mock_redis):
        lock = DistributedLock("test:key", ttl=30, blocking=False)

        assert lock.acquire() is True
        assert lock.is_held is True
        call_args = mock_redis.set.call_args
        assert call_args[0][0] == "lock:test:key"
        assert call_args[1]["nx"] is True
        assert call_args[1]["ex"] == 30

    def test_acquire_non_blocking_raises_when_held(self, mock_redis):
        mock_redis.set.return_value = False

        lock = DistributedLock("test:key", blocking=False)

        with pytest.raises(LockAcquisitionError) as exc_info:
            lock.acquire()

        assert "already held" in str(exc_info.value)
        assert lock.is_held is False

    def test_acquire_blocking_waits_and_acquires(self, mock_redis):
        mock_redis.set.side_effect = [False, False, True]

        lock = DistributedLock("test:key", blocking=True, timeout=1.0)

        assert lock.acquire() is True
        assert mock_redis.set.call_count == 3

    def test_acquire_blocking_timeout_raises_error(self, mock_redis):
        mock_redis.set.return_value = False

        lock = DistributedLock("test:key", blocking=True, timeout=0.1)

        with pytest.raises(LockAcquisitionError) as exc_info:
            lock.acquire()

        assert exc_info.value.details["timeout"] == 0.1

    def test_release_uses_owner_token(self, mock_redis):
        lock = DistributedLock("test:key", blocking=False)
        lock.acquire()
        token = lock._token

        assert lock.release() is True
        assert lock.is_held is False
        args = mock_redis.eval.call_args[0]
        assert args[2] == "lock:test:key"
        assert args[3] == token

    def test_release_without_acquire_returns_false(self, mock_redis):
        lock = DistributedLock("test:key")

        assert lock.release() is False
        mock_redis.eval.assert_not_called()

    def test_extend_resets_ttl(self, mock_redis):
        lock = DistributedLock("test:key", ttl=60, blocking=False)
        lock.acquire()

        assert lock.extend() is True
        assert mock_redis.eval.call_args[0][-1] == 60

    def test_extend_when_not_held(self, mock_redis):
        assert DistributedLock("test:key").extend() is False

    def test_context_manager_releases_on_error(self, mock_redis):
        with pytest.raises(RuntimeError):
            with DistributedLock("test:key", blocking=False) as lock:
                assert lock.is_held
                raise RuntimeError("boom")

        assert lock.is_held is False
        mock_redis.eval.assert_called_once()


class TestLockFactories:
    def test_refund_lock_is_per_payment(self):
        lock = refund_lock("abc")

        assert lock.key == "lock:refund:execute:abc"
        assert lock.ttl == REFUND_LOCK_TTL_SECONDS

    def test_reconciliation_lock_is_global(self):
        lock = reconciliation_lock()

        assert lock.key == "lock:reconciliation:run"
        assert lock.ttl == RECONCILIATION_LOCK_TTL_SECONDS


class TestCheckVersion:
    def test_returns_row_at_expected_version(self, pending_payment):
        locked = check_version(Payment, pending_payment.pk, expected_version=1)

        assert locked.pk == pending_payment.pk

    def test_stale_version_raises(self, pending_payment):
        pending_payment.mark_succeeded()
        pending_payment.save()  # version 2

        with pytest.raises(StaleRecordError) as exc_info:
            check_version(Payment, pending_payment.pk, expected_version=1)

        assert exc_info.value.details["current_version"] == 2

    def test_missing_row_raises_not_found(self, db):
        with pytest.raises(NotFoundError) as exc_info:
            check_version(Payment, "00000000-0000-0000-0000-000000000000", 1)

        assert exc_info.value.error_code == "PAYMENT_NOT_FOUND"


class TestLockRow:
    def test_finds_by_intent(self, pending_payment):
        assert lock_row(Payment, stripe_payment_intent_id="pi_test_pending") == pending_payment

    def test_missing_returns_none(self, db):
        assert lock_row(Payment, stripe_payment_intent_id="pi_missing") is None
