"""
Tests for concurrency utilities.

DistributedLock runs against the mock_redis MagicMock; check_version and
lock_row run against Order rows.
"""

import uuid

import pytest
from django.db import transaction

from core.exceptions import LockAcquisitionError, NotFoundError, StaleRecordError
from core.locks import DistributedLock, check_version, lock_row
from orders.models import Order
from orders.tests.factories import OrderFactory


class TestDistributedLock:
    """Tests for DistributedLock class."""

    def test_acquire_and_release(self, mock_redis):
        lock = DistributedLock("test:key", ttl=30, blocking=False)

        assert lock.acquire() is True
        token = lock._token
        mock_redis.set.assert_called_once_with("lock:test:key", token, nx=True, ex=30)

        assert lock.release() is True
        mock_redis.eval.assert_called_once_with(DistributedLock.RELEASE_SCRIPT, 1, "lock:test:key", token)
        assert lock._token is None

    def test_non_blocking_raises_when_held(self, mock_redis):
        mock_redis.set.return_value = None
        lock = DistributedLock("test:key", blocking=False)

        with pytest.raises(LockAcquisitionError) as exc_info:
            lock.acquire()

        assert "already held" in str(exc_info.value)
        assert exc_info.value.details["key"] == "lock:test:key"
        assert mock_redis.set.call_count == 1
        assert lock._token is None

    def test_blocking_times_out(self, mock_redis):
        mock_redis.set.return_value = None
        lock = DistributedLock("test:key", blocking=True, timeout=0.1)

        with pytest.raises(LockAcquisitionError) as exc_info:
            lock.acquire()

        assert exc_info.value.details["timeout"] == 0.1
        assert mock_redis.set.call_count >= 1
        assert lock._token is None

    def test_blocking_waits_for_release(self, mock_redis, mocker):
        """Should retry until the holder lets go."""
        mock_redis.set.side_effect = [None, None, True]
        mocker.patch("core.locks.time.sleep")

        lock = DistributedLock("test:key", blocking=True, timeout=5.0)

        assert lock.acquire() is True
        assert mock_redis.set.call_count == 3

    def test_release_does_not_remove_foreign_lock(self, mock_redis):
        """A lock whose TTL lapsed cannot release the new holder's key."""
        lock = DistributedLock("test:key", blocking=False)
        lock.acquire()
        # The release script's token comparison fails for a new holder
        mock_redis.eval.return_value = 0

        assert lock.release() is False
        mock_redis.delete.assert_not_called()

    def test_release_without_acquire(self, mock_redis):
        assert DistributedLock("test:key").release() is False
        mock_redis.eval.assert_not_called()

    def test_context_manager_releases_on_error(self, mock_redis):
        with pytest.raises(RuntimeError):
            with DistributedLock("test:key", blocking=False):
                raise RuntimeError("boom")

        assert mock_redis.eval.call_count == 1
        assert mock_redis.eval.call_args.args[2] == "lock:test:key"


class TestCheckVersion:
    """Tests for check_version function."""

    def test_returns_instance_when_version_matches(self, db):
        order = OrderFactory()

        with transaction.atomic():
            result = check_version(Order, order.pk, expected_version=order.version)

        assert result.pk == order.pk

    def test_raises_stale_record_when_version_mismatch(self, db):
        order = OrderFactory()

        with pytest.raises(StaleRecordError) as exc_info:
            check_version(Order, order.pk, expected_version=999)

        assert "has been modified" in str(exc_info.value)
        assert exc_info.value.details["expected_version"] == 999
        assert exc_info.value.details["current_version"] == order.version

    def test_raises_not_found_when_record_missing(self, db):
        fake_pk = uuid.uuid4()

        with pytest.raises(NotFoundError) as exc_info:
            check_version(Order, fake_pk, expected_version=1)

        assert exc_info.value.error_code == "ORDER_NOT_FOUND"
        assert exc_info.value.details["pk"] == str(fake_pk)

    def test_version_increments_on_save(self, db):
        order = OrderFactory()
        version = order.version

        order.remark = "late check-in"
        order.save()

        assert Order.objects.get(pk=order.pk).version == version + 1


class TestLockRow:
    def test_returns_locked_instance(self, db):
        order = OrderFactory()

        with transaction.atomic():
            assert lock_row(Order, order.pk).order_no == order.order_no

    def test_missing_row(self, db):
        with pytest.raises(NotFoundError) as exc_info:
            with transaction.atomic():
                lock_row(Order, uuid.uuid4())

        assert exc_info.value.error_code == "ORDER_NOT_FOUND"
