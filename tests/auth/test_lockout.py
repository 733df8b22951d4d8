"""Tests for AccountLockPolicy - sliding-window failure counting and timed lock."""

import threading
from datetime import timedelta
from uuid import uuid4

import pytest

from auth.exceptions import UserNotFoundError
from auth.lockout import LockState
from auth.security_logger import SecurityEvent


class TestRecordFailure:
    """Test failure counting and the lock threshold."""

    def test_failures_below_threshold_keep_account_open(self, lock_policy, make_user, user_db, now):
        """Four failures count up but do not lock."""
        user = make_user()

        for i in range(4):
            lock_policy.record_failure(user, now + timedelta(seconds=i))

        stored = user_db.get_by_id(user.id)
        assert stored.failed_attempts == 4
        assert stored.locked is False
        assert lock_policy.is_usable(stored, now + timedelta(seconds=5))

    def test_threshold_locks_for_configured_duration(
        self, lock_policy, make_user, user_db, security_logger, now
    ):
        """The fifth failure locks until now + 30 minutes."""
        user = make_user()

        for _ in range(5):
            lock_policy.record_failure(user, now)

        stored = user_db.get_by_id(user.id)
        assert stored.locked is True
        assert stored.locked_until == now + timedelta(minutes=30)
        assert not lock_policy.is_usable(stored, now + timedelta(minutes=29))

        security_logger.log.assert_called_once()
        assert security_logger.log.call_args.args[0] == SecurityEvent.ACCOUNT_LOCKED
        assert security_logger.log.call_args.kwargs["user_id"] == user.id

    def test_failure_after_window_starts_new_count(self, lock_policy, make_user, user_db, now):
        """A failure 11 minutes after the previous one resets the count to 1."""
        user = make_user()
        for _ in range(4):
            lock_policy.record_failure(user, now)

        stored = lock_policy.record_failure(user, now + timedelta(minutes=11))

        assert stored.failed_attempts == 1
        assert stored.locked is False
        assert user_db.get_by_id(user.id).failed_attempts == 1

    def test_failure_at_window_edge_still_counts(self, lock_policy, make_user, now):
        """Exactly ten minutes later is still inside the window."""
        user = make_user()
        for _ in range(4):
            lock_policy.record_failure(user, now)

        stored = lock_policy.record_failure(user, now + timedelta(minutes=10))

        assert stored.failed_attempts == 5
        assert stored.locked is True

    def test_uses_stored_state_not_caller_snapshot(self, lock_policy, make_user, now):
        """A stale User passed in does not lose earlier failures."""
        stale = make_user()
        for _ in range(3):
            lock_policy.record_failure(stale, now)

        stored = lock_policy.record_failure(stale, now)

        assert stored.failed_attempts == 4

    def test_concurrent_failures_all_counted(self, lock_policy, make_user, user_db, now):
        """Parallel failures for one user serialize and none are lost."""
        user = make_user()

        threads = [
            threading.Thread(target=lock_policy.record_failure, args=(user, now))
            for _ in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert user_db.get_by_id(user.id).failed_attempts == 4

    def test_missing_user_raises(self, lock_policy, make_user, user_db, now):
        user = make_user()
        user_db.delete(user)

        with pytest.raises(UserNotFoundError):
            lock_policy.record_failure(user, now)


class TestLockStatus:
    """Test the derived lock state."""

    def test_open_account(self, lock_policy, make_user, now):
        status = lock_policy.lock_status(make_user(), now)

        assert status.state is LockState.OPEN
        assert status.is_locked is False

    def test_locked_until_future(self, lock_policy, make_user, now):
        until = now + timedelta(minutes=5)
        user = make_user(locked=True, locked_until=until, failed_attempts=5)

        status = lock_policy.lock_status(user, now)

        assert status.is_locked
        assert status.locked_until == until

    def test_locked_at_exact_expiry_still_locked(self, lock_policy, make_user, now):
        user = make_user(locked=True, locked_until=now, failed_attempts=5)

        assert lock_policy.lock_status(user, now).is_locked

    def test_expired_lock_reads_open(self, lock_policy, make_user, now):
        user = make_user(
            locked=True, locked_until=now - timedelta(seconds=1), failed_attempts=5
        )

        assert lock_policy.is_usable(user, now)

    def test_lock_without_expiry_never_opens(self, lock_policy, make_user, now):
        user = make_user(locked=True, locked_until=None)

        status = lock_policy.lock_status(user, now + timedelta(days=365))

        assert status.is_locked
        assert status.locked_until is None

    def test_lock_status_is_pure(self, lock_policy, make_user, user_db, now):
        user = make_user(
            locked=True, locked_until=now - timedelta(minutes=1), failed_attempts=5
        )

        lock_policy.lock_status(user, now)
        lock_policy.is_usable(user, now)
        lock_policy.reconcile(user, now)

        assert user_db.security_writes == 0
        assert user_db.get_by_id(user.id).locked is True


class TestReconcile:

    def test_expired_lock_cleared(self, lock_policy, make_user, now):
        user = make_user(
            locked=True,
            locked_until=now - timedelta(minutes=1),
            failed_attempts=5,
            last_failed_at=now - timedelta(minutes=31),
        )

        reconciled = lock_policy.reconcile(user, now)

        assert reconciled.locked is False
        assert reconciled.locked_until is None
        assert reconciled.failed_attempts == 0
        assert reconciled.last_failed_at is None

    def test_unchanged_returns_same_object(self, lock_policy, make_user, now):
        user = make_user(failed_attempts=2, last_failed_at=now)

        assert lock_policy.reconcile(user, now) is user


class TestRefresh:
    """Test persisting the auto-unlock."""

    def test_persists_expired_lock(self, lock_policy, make_user, user_db, now):
        user = make_user(
            locked=True, locked_until=now - timedelta(minutes=1), failed_attempts=5
        )

        refreshed = lock_policy.refresh(user, now)

        assert refreshed.locked is False
        stored = user_db.get_by_id(user.id)
        assert stored.locked is False
        assert stored.failed_attempts == 0
        assert user_db.security_writes == 1

    def test_nothing_due_writes_nothing(self, lock_policy, make_user, user_db, now):
        user = make_user(
            locked=True, locked_until=now + timedelta(minutes=1), failed_attempts=5
        )

        refreshed = lock_policy.refresh(user, now)

        assert refreshed is user
        assert user_db.security_writes == 0

    def test_unlock_after_lock_duration(self, lock_policy, make_user, now):
        """A locked account opens once the lock duration has passed."""
        user = make_user()
        for _ in range(5):
            user = lock_policy.record_failure(user, now)

        later = now + timedelta(minutes=30, seconds=1)
        refreshed = lock_policy.refresh(user, later)

        assert lock_policy.is_usable(refreshed, later)

    def test_missing_user_raises(self, lock_policy, make_user, user_db, now):
        user = make_user(
            locked=True, locked_until=now - timedelta(minutes=1), failed_attempts=5
        )
        user_db.delete(user)

        with pytest.raises(UserNotFoundError):
            lock_policy.refresh(user, now)


class TestRecordSuccess:

    def test_clears_failures(self, lock_policy, make_user, user_db, now):
        user = make_user()
        for _ in range(3):
            user = lock_policy.record_failure(user, now)

        cleared = lock_policy.record_success(user)

        assert cleared.failed_attempts == 0
        assert cleared.last_failed_at is None
        assert user_db.get_by_id(user.id).failed_attempts == 0

    def test_clean_account_writes_nothing(self, lock_policy, make_user, user_db):
        user = make_user()

        assert lock_policy.record_success(user) is user
        assert user_db.security_writes == 0

    def test_missing_user_raises(self, lock_policy, make_user, user_db, now):
        user = make_user(failed_attempts=1, last_failed_at=now)
        user_db.delete(user)

        with pytest.raises(UserNotFoundError):
            lock_policy.record_success(user)


def test_unknown_user_id_is_not_created(lock_policy, user_db, make_user, now):
    """update_security_state never inserts a row for an unknown ID."""
    ghost = make_user().model_copy(update={"id": uuid4()})

    with pytest.raises(UserNotFoundError):
        lock_policy.record_failure(ghost, now)
    assert user_db.get_by_id(ghost.id) is None
