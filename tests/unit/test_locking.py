"""Tests for the database-scoped rollback lock."""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime, timedelta

import pytest

from schema_rewind.core.locking import RollbackLock
from schema_rewind.exceptions import ConcurrentRollbackInProgressError


class TestRollbackLock:
    """Tests for acquiring, releasing and taking over the lock."""

    def test_acquire_and_release(self, dialect, database):
        lock = RollbackLock(dialect, database)
        holder = lock.acquire()
        assert lock.holder == holder
        assert lock.current_holder().holder == holder
        lock.release()
        assert lock.holder is None
        assert lock.current_holder() is None

    def test_second_lock_fails_fast(self, dialect, database):
        first = RollbackLock(dialect, database)
        second = RollbackLock(dialect, database)
        holder = first.acquire()
        try:
            with pytest.raises(ConcurrentRollbackInProgressError) as exc_info:
                second.acquire()
            assert exc_info.value.holder == holder
            assert "How to fix" in str(exc_info.value)
        finally:
            first.release()

    def test_lock_is_reusable_after_release(self, dialect, database):
        with RollbackLock(dialect, database):
            pass
        with RollbackLock(dialect, database) as lock:
            assert lock.holder is not None

    def test_release_does_not_clear_another_holder(self, dialect, database):
        first = RollbackLock(dialect, database)
        second = RollbackLock(dialect, database)
        first.acquire()
        try:
            second.release()
            assert first.current_holder() is not None
        finally:
            first.release()

    def test_stale_lock_is_taken_over(self, dialect, database):
        abandoned = RollbackLock(dialect, database)
        abandoned.acquire()
        old = (datetime.now(UTC) - timedelta(hours=2)).isoformat()
        conn = sqlite3.connect(database)
        try:
            conn.execute("UPDATE schema_rewind_lock SET locked_at = ?", (old,))
            conn.commit()
        finally:
            conn.close()

        lock = RollbackLock(dialect, database, stale_after_seconds=3600)
        holder = lock.acquire()
        try:
            assert lock.current_holder().holder == holder
            assert holder != abandoned.holder
        finally:
            lock.release()

    def test_fresh_lock_is_not_taken_over(self, dialect, database):
        first = RollbackLock(dialect, database, stale_after_seconds=3600)
        first.acquire()
        try:
            with pytest.raises(ConcurrentRollbackInProgressError):
                RollbackLock(dialect, database, stale_after_seconds=3600).acquire()
        finally:
            first.release()

    def test_same_instance_cannot_acquire_twice(self, dialect, database):
        lock = RollbackLock(dialect, database)
        lock.acquire()
        try:
            with pytest.raises(ConcurrentRollbackInProgressError):
                lock.acquire()
        finally:
            lock.release()


class TestCheckAvailable:
    """Tests for checking the lock without claiming it."""

    def test_free_lock_is_available(self, dialect, database):
        lock = RollbackLock(dialect, database)
        lock.check_available()
        assert lock.holder is None
        assert lock.current_holder() is None

    def test_held_lock_reports_holder(self, dialect, database):
        first = RollbackLock(dialect, database)
        holder = first.acquire()
        try:
            with pytest.raises(ConcurrentRollbackInProgressError) as exc_info:
                RollbackLock(dialect, database).check_available()
            assert exc_info.value.holder == holder
        finally:
            first.release()

    def test_own_lock_is_available(self, dialect, database):
        with RollbackLock(dialect, database) as lock:
            lock.check_available()

    def test_stale_lock_is_available(self, dialect, database):
        abandoned = RollbackLock(dialect, database)
        abandoned.acquire()
        old = (datetime.now(UTC) - timedelta(hours=2)).isoformat()
        conn = sqlite3.connect(database)
        try:
            conn.execute("UPDATE schema_rewind_lock SET locked_at = ?", (old,))
            conn.commit()
        finally:
            conn.close()

        RollbackLock(dialect, database, stale_after_seconds=3600).check_available()
