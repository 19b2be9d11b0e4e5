"""
Tests for the lock-table advisory lock.
"""
import pytest

from userctl.exceptions import LockTimeoutError
from userctl.runtime.user_lock import DatabaseLockService
from userctl.storage.repository import LockModel


@pytest.fixture
def service(db, clock):
    return DatabaseLockService(db, retry_interval=1.0, clock=clock, sleep=clock.sleep)


@pytest.fixture
def user_id(make_user):
    return make_user("alice").id


def _lock_row(db, user_id):
    with db.get_session() as session:
        row = session.get(LockModel, user_id)
        return None if row is None else (row.locked, row.owner, row.expires_at)


def test_acquire_provisions_missing_row(service, db, user_id, clock):
    assert _lock_row(db, user_id) is None

    token = service.acquire(user_id, timeout=10)

    assert _lock_row(db, user_id) == (True, token, clock.now + 10)


def test_release_clears_lock(service, db, user_id):
    service.create_lock(user_id)
    token = service.acquire(user_id, timeout=10)

    service.release(user_id, token)

    assert _lock_row(db, user_id) == (False, None, 0.0)


def test_create_lock_is_idempotent(service, db, user_id):
    service.create_lock(user_id)
    service.create_lock(user_id)

    assert _lock_row(db, user_id) == (False, None, 0.0)


def test_times_out_while_lease_is_live(service, user_id, clock):
    service.acquire(user_id, timeout=100)
    start = clock.now

    with pytest.raises(LockTimeoutError) as exc_info:
        service.acquire(user_id, timeout=5)

    assert exc_info.value.user_id == user_id
    assert clock.now - start >= 5


def test_expired_lease_can_be_taken(service, db, user_id, clock):
    first = service.acquire(user_id, timeout=5)
    clock.sleep(6)

    second = service.acquire(user_id, timeout=5)

    assert second != first
    assert _lock_row(db, user_id)[1] == second


def test_waiter_gets_lock_when_lease_expires(service, user_id, clock):
    service.acquire(user_id, timeout=3)

    token = service.acquire(user_id, timeout=10)

    assert token
    assert clock.now > 1000.0 + 3


def test_stale_release_keeps_new_owner(service, db, user_id, clock):
    stale = service.acquire(user_id, timeout=5)
    clock.sleep(6)
    current = service.acquire(user_id, timeout=5)

    service.release(user_id, stale)

    assert _lock_row(db, user_id)[:2] == (True, current)


def test_held_releases_on_error(service, db, user_id):
    with pytest.raises(RuntimeError):
        with service.held(user_id, timeout=5):
            assert _lock_row(db, user_id)[0] is True
            raise RuntimeError("boom")

    assert _lock_row(db, user_id)[0] is False


def test_locks_are_per_user(service, make_user, user_id):
    other = make_user("bob").id
    service.acquire(user_id, timeout=30)

    assert service.acquire(other, timeout=1)
