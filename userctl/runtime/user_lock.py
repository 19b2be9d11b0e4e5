"""
Per-user advisory locks.

Locks are cooperative: every admin invocation that mutates a user claims the
user's lock row first. The storage engine does not enforce them.

- A claim is a conditional UPDATE (row unlocked, or its lease expired), so two
  processes cannot both win it.
- The lease expiry equals the wait timeout, so a crashed holder frees the lock.
- Release only clears a lock still owned by the releasing token.
"""

from __future__ import annotations

import time
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Callable, Generator

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from userctl.exceptions import LockTimeoutError, PersistenceError
from userctl.monitoring.logger import get_logger
from userctl.storage.db import Database
from userctl.storage.repository import LockModel

logger = get_logger(__name__)


class UserLockService(ABC):
    """Acquire/release interface for per-user locks."""

    @abstractmethod
    def create_lock(self, user_id: str) -> None:
        """Provision the lock record for a new user."""

    @abstractmethod
    def acquire(self, user_id: str, timeout: float) -> str:
        """Block until the lock is held or `timeout` seconds pass. Returns an owner token."""

    @abstractmethod
    def release(self, user_id: str, token: str) -> None:
        """Release a lock previously returned by acquire()."""

    @contextmanager
    def held(self, user_id: str, timeout: float) -> Generator[str, None, None]:
        token = self.acquire(user_id, timeout)
        try:
            yield token
        finally:
            self.release(user_id, token)


class DatabaseLockService(UserLockService):
    """Lock records stored in the `locks` table."""

    def __init__(
        self,
        db: Database,
        *,
        retry_interval: float = 0.5,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.retry_interval = retry_interval
        self._clock = clock
        self._sleep = sleep

    def create_lock(self, user_id: str) -> None:
        try:
            with self.db.get_session() as session:
                if session.get(LockModel, user_id) is None:
                    session.add(LockModel(user_id=user_id, locked=False, owner=None, expires_at=0.0))
        except IntegrityError:
            # Another process provisioned it first
            logger.debug("LOCK_RECORD_EXISTS", user_id=user_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to create lock record for user {user_id}: {e}") from e

    def _try_claim(self, user_id: str, token: str, timeout: float) -> bool:
        now = self._clock()
        with self.db.get_session() as session:
            result = session.execute(
                update(LockModel)
                .where(LockModel.user_id == user_id)
                .where(or_(LockModel.locked.is_(False), LockModel.expires_at < now))
                .values(locked=True, owner=token, expires_at=now + timeout)
            )
            return result.rowcount == 1

    def acquire(self, user_id: str, timeout: float) -> str:
        token = uuid.uuid4().hex
        deadline = self._clock() + timeout
        attempts = 0
        try:
            while True:
                attempts += 1
                if self._try_claim(user_id, token, timeout):
                    logger.debug("USER_LOCK_ACQUIRED", user_id=user_id, attempts=attempts, timeout=timeout)
                    return token
                if attempts == 1:
                    # Users created before lock records existed have no row yet
                    self.create_lock(user_id)
                    continue
                if self._clock() >= deadline:
                    logger.warning("USER_LOCK_TIMEOUT", user_id=user_id, attempts=attempts, timeout=timeout)
                    raise LockTimeoutError(user_id, timeout)
                self._sleep(self.retry_interval)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to acquire lock for user {user_id}: {e}") from e

    def release(self, user_id: str, token: str) -> None:
        try:
            with self.db.get_session() as session:
                result = session.execute(
                    update(LockModel)
                    .where(LockModel.user_id == user_id)
                    .where(LockModel.owner == token)
                    .values(locked=False, owner=None, expires_at=0.0)
                )
                released = result.rowcount == 1
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to release lock for user {user_id}: {e}") from e

        if not released:
            # Lease expired and another invocation took the lock
            logger.warning("USER_LOCK_RELEASE_LOST", user_id=user_id)
        else:
            logger.debug("USER_LOCK_RELEASED", user_id=user_id)
