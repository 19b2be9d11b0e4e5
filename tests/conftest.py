"""
Pytest configuration and shared fixtures.

Unit tests run against an in-memory SQLite database and a fake lock service.
"""
import io

import pytest

from userctl.cli_output import Reporter
from userctl.config.config import LockConfig, PlatformConfig, UserCtlConfig
from userctl.runtime.user_lock import UserLockService
from userctl.storage.db import Database
from userctl.storage.repository import ApplicationModel, DomainModel, UserRepository


class FakeLockService(UserLockService):
    """Records lock traffic instead of touching a lock table."""

    def __init__(self):
        self.created = []
        self.acquired = []
        self.released = []
        self.held_now = set()
        self.fail_with = None
        self.fail_for = {}

    def create_lock(self, user_id):
        self.created.append(user_id)

    def acquire(self, user_id, timeout):
        if self.fail_with is not None:
            raise self.fail_with
        if user_id in self.fail_for:
            raise self.fail_for[user_id]
        assert user_id not in self.held_now, "lock is not re-entrant"
        self.held_now.add(user_id)
        self.acquired.append((user_id, timeout))
        return f"token-{len(self.acquired)}"

    def release(self, user_id, token):
        self.held_now.discard(user_id)
        self.released.append((user_id, token))


class FakeClock:
    """Deterministic clock whose sleep() advances time."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Keep the caller's environment from leaking into configuration."""
    for name in ("DATABASE_URL", "ENVIRONMENT", "USERCTL_CONFIG", "USERCTL_ENV_FILE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config():
    return UserCtlConfig(
        environment="test",
        platform=PlatformConfig(
            allow_ha_applications=False,
            valid_gear_sizes=["small", "medium", "large"],
            default_gear_sizes=["small"],
            default_plan_id="free",
            default_max_domains=10,
            default_max_gears=100,
        ),
        locking=LockConfig(
            lock_timeout_seconds=5,
            extended_lock_timeout_seconds=60,
            retry_interval_seconds=0.01,
        ),
    )


@pytest.fixture
def db():
    database = Database("sqlite://")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def repository(db):
    return UserRepository(db)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def locks():
    return FakeLockService()


@pytest.fixture
def reporter():
    return Reporter(out=io.StringIO(), err=io.StringIO())


@pytest.fixture
def make_user(repository, config):
    """Create a user with platform defaults, then apply field overrides."""

    def _make(login, **fields):
        user = repository.create_user(login, config.platform, parent_user_id=fields.pop("parent_user_id", None))
        capabilities = fields.pop("capabilities", None)
        for name, value in fields.items():
            setattr(user, name, value)
        if capabilities:
            for name, value in capabilities.items():
                setattr(user.capabilities, name, value)
        repository.save(user)
        return repository.get(user.id)

    return _make


@pytest.fixture
def add_application(db):
    """Insert a domain (if needed) and an application owned by a user."""

    def _add(user, namespace, name, additional_storage=0, tracked_storage=0, gear_count=1):
        with db.get_session() as session:
            domain = session.query(DomainModel).filter(DomainModel.namespace == namespace).first()
            if domain is None:
                domain = DomainModel(namespace=namespace, owner_id=user.id)
                session.add(domain)
                session.flush()
            app = ApplicationModel(
                name=name,
                domain_id=domain.id,
                gear_count=gear_count,
                additional_storage=additional_storage,
                tracked_storage=tracked_storage,
            )
            session.add(app)
            session.flush()
            return app.id

    return _add


@pytest.fixture(scope="session", autouse=True)
def _configure_logging():
    """Route structlog through stdlib logging (stderr) for the whole run."""
    from userctl.monitoring.logger import setup_logging

    setup_logging("WARNING", "text")
