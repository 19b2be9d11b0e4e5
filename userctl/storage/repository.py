"""
Persistence functions for user records and the objects they own.

Provides repository pattern for clean data access. ORM models are converted
to userctl.domain.models records at this boundary, and SQLAlchemy errors are
wrapped in PersistenceError.
"""
from sqlalchemy import Column, String, DateTime, Integer, Float, Boolean, ForeignKey, JSON, Index, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from datetime import datetime, timezone
from typing import List, Optional
import uuid

from userctl.config.config import PlatformConfig
from userctl.domain.models import ApplicationRecord, Capabilities, UserRecord
from userctl.exceptions import PersistenceError
from userctl.monitoring.logger import get_logger
from userctl.storage.db import Base, Database

logger = get_logger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex


# ORM Models
class UserModel(Base):
    """ORM model for user records."""
    __tablename__ = "users"
    __table_args__ = (
        Index('idx_user_parent', 'parent_user_id'),
    )

    id = Column(String(32), primary_key=True, default=_new_id)
    login = Column(String, nullable=False, unique=True)
    plan_id = Column(String, nullable=True)
    consumed_gears = Column(Integer, nullable=False, default=0)
    max_domains = Column(Integer, nullable=False, default=0)
    max_gears = Column(Integer, nullable=False, default=0)
    max_teams = Column(Integer, nullable=False, default=0)
    max_tracked_additional_storage_per_gear = Column(Integer, nullable=False, default=0)
    max_untracked_additional_storage_per_gear = Column(Integer, nullable=False, default=0)
    capabilities = Column(JSON, nullable=False, default=dict)
    parent_user_id = Column(String(32), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))


class DomainModel(Base):
    """ORM model for domains (namespaces) owned by a user."""
    __tablename__ = "domains"

    id = Column(String(32), primary_key=True, default=_new_id)
    namespace = Column(String, nullable=False, unique=True)
    owner_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)


class ApplicationModel(Base):
    """ORM model for applications and their per-gear storage accounting."""
    __tablename__ = "applications"

    id = Column(String(32), primary_key=True, default=_new_id)
    name = Column(String, nullable=False)
    domain_id = Column(String(32), ForeignKey("domains.id"), nullable=False, index=True)
    gear_count = Column(Integer, nullable=False, default=1)
    additional_storage = Column(Integer, nullable=False, default=0)
    tracked_storage = Column(Integer, nullable=False, default=0)


class LockModel(Base):
    """ORM model for per-user advisory lock records."""
    __tablename__ = "locks"

    user_id = Column(String(32), ForeignKey("users.id"), primary_key=True)
    locked = Column(Boolean, nullable=False, default=False)
    owner = Column(String(32), nullable=True)
    expires_at = Column(Float, nullable=False, default=0.0)  # epoch seconds


def _to_user_record(model: UserModel) -> UserRecord:
    return UserRecord(
        id=model.id,
        login=model.login,
        plan_id=model.plan_id,
        consumed_gears=model.consumed_gears,
        max_domains=model.max_domains,
        max_gears=model.max_gears,
        max_teams=model.max_teams,
        max_tracked_storage=model.max_tracked_additional_storage_per_gear,
        max_untracked_storage=model.max_untracked_additional_storage_per_gear,
        capabilities=Capabilities.from_dict(model.capabilities),
        parent_user_id=model.parent_user_id,
        created_at=model.created_at,
    )


def _to_application_record(model: ApplicationModel, namespace: str) -> ApplicationRecord:
    return ApplicationRecord(
        id=model.id,
        name=model.name,
        domain_namespace=namespace,
        gear_count=model.gear_count,
        additional_storage=model.additional_storage,
        tracked_storage=model.tracked_storage,
    )


class UserRepository:
    """Reads and writes user records and the domains/applications they own."""

    def __init__(self, db: Database):
        self.db = db

    def find_by_login(self, login: str) -> Optional[UserRecord]:
        try:
            with self.db.get_session() as session:
                model = session.query(UserModel).filter(UserModel.login == login).first()
                return _to_user_record(model) if model else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to look up user {login}: {e}") from e

    def get(self, user_id: str) -> Optional[UserRecord]:
        try:
            with self.db.get_session() as session:
                model = session.get(UserModel, user_id)
                return _to_user_record(model) if model else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load user {user_id}: {e}") from e

    def create_user(self, login: str, defaults: PlatformConfig, parent_user_id: Optional[str] = None) -> UserRecord:
        """
        Insert a user with the platform defaults.

        Raises:
            PersistenceError: If the insert fails (including a login that
                already exists)
        """
        capabilities = Capabilities(gear_sizes=list(defaults.default_gear_sizes))
        model = UserModel(
            id=_new_id(),
            login=login,
            plan_id=defaults.default_plan_id,
            max_domains=defaults.default_max_domains,
            max_gears=defaults.default_max_gears,
            max_teams=defaults.default_max_teams,
            capabilities=capabilities.to_dict(),
            parent_user_id=parent_user_id,
        )
        try:
            with self.db.get_session() as session:
                session.add(model)
                session.flush()
                record = _to_user_record(model)
        except IntegrityError as e:
            raise PersistenceError(f"Failed to create user {login}: login already exists") from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to create user {login}: {e}") from e

        logger.info("USER_CREATED", login=login, user_id=record.id, parent_user_id=parent_user_id)
        return record

    def save(self, user: UserRecord) -> None:
        """Write every editable field of the record back to its row."""
        try:
            with self.db.get_session() as session:
                model = session.get(UserModel, user.id)
                if model is None:
                    raise PersistenceError(f"Failed to save user {user.login}: record no longer exists")
                model.plan_id = user.plan_id
                model.max_domains = user.max_domains
                model.max_gears = user.max_gears
                model.max_teams = user.max_teams
                model.max_tracked_additional_storage_per_gear = user.max_tracked_storage
                model.max_untracked_additional_storage_per_gear = user.max_untracked_storage
                model.capabilities = user.capabilities.to_dict()
                model.parent_user_id = user.parent_user_id
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save user {user.login}: {e}") from e

    def count_domains(self, user_id: str) -> int:
        try:
            with self.db.get_session() as session:
                return session.execute(
                    select(func.count(DomainModel.id)).where(DomainModel.owner_id == user_id)
                ).scalar_one()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to count domains of user {user_id}: {e}") from e

    def list_subaccounts(self, user_id: str) -> List[UserRecord]:
        try:
            with self.db.get_session() as session:
                models = (
                    session.query(UserModel)
                    .filter(UserModel.parent_user_id == user_id)
                    .order_by(UserModel.login)
                    .all()
                )
                return [_to_user_record(m) for m in models]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list sub-accounts of user {user_id}: {e}") from e

    def applications_for_user(self, user_id: str) -> List[ApplicationRecord]:
        """All applications under every domain owned by the user."""
        try:
            with self.db.get_session() as session:
                rows = session.execute(
                    select(ApplicationModel, DomainModel.namespace)
                    .join(DomainModel, ApplicationModel.domain_id == DomainModel.id)
                    .where(DomainModel.owner_id == user_id)
                    .order_by(DomainModel.namespace, ApplicationModel.name)
                ).all()
                return [_to_application_record(app, namespace) for app, namespace in rows]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list applications of user {user_id}: {e}") from e

    def save_application(self, app: ApplicationRecord) -> None:
        try:
            with self.db.get_session() as session:
                model = session.get(ApplicationModel, app.id)
                if model is None:
                    raise PersistenceError(f"Failed to save application {app.name}: record no longer exists")
                model.gear_count = app.gear_count
                model.additional_storage = app.additional_storage
                model.tracked_storage = app.tracked_storage
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save application {app.name}: {e}") from e

    def force_delete(self, user_id: str) -> None:
        """
        Delete a user with its applications, domains and lock record.

        Irreversible; no confirmation is asked for.
        """
        try:
            with self.db.get_session() as session:
                domain_ids = [
                    d for (d,) in session.execute(
                        select(DomainModel.id).where(DomainModel.owner_id == user_id)
                    ).all()
                ]
                if domain_ids:
                    session.query(ApplicationModel).filter(
                        ApplicationModel.domain_id.in_(domain_ids)
                    ).delete(synchronize_session=False)
                    session.query(DomainModel).filter(
                        DomainModel.id.in_(domain_ids)
                    ).delete(synchronize_session=False)
                session.query(LockModel).filter(LockModel.user_id == user_id).delete(synchronize_session=False)
                deleted = session.query(UserModel).filter(UserModel.id == user_id).delete(synchronize_session=False)
                if not deleted:
                    raise PersistenceError(f"Failed to delete user {user_id}: record no longer exists")
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to delete user {user_id}: {e}") from e

        logger.warning("USER_FORCE_DELETED", user_id=user_id, domains=len(domain_ids))
