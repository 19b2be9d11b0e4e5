"""
Lock-scoped mutations of user records.

Every mutation follows the same shape: take the user's advisory lock, re-read
the record, skip the write when the stored value already matches, otherwise
assign and save once.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from userctl.cli_output import Reporter
from userctl.config.config import UserCtlConfig
from userctl.domain.models import Capabilities, EditRequest, UserRecord
from userctl.exceptions import (
    FeatureDisabledError,
    GearSizeError,
    PersistenceError,
    StorageAccountingError,
    SubaccountError,
    UserCtlError,
    UserNotFoundError,
)
from userctl.monitoring.logger import get_logger
from userctl.runtime.user_lock import UserLockService
from userctl.storage.repository import UserRepository

logger = get_logger(__name__)


def _flag(value: bool) -> str:
    return "true" if value else "false"


@dataclass
class EditOutcome:
    """What apply() did for one user."""
    changed: bool = False
    # Errors that did not stop the remaining mutations but fail the login
    deferred: List[UserCtlError] = field(default_factory=list)


class UserEditor:
    """Applies an EditRequest to one user, one field at a time."""

    def __init__(
        self,
        repository: UserRepository,
        locks: UserLockService,
        config: UserCtlConfig,
        reporter: Reporter,
    ):
        self.repository = repository
        self.locks = locks
        self.platform = config.platform
        self.lock_timeout = config.locking.lock_timeout_seconds
        self.extended_lock_timeout = config.locking.extended_lock_timeout_seconds
        self.reporter = reporter

    def apply(self, user: UserRecord, request: EditRequest) -> EditOutcome:
        """Run the requested mutations in their fixed order."""
        outcome = EditOutcome()

        if request.max_domains is not None:
            outcome.changed |= self.set_max_domains(user, request.max_domains)
        if request.max_gears is not None:
            outcome.changed |= self.set_max_gears(user, request.max_gears)
        if request.max_teams is not None:
            outcome.changed |= self.set_max_teams(user, request.max_teams)
        if request.allow_view_global_teams is not None:
            outcome.changed |= self.set_capability(
                user, "view_global_teams", "view global teams allowed", request.allow_view_global_teams
            )
        if request.allow_private_ssl_certificates is not None:
            outcome.changed |= self.set_capability(
                user, "private_ssl_certificates", "private SSL certificates allowed",
                request.allow_private_ssl_certificates,
            )
        if request.max_tracked_storage is not None:
            outcome.changed |= self.set_max_tracked_storage(user, request.max_tracked_storage)
        if request.max_untracked_storage is not None:
            try:
                outcome.changed |= self.set_max_untracked_storage(user, request.max_untracked_storage)
            except StorageAccountingError as e:
                outcome.changed = True
                outcome.deferred.append(e)
        if request.allow_subaccounts is not None:
            outcome.changed |= self.set_capability(
                user, "subaccounts", "sub accounts allowed", request.allow_subaccounts
            )
        if request.allow_plan_upgrade is not None:
            outcome.changed |= self.set_capability(
                user, "plan_upgrade_enabled", "plan upgrade enabled", request.allow_plan_upgrade
            )
        if request.allow_ha is not None:
            outcome.changed |= self.set_allow_ha(user, request.allow_ha)
        if request.inherit_gear_sizes is not None:
            outcome.changed |= self.set_inherit_gear_sizes(user, request.inherit_gear_sizes)
        if request.add_subaccount is not None:
            outcome.changed |= self.add_subaccount(user, request.add_subaccount)
        if request.remove_subaccount is not None:
            outcome.changed |= self.remove_subaccount(user, request.remove_subaccount)
        if request.add_gear_size is not None:
            outcome.changed |= self.add_gear_size(user, request.add_gear_size)
        if request.remove_gear_size is not None:
            outcome.changed |= self.remove_gear_size(user, request.remove_gear_size)

        return outcome

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def reload(self, user: UserRecord) -> UserRecord:
        current = self.repository.get(user.id)
        if current is None:
            raise UserNotFoundError(user.login)
        return current

    def effective_capabilities(self, user: UserRecord) -> Capabilities:
        """The user's capabilities with anything its parent pushes down applied."""
        if not user.is_subaccount:
            return user.capabilities
        parent = self.repository.get(user.parent_user_id)
        if parent is None:
            return user.capabilities
        return user.capabilities.inherited_from(parent.capabilities)

    # ------------------------------------------------------------------
    # Generic field update
    # ------------------------------------------------------------------

    def _save(self, user: UserRecord) -> None:
        try:
            self.repository.save(user)
        except PersistenceError:
            self.reporter.info("Failed.")
            raise
        self.reporter.info("Done.")

    def _update(
        self,
        user: UserRecord,
        label: str,
        value: Any,
        read: Callable[[UserRecord], Any],
        write: Callable[[UserRecord, Any], None],
        *,
        shown: Optional[str] = None,
    ) -> bool:
        shown = shown if shown is not None else str(value)
        with self.locks.held(user.id, self.lock_timeout):
            current = self.reload(user)
            if read(current) == value:
                self.reporter.info(f"User {current.login} already has {label} set to {shown}")
                return False
            self.reporter.progress(f"Setting {label} to {shown} for user {current.login}... ")
            write(current, value)
            self._save(current)
        logger.info("USER_FIELD_UPDATED", login=user.login, field=label, value=shown)
        return True

    def _set_attr(self, user: UserRecord, attr: str, label: str, value: int) -> bool:
        return self._update(
            user, label, value,
            read=lambda u: getattr(u, attr),
            write=lambda u, v: setattr(u, attr, v),
        )

    # ------------------------------------------------------------------
    # Numeric setters
    # ------------------------------------------------------------------

    def set_max_domains(self, user: UserRecord, value: int) -> bool:
        return self._set_attr(user, "max_domains", "max domains", value)

    def set_max_gears(self, user: UserRecord, value: int) -> bool:
        return self._set_attr(user, "max_gears", "max gears", value)

    def set_max_teams(self, user: UserRecord, value: int) -> bool:
        return self._set_attr(user, "max_teams", "max teams", value)

    def set_max_tracked_storage(self, user: UserRecord, value: int) -> bool:
        return self._set_attr(user, "max_tracked_storage", "max tracked storage per gear", value)

    def set_max_untracked_storage(self, user: UserRecord, value: int) -> bool:
        """
        Move the untracked storage ceiling and re-account every application.

        Runs under the extended lock timeout. Application failures do not stop
        the walk; they are raised together once every application was tried.

        Raises:
            StorageAccountingError: If any application could not be updated
        """
        label = "max untracked storage per gear"
        with self.locks.held(user.id, self.extended_lock_timeout):
            current = self.reload(user)
            old = current.max_untracked_storage
            if old == value:
                self.reporter.info(f"User {current.login} already has {label} set to {value}")
                return False
            self.reporter.progress(f"Setting {label} to {value} for user {current.login}... ")
            current.max_untracked_storage = value
            self._save(current)
            failures = self._retrack_storage(current, old, value)

        logger.info("USER_FIELD_UPDATED", login=user.login, field=label, value=value, old=old)
        if failures:
            raise StorageAccountingError(
                f"Storage accounting failed for {len(failures)} application(s) of user {user.login}: "
                + "; ".join(failures)
            )
        return True

    def _retrack_storage(self, user: UserRecord, old: int, new: int) -> List[str]:
        failures = []
        for app in self.repository.applications_for_user(user.id):
            try:
                updated = app.change_max_untracked_storage(old, new, user.max_tracked_storage)
                if updated.tracked_storage != app.tracked_storage:
                    self.repository.save_application(updated)
            except (ValueError, PersistenceError) as e:
                failures.append(f"{app.domain_namespace}/{app.name}")
                logger.error(
                    "STORAGE_RETRACK_FAILED",
                    login=user.login,
                    application=app.name,
                    domain=app.domain_namespace,
                    error=str(e),
                )
                self.reporter.error(f"Error updating storage for application {app.name}: {e}")
        return failures

    # ------------------------------------------------------------------
    # Capability setters
    # ------------------------------------------------------------------

    def set_capability(self, user: UserRecord, name: str, label: str, value: bool) -> bool:
        return self._update(
            user, label, value,
            read=lambda u: getattr(u.capabilities, name),
            write=lambda u, v: setattr(u.capabilities, name, v),
            shown=_flag(value),
        )

    def set_allow_ha(self, user: UserRecord, value: bool) -> bool:
        if not self.platform.allow_ha_applications:
            raise FeatureDisabledError("High-availability applications are not enabled on this platform")
        return self.set_capability(user, "ha", "HA allowed", value)

    def set_inherit_gear_sizes(self, user: UserRecord, value: bool) -> bool:
        def write(u: UserRecord, v: bool) -> None:
            inherited = [n for n in u.capabilities.inherit_on_subaccounts if n != "gear_sizes"]
            if v:
                inherited.append("gear_sizes")
            u.capabilities.inherit_on_subaccounts = inherited

        return self._update(
            user, "inherit gear sizes", value,
            read=lambda u: u.capabilities.inherit_gear_sizes,
            write=write,
            shown=_flag(value),
        )

    # ------------------------------------------------------------------
    # Gear sizes
    # ------------------------------------------------------------------

    def _check_gear_size(self, size: str) -> None:
        if size not in self.platform.valid_gear_sizes:
            raise GearSizeError(
                f"Gear size {size} is not valid; valid gear sizes are: "
                + ", ".join(self.platform.valid_gear_sizes)
            )

    def _check_own_gear_sizes(self, user: UserRecord) -> None:
        if not user.is_subaccount:
            return
        parent = self.repository.get(user.parent_user_id)
        if parent is not None and parent.capabilities.inherit_gear_sizes:
            raise SubaccountError(
                f"User {user.login} inherits gear sizes from {parent.login}; change them on the parent"
            )

    def add_gear_size(self, user: UserRecord, size: str) -> bool:
        self._check_gear_size(size)
        with self.locks.held(user.id, self.lock_timeout):
            current = self.reload(user)
            self._check_own_gear_sizes(current)
            if size in current.capabilities.gear_sizes:
                self.reporter.info(f"User {current.login} already has gear size {size}")
                return False
            self.reporter.progress(f"Adding gear size {size} for user {current.login}... ")
            current.capabilities.gear_sizes.append(size)
            self._save(current)
        logger.info("USER_GEAR_SIZE_ADDED", login=user.login, gear_size=size)
        return True

    def remove_gear_size(self, user: UserRecord, size: str) -> bool:
        self._check_gear_size(size)
        with self.locks.held(user.id, self.lock_timeout):
            current = self.reload(user)
            self._check_own_gear_sizes(current)
            if size not in current.capabilities.gear_sizes:
                self.reporter.info(f"User {current.login} does not have gear size {size}")
                return False
            self.reporter.progress(f"Removing gear size {size} for user {current.login}... ")
            current.capabilities.gear_sizes = [s for s in current.capabilities.gear_sizes if s != size]
            self._save(current)
        logger.info("USER_GEAR_SIZE_REMOVED", login=user.login, gear_size=size)
        return True

    # ------------------------------------------------------------------
    # Sub-accounts
    # ------------------------------------------------------------------

    def add_subaccount(self, user: UserRecord, sub_login: str) -> bool:
        """
        Create a new user whose parent is `user`.

        Raises:
            SubaccountError: If the parent may not hold sub-accounts, or the
                login is taken (as this user's sub-account, another user's
                sub-account, or an independent user)
        """
        with self.locks.held(user.id, self.lock_timeout):
            parent = self.reload(user)
            if not self.effective_capabilities(parent).subaccounts:
                raise SubaccountError(f"User {parent.login} is not allowed to have sub accounts")
            if sub_login == parent.login:
                raise SubaccountError(f"User {parent.login} cannot be a sub account of itself")

            existing = self.repository.find_by_login(sub_login)
            if existing is not None:
                if existing.parent_user_id == parent.id:
                    raise SubaccountError(f"User {sub_login} is already a sub account of {parent.login}")
                if existing.parent_user_id is not None:
                    raise SubaccountError(f"User {sub_login} is already a sub account of another user")
                raise SubaccountError(f"User {sub_login} already exists as an independent user")

            self.reporter.progress(f"Adding sub account {sub_login} to user {parent.login}... ")
            child = self.repository.create_user(sub_login, self.platform, parent_user_id=parent.id)
            self.locks.create_lock(child.id)
            self.reporter.info("Done.")
        logger.info("SUBACCOUNT_ADDED", login=user.login, subaccount=sub_login, subaccount_id=child.id)
        return True

    def remove_subaccount(self, user: UserRecord, sub_login: str) -> bool:
        """
        Force-delete a sub-account of `user`. Irreversible.

        Raises:
            SubaccountError: If the login is missing, belongs to another parent,
                or has sub-accounts of its own
        """
        with self.locks.held(user.id, self.lock_timeout):
            parent = self.reload(user)
            child = self.repository.find_by_login(sub_login)
            if child is None:
                raise SubaccountError(f"Sub account {sub_login} not found")
            if child.parent_user_id != parent.id:
                raise SubaccountError(f"User {sub_login} is not a sub account of {parent.login}")
            if self.repository.list_subaccounts(child.id):
                raise SubaccountError(f"User {sub_login} has sub accounts of its own")

            self.reporter.progress(f"Removing sub account {sub_login} from user {parent.login}... ")
            self.repository.force_delete(child.id)
            self.reporter.info("Done.")
        logger.warning("SUBACCOUNT_REMOVED", login=user.login, subaccount=sub_login, subaccount_id=child.id)
        return True
