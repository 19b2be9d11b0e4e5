"""
Custom exception hierarchy for userctl.

Every error carries the process exit code it maps to, so the batch runner can
turn an exception into a per-login result without a lookup table.

Hierarchy:

    UserCtlError (base)
    ├── UsageError            malformed or conflicting flags (255)
    ├── ValidationError       bad numeric values, unreadable logins file (1)
    │   └── GearSizeError     unknown gear size (1)
    ├── PolicyError           not-found / policy violations (5)
    │   ├── UserNotFoundError
    │   ├── SubaccountError
    │   └── FeatureDisabledError
    └── OperationalError      persistence and integration failures (6)
        ├── PersistenceError
        ├── LockTimeoutError
        └── StorageAccountingError

Rules:
    - UsageError / ValidationError: raised at parse time, abort the invocation.
    - PolicyError / OperationalError: abort the current login only; the batch
      continues with the next login.
    - Anything else is unexpected: reported per login, never silently dropped.
"""
from userctl.constants import (
    EXIT_INVALID_ARGUMENT,
    EXIT_PERSISTENCE,
    EXIT_POLICY,
    EXIT_USAGE,
)


class UserCtlError(Exception):
    """Base exception for all userctl errors."""
    exit_code = EXIT_PERSISTENCE


class UsageError(UserCtlError):
    """Malformed flags or a conflicting flag combination."""
    exit_code = EXIT_USAGE


# ============ VALIDATION (bad input, abort invocation) ============

class ValidationError(UserCtlError):
    """Raised when an argument value fails validation."""
    exit_code = EXIT_INVALID_ARGUMENT


class GearSizeError(ValidationError):
    """Raised when a gear size is not offered by the platform."""
    pass


# ============ POLICY (not found / not allowed) ============

class PolicyError(UserCtlError):
    """A request that the stored state or platform policy does not allow."""
    exit_code = EXIT_POLICY


class UserNotFoundError(PolicyError):
    """Raised when a login does not resolve to a user record."""

    def __init__(self, login: str):
        super().__init__(f"User {login} not found")
        self.login = login


class SubaccountError(PolicyError):
    """Raised when a sub-account relationship would be violated."""
    pass


class FeatureDisabledError(PolicyError):
    """Raised when a platform-level feature flag is off."""
    pass


# ============ OPERATIONAL (persistence, locks, integration) ============

class OperationalError(UserCtlError):
    """Persistence or integration failure.

    Treatment: report for this login, continue the batch, exit non-zero.
    """
    exit_code = EXIT_PERSISTENCE


class PersistenceError(OperationalError):
    """Raised when a record cannot be read, saved or deleted."""
    pass


class LockTimeoutError(OperationalError):
    """Raised when a user lock is not acquired before the wait timeout."""

    def __init__(self, user_id: str, timeout: float):
        super().__init__(
            f"Timed out after {timeout:g}s waiting for the lock on user {user_id}"
        )
        self.user_id = user_id
        self.timeout = timeout


class StorageAccountingError(OperationalError):
    """Raised when an application cannot move to a new untracked storage ceiling."""
    pass
