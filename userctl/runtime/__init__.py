"""
Runtime utilities (per-user advisory locks).
"""
from userctl.runtime.user_lock import (
    DatabaseLockService,
    UserLockService,
)
