"""
Domain models for userctl.

These are the plain objects passed between the command line, the editor and
the repository. ORM rows never leave userctl.storage.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from userctl.constants import EXIT_SUCCESS, INHERITABLE_CAPABILITIES


@dataclass
class Capabilities:
    """Capability set stored on a user record."""
    subaccounts: bool = False
    private_ssl_certificates: bool = False
    plan_upgrade_enabled: bool = False
    ha: bool = False
    view_global_teams: bool = False
    gear_sizes: List[str] = field(default_factory=list)
    inherit_on_subaccounts: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Capabilities":
        data = data or {}
        return cls(
            subaccounts=bool(data.get("subaccounts", False)),
            private_ssl_certificates=bool(data.get("private_ssl_certificates", False)),
            plan_upgrade_enabled=bool(data.get("plan_upgrade_enabled", False)),
            ha=bool(data.get("ha", False)),
            view_global_teams=bool(data.get("view_global_teams", False)),
            gear_sizes=list(data.get("gear_sizes") or []),
            inherit_on_subaccounts=list(data.get("inherit_on_subaccounts") or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subaccounts": self.subaccounts,
            "private_ssl_certificates": self.private_ssl_certificates,
            "plan_upgrade_enabled": self.plan_upgrade_enabled,
            "ha": self.ha,
            "view_global_teams": self.view_global_teams,
            "gear_sizes": list(self.gear_sizes),
            "inherit_on_subaccounts": list(self.inherit_on_subaccounts),
        }

    @property
    def inherit_gear_sizes(self) -> bool:
        return "gear_sizes" in self.inherit_on_subaccounts

    def inherited_from(self, parent: "Capabilities") -> "Capabilities":
        """
        Overlay the capabilities the parent pushes down to its sub-accounts.

        Only names listed in the parent's inherit_on_subaccounts are copied.
        """
        overrides = {
            name: list(getattr(parent, name))
            for name in parent.inherit_on_subaccounts
            if name in INHERITABLE_CAPABILITIES
        }
        return replace(self, **overrides) if overrides else self


@dataclass
class UserRecord:
    """A user's quota and capability fields."""
    id: str
    login: str
    plan_id: Optional[str] = None
    consumed_gears: int = 0
    max_domains: int = 0
    max_gears: int = 0
    max_teams: int = 0
    max_tracked_storage: int = 0  # additional GB per gear, billed
    max_untracked_storage: int = 0  # additional GB per gear, free
    capabilities: Capabilities = field(default_factory=Capabilities)
    parent_user_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_subaccount(self) -> bool:
        return self.parent_user_id is not None


@dataclass
class ApplicationRecord:
    """An application and its per-gear additional storage accounting."""
    id: str
    name: str
    domain_namespace: str
    gear_count: int = 1
    additional_storage: int = 0  # GB per gear
    tracked_storage: int = 0  # GB per gear counted against the tracked quota

    def change_max_untracked_storage(self, old_ceiling: int, new_ceiling: int, max_tracked: int) -> "ApplicationRecord":
        """
        Recompute tracked storage when the user's untracked ceiling moves.

        Storage below the ceiling is untracked; whatever exceeds it is tracked
        and must fit in the user's tracked allowance.

        Returns:
            A new record with the recomputed tracked storage

        Raises:
            ValueError: If the tracked portion would exceed max_tracked
        """
        tracked = max(0, self.additional_storage - new_ceiling)
        if tracked > max_tracked:
            raise ValueError(
                f"application {self.name} needs {tracked}GB tracked storage per gear "
                f"with an untracked ceiling of {new_ceiling}GB (was {old_ceiling}GB), "
                f"but the user may only track {max_tracked}GB"
            )
        return replace(self, tracked_storage=tracked)


@dataclass
class EditRequest:
    """Requested mutations for one login. None means "leave unchanged"."""
    max_domains: Optional[int] = None
    max_gears: Optional[int] = None
    max_teams: Optional[int] = None
    allow_view_global_teams: Optional[bool] = None
    allow_private_ssl_certificates: Optional[bool] = None
    max_tracked_storage: Optional[int] = None
    max_untracked_storage: Optional[int] = None
    allow_subaccounts: Optional[bool] = None
    allow_plan_upgrade: Optional[bool] = None
    allow_ha: Optional[bool] = None
    inherit_gear_sizes: Optional[bool] = None
    add_subaccount: Optional[str] = None
    remove_subaccount: Optional[str] = None
    add_gear_size: Optional[str] = None
    remove_gear_size: Optional[str] = None


class Outcome(str, Enum):
    """Per-login outcome."""
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class LoginResult:
    """Result of processing one login."""
    login: str
    outcome: Outcome
    exit_code: int = EXIT_SUCCESS
    message: Optional[str] = None

    @classmethod
    def ok(cls, login: str) -> "LoginResult":
        return cls(login=login, outcome=Outcome.SUCCESS)

    @classmethod
    def failed(cls, login: str, exit_code: int, message: str) -> "LoginResult":
        return cls(login=login, outcome=Outcome.ERROR, exit_code=exit_code, message=message)

    @property
    def succeeded(self) -> bool:
        return self.outcome == Outcome.SUCCESS


@dataclass
class BatchSummary:
    """Collects per-login results; the process exit code is computed once here."""
    results: List[LoginResult] = field(default_factory=list)

    def add(self, result: LoginResult) -> None:
        self.results.append(result)

    @property
    def failures(self) -> List[LoginResult]:
        return [r for r in self.results if not r.succeeded]

    @property
    def exit_code(self) -> int:
        """Exit code of the first failed login, or 0."""
        failures = self.failures
        return failures[0].exit_code if failures else EXIT_SUCCESS


@dataclass
class CommandOptions:
    """Parsed command line: which logins to process and what to change."""
    logins: List[str]
    edit: EditRequest = field(default_factory=EditRequest)
    create: bool = False
    quiet: bool = False
    list_subaccounts: bool = False

    @property
    def is_batch(self) -> bool:
        return len(self.logins) > 1
