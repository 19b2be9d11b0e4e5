"""
Console output for userctl: progress messages, the user report, diagnostics.

Quiet mode is a flag on the Reporter; stdout writes are dropped, stderr
writes never are.
"""
from __future__ import annotations

import sys
import traceback
from typing import Iterable, Optional, TextIO

from userctl.constants import REPORT_LABEL_WIDTH, SUBACCOUNT_INDENT
from userctl.domain.models import Capabilities, UserRecord


def _flag(value: bool) -> str:
    return "true" if value else "false"


class Reporter:
    """Writes to stdout (suppressible) and stderr."""

    def __init__(self, quiet: bool = False, out: Optional[TextIO] = None, err: Optional[TextIO] = None):
        self.quiet = quiet
        self._out = out
        self._err = err

    @property
    def out(self) -> TextIO:
        return self._out if self._out is not None else sys.stdout

    @property
    def err(self) -> TextIO:
        return self._err if self._err is not None else sys.stderr

    def info(self, message: str) -> None:
        if not self.quiet:
            print(message, file=self.out)

    def progress(self, message: str) -> None:
        """Start a line that a later info() call finishes (e.g. "Done.")."""
        if not self.quiet:
            print(message, end="", file=self.out, flush=True)

    def error(self, message: str) -> None:
        print(message, file=self.err)

    def report_user(
        self,
        user: UserRecord,
        *,
        domain_count: int,
        capabilities: Capabilities,
        parent_login: Optional[str] = None,
        subaccounts: Optional[Iterable[UserRecord]] = None,
    ) -> None:
        """
        Print the fixed-width summary of a user's quota and capability fields.

        Args:
            user: Reloaded user record
            domain_count: Number of domains the user owns
            capabilities: Effective capabilities (parent inheritance applied)
            parent_login: Login of the parent, for sub-accounts
            subaccounts: When given, appended as an indented listing
        """
        if self.quiet:
            return

        rows = [
            ("plan", user.plan_id or "none"),
            ("consumed domains", domain_count),
            ("max domains", user.max_domains),
            ("consumed gears", user.consumed_gears),
            ("max gears", user.max_gears),
            ("max teams", user.max_teams),
            ("max tracked storage per gear", user.max_tracked_storage),
            ("max untracked storage per gear", user.max_untracked_storage),
            ("plan upgrade enabled", _flag(capabilities.plan_upgrade_enabled)),
            ("gear sizes", ", ".join(capabilities.gear_sizes) or "none"),
            ("sub accounts allowed", _flag(capabilities.subaccounts)),
            ("private SSL certificates allowed", _flag(capabilities.private_ssl_certificates)),
            ("view global teams allowed", _flag(capabilities.view_global_teams)),
            ("inherit gear sizes", _flag(capabilities.inherit_gear_sizes)),
            ("HA allowed", _flag(capabilities.ha)),
        ]
        if parent_login is not None:
            rows.append(("parent login", parent_login))

        lines = [f"User {user.login}:"]
        lines.extend(f"{label:>{REPORT_LABEL_WIDTH}}: {value}" for label, value in rows)

        if subaccounts is not None:
            logins = [s.login for s in subaccounts]
            lines.append("")
            lines.append("Sub accounts:")
            lines.extend(f"{SUBACCOUNT_INDENT}{login}" for login in logins)
            if not logins:
                lines.append(f"{SUBACCOUNT_INDENT}(none)")

        print("\n".join(lines), file=self.out)
        print(file=self.out)


def print_critical_error(title: str, error: Exception, *, err: Optional[TextIO] = None) -> None:
    stream = err if err is not None else sys.stderr
    print("=" * 80, file=stream)
    print(f"CRITICAL ERROR - {title}", file=stream)
    print("=" * 80, file=stream)
    print(f"Error: {error}", file=stream)
    print(f"Type: {type(error).__name__}", file=stream)
    traceback.print_exception(type(error), error, error.__traceback__, file=stream)
    print("=" * 80, file=stream)
