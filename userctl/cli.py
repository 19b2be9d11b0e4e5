"""
CLI entrypoint for userctl.

Edits quota and capability fields of one user, or of every login listed in a
file (one process for many logins avoids paying startup cost per user).

Example:
    userctl -l alice --setmaxgears 50 --addgearsize medium
    userctl -f logins.txt --allowsubaccounts true -q
"""
import importlib
import re
import sys
from pathlib import Path
from typing import Iterable, List, Optional

import typer

from userctl.cli_output import Reporter, print_critical_error
from userctl.config.config import UserCtlConfig, load_config
from userctl.config.dotenv_loader import load_dotenv_files
from userctl.constants import EXIT_INVALID_ARGUMENT, EXIT_USAGE, TRUE_TOKENS
from userctl.domain.models import CommandOptions, EditRequest
from userctl.exceptions import UsageError, ValidationError
from userctl.monitoring.logger import get_logger, setup_logging
from userctl.runtime.user_lock import DatabaseLockService, UserLockService
from userctl.services.runner import UserCtlRunner
from userctl.storage.db import init_db
from userctl.storage.repository import UserRepository

logger = get_logger(__name__)

USAGE = """\
Usage: userctl -l|--login <login> [options]
       userctl -f|--logins-file <file> [options]

Edit quota and capability fields of user records.

  -l|--login <login>                    Login to edit
  -f|--logins-file <file>               File with one login per line (blank lines and # comments ignored)
  -c|--create                           Create the user if it does not exist
  --setmaxdomains <number>              Set the maximum number of domains
  --setmaxgears <number>                Set the maximum number of gears
  --setmaxteams <number>                Set the maximum number of teams
  --allowviewglobalteams <true|false>   Allow viewing global teams
  --allowprivatesslcertificates <true|false>
                                        Allow private SSL certificates
  --setmaxtrackedstorage <number>       Set max tracked additional storage per gear (GB)
  --setmaxuntrackedstorage <number>     Set max untracked additional storage per gear (GB)
  --allowsubaccounts <true|false>       Allow sub accounts
  --allowplanupgrade <true|false>       Allow plan upgrades
  --allowha <true|false>                Allow high-availability applications
  --inheritgearsizes <true|false>       Push gear sizes down to sub accounts
  --addsubaccount <login>               Create a sub account (single login only)
  --removesubaccount <login>            Delete a sub account (single login only, irreversible)
  --listsubaccounts                     List sub accounts in the report
  --addgearsize <size>                  Allow a gear size
  --removegearsize <size>               Disallow a gear size
  --config <file>                       Configuration file
  -q|--quiet                            Suppress standard output (not with --listsubaccounts)
  -h|--help                             Show this message

Boolean values: true, yes, 1, t, y (any case) are true; anything else is false.
"""

_NON_NEGATIVE_INT = re.compile(r"[0-9]+")


def parse_bool(token: str) -> bool:
    return token.strip().lower() in TRUE_TOKENS


def parse_non_negative_int(value: str, flag: str) -> int:
    if not _NON_NEGATIVE_INT.fullmatch(value.strip()):
        raise ValidationError(f"{flag} must be a non-negative integer, got {value!r}")
    return int(value.strip())


def _dedupe(logins: Iterable[str]) -> List[str]:
    seen = set()
    unique = []
    for login in logins:
        if login not in seen:
            seen.add(login)
            unique.append(login)
    return unique


def read_logins_file(path: str) -> List[str]:
    try:
        lines = Path(path).read_text().splitlines()
    except OSError as e:
        raise ValidationError(f"Cannot read logins file {path}: {e}") from e
    return [
        line.strip() for line in lines
        if line.strip() and not line.strip().startswith("#")
    ]


def _optional_int(value: Optional[str], flag: str) -> Optional[int]:
    return None if value is None else parse_non_negative_int(value, flag)


def _optional_bool(value: Optional[str]) -> Optional[bool]:
    return None if value is None else parse_bool(value)


def build_options(
    *,
    login: Optional[str] = None,
    logins_file: Optional[str] = None,
    create: bool = False,
    quiet: bool = False,
    list_subaccounts: bool = False,
    setmaxdomains: Optional[str] = None,
    setmaxgears: Optional[str] = None,
    setmaxteams: Optional[str] = None,
    allowviewglobalteams: Optional[str] = None,
    allowprivatesslcertificates: Optional[str] = None,
    setmaxtrackedstorage: Optional[str] = None,
    setmaxuntrackedstorage: Optional[str] = None,
    allowsubaccounts: Optional[str] = None,
    allowplanupgrade: Optional[str] = None,
    allowha: Optional[str] = None,
    inheritgearsizes: Optional[str] = None,
    addsubaccount: Optional[str] = None,
    removesubaccount: Optional[str] = None,
    addgearsize: Optional[str] = None,
    removegearsize: Optional[str] = None,
) -> CommandOptions:
    """
    Turn raw flag values into CommandOptions.

    Raises:
        UsageError: For conflicting or missing flags
        ValidationError: For bad numeric values or an unreadable logins file
    """
    if quiet and list_subaccounts:
        raise UsageError("--quiet cannot be combined with --listsubaccounts")

    if login is None and logins_file is None:
        raise UsageError("a login is required (-l or -f)")

    logins = [login.strip()] if login is not None and login.strip() else []
    if logins_file is not None:
        logins.extend(read_logins_file(logins_file))
    logins = _dedupe(logins)
    if not logins:
        raise UsageError("no logins given")

    if len(logins) > 1 and (addsubaccount is not None or removesubaccount is not None):
        raise UsageError("--addsubaccount and --removesubaccount only work with a single login")

    edit = EditRequest(
        max_domains=_optional_int(setmaxdomains, "--setmaxdomains"),
        max_gears=_optional_int(setmaxgears, "--setmaxgears"),
        max_teams=_optional_int(setmaxteams, "--setmaxteams"),
        allow_view_global_teams=_optional_bool(allowviewglobalteams),
        allow_private_ssl_certificates=_optional_bool(allowprivatesslcertificates),
        max_tracked_storage=_optional_int(setmaxtrackedstorage, "--setmaxtrackedstorage"),
        max_untracked_storage=_optional_int(setmaxuntrackedstorage, "--setmaxuntrackedstorage"),
        allow_subaccounts=_optional_bool(allowsubaccounts),
        allow_plan_upgrade=_optional_bool(allowplanupgrade),
        allow_ha=_optional_bool(allowha),
        inherit_gear_sizes=_optional_bool(inheritgearsizes),
        add_subaccount=addsubaccount,
        remove_subaccount=removesubaccount,
        add_gear_size=addgearsize,
        remove_gear_size=removegearsize,
    )
    return CommandOptions(
        logins=logins,
        edit=edit,
        create=create,
        quiet=quiet,
        list_subaccounts=list_subaccounts,
    )


def execute(
    options: CommandOptions,
    *,
    config: Optional[UserCtlConfig] = None,
    config_path: Optional[str] = None,
    repository: Optional[UserRepository] = None,
    locks: Optional[UserLockService] = None,
    reporter: Optional[Reporter] = None,
) -> int:
    """Wire configuration, storage and locks, run the batch, return the exit code."""
    reporter = reporter or Reporter(quiet=options.quiet)
    env_files = []

    if config is None:
        env_files = load_dotenv_files()
        try:
            config = load_config(config_path)
        except (FileNotFoundError, ValueError) as e:
            print_critical_error("invalid configuration", e, err=reporter.err)
            return EXIT_INVALID_ARGUMENT

    setup_logging(config.monitoring.log_level, config.monitoring.log_format, config.monitoring.log_file)

    if repository is None or locks is None:
        db = init_db(config.data.database_url)
        repository = repository or UserRepository(db)
        locks = locks or DatabaseLockService(db, retry_interval=config.locking.retry_interval_seconds)

    logger.info("USERCTL_START", logins=len(options.logins), quiet=options.quiet, env_files=[str(p) for p in env_files])
    summary = UserCtlRunner(repository, locks, config, reporter).run(options)
    return summary.exit_code


app = typer.Typer(
    name="userctl",
    help="Edit quota and capability fields of user records.",
    add_completion=False,
    context_settings={"help_option_names": []},
)


@app.command(context_settings={"help_option_names": []})
def userctl(
    login: Optional[str] = typer.Option(None, "-l", "--login"),
    logins_file: Optional[str] = typer.Option(None, "-f", "--logins-file"),
    create: bool = typer.Option(False, "-c", "--create"),
    setmaxdomains: Optional[str] = typer.Option(None, "--setmaxdomains"),
    setmaxgears: Optional[str] = typer.Option(None, "--setmaxgears"),
    setmaxteams: Optional[str] = typer.Option(None, "--setmaxteams"),
    allowviewglobalteams: Optional[str] = typer.Option(None, "--allowviewglobalteams"),
    allowprivatesslcertificates: Optional[str] = typer.Option(None, "--allowprivatesslcertificates"),
    setmaxtrackedstorage: Optional[str] = typer.Option(None, "--setmaxtrackedstorage"),
    setmaxuntrackedstorage: Optional[str] = typer.Option(None, "--setmaxuntrackedstorage"),
    allowsubaccounts: Optional[str] = typer.Option(None, "--allowsubaccounts"),
    allowplanupgrade: Optional[str] = typer.Option(None, "--allowplanupgrade"),
    allowha: Optional[str] = typer.Option(None, "--allowha"),
    inheritgearsizes: Optional[str] = typer.Option(None, "--inheritgearsizes"),
    addsubaccount: Optional[str] = typer.Option(None, "--addsubaccount"),
    removesubaccount: Optional[str] = typer.Option(None, "--removesubaccount"),
    listsubaccounts: bool = typer.Option(False, "--listsubaccounts"),
    addgearsize: Optional[str] = typer.Option(None, "--addgearsize"),
    removegearsize: Optional[str] = typer.Option(None, "--removegearsize"),
    config_path: Optional[str] = typer.Option(None, "--config"),
    quiet: bool = typer.Option(False, "-q", "--quiet"),
    show_help: bool = typer.Option(False, "-h", "--help"),
) -> int:
    if show_help:
        print(USAGE)
        return EXIT_USAGE

    options = build_options(
        login=login,
        logins_file=logins_file,
        create=create,
        quiet=quiet,
        list_subaccounts=listsubaccounts,
        setmaxdomains=setmaxdomains,
        setmaxgears=setmaxgears,
        setmaxteams=setmaxteams,
        allowviewglobalteams=allowviewglobalteams,
        allowprivatesslcertificates=allowprivatesslcertificates,
        setmaxtrackedstorage=setmaxtrackedstorage,
        setmaxuntrackedstorage=setmaxuntrackedstorage,
        allowsubaccounts=allowsubaccounts,
        allowplanupgrade=allowplanupgrade,
        allowha=allowha,
        inheritgearsizes=inheritgearsizes,
        addsubaccount=addsubaccount,
        removesubaccount=removesubaccount,
        addgearsize=addgearsize,
        removegearsize=removegearsize,
    )
    return execute(options, config_path=config_path)


def parser_usage_error(command) -> type:
    """
    UsageError class of the click build the typer command runs on.

    Newer typer releases ship their own copy of click, so the class is looked
    up from the command's base instead of imported from `click`.
    """
    for cls in type(command).__mro__:
        if cls.__name__ == "Command" and cls.__module__.endswith(".core"):
            package = cls.__module__.rsplit(".", 1)[0]
            return importlib.import_module(f"{package}.exceptions").UsageError
    raise TypeError(f"{type(command).__name__} is not a click command")


def run(argv: Optional[List[str]] = None) -> int:
    """Parse argv and run; returns the process exit code instead of exiting."""
    command = typer.main.get_command(app)
    click_usage_error = parser_usage_error(command)
    try:
        return command.main(args=argv, prog_name="userctl", standalone_mode=False)
    except (click_usage_error, UsageError) as e:
        message = e.format_message() if isinstance(e, click_usage_error) else str(e)
        print(f"ERROR: {message}", file=sys.stderr)
        print(USAGE, file=sys.stderr)
        return EXIT_USAGE
    except ValidationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return e.exit_code


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
