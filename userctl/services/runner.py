"""
Batch processing of logins.

Each login is resolved, edited, reloaded and reported, and ends as a
LoginResult. A failure never stops the remaining logins; the exit code is
computed once from the BatchSummary.
"""
from userctl.cli_output import Reporter, print_critical_error
from userctl.config.config import UserCtlConfig
from userctl.constants import EXIT_BATCH_UNEXPECTED, EXIT_PERSISTENCE
from userctl.domain.models import BatchSummary, CommandOptions, LoginResult, UserRecord
from userctl.exceptions import UserCtlError, UserNotFoundError
from userctl.monitoring.logger import get_logger
from userctl.runtime.user_lock import UserLockService
from userctl.services.user_editor import UserEditor
from userctl.storage.repository import UserRepository

logger = get_logger(__name__)


class UserCtlRunner:
    """Runs one CommandOptions across its logins."""

    def __init__(
        self,
        repository: UserRepository,
        locks: UserLockService,
        config: UserCtlConfig,
        reporter: Reporter,
    ):
        self.repository = repository
        self.locks = locks
        self.config = config
        self.reporter = reporter
        self.editor = UserEditor(repository, locks, config, reporter)

    def resolve_user(self, login: str, create: bool) -> UserRecord:
        user = self.repository.find_by_login(login)
        if user is not None:
            return user
        if not create:
            raise UserNotFoundError(login)

        self.reporter.progress(f"Creating user {login}... ")
        user = self.repository.create_user(login, self.config.platform)
        self.locks.create_lock(user.id)
        self.reporter.info("Done.")
        return user

    def report(self, user: UserRecord, list_subaccounts: bool) -> None:
        if self.reporter.quiet:
            return

        parent_login = None
        if user.is_subaccount:
            parent = self.repository.get(user.parent_user_id)
            parent_login = parent.login if parent else user.parent_user_id

        self.reporter.report_user(
            user,
            domain_count=self.repository.count_domains(user.id),
            capabilities=self.editor.effective_capabilities(user),
            parent_login=parent_login,
            subaccounts=self.repository.list_subaccounts(user.id) if list_subaccounts else None,
        )

    def process_login(self, login: str, options: CommandOptions) -> LoginResult:
        log = logger.bind(login=login)
        try:
            user = self.resolve_user(login, options.create)
            outcome = self.editor.apply(user, options.edit)
            if outcome.changed:
                user = self.editor.reload(user)
            self.report(user, options.list_subaccounts)
        except UserCtlError as e:
            self.reporter.error(str(e))
            log.warning("LOGIN_FAILED", error=str(e), exit_code=e.exit_code)
            return LoginResult.failed(login, e.exit_code, str(e))
        except Exception as e:
            exit_code = EXIT_BATCH_UNEXPECTED if options.is_batch else EXIT_PERSISTENCE
            log.exception("LOGIN_UNEXPECTED_ERROR", exit_code=exit_code)
            print_critical_error(f"unexpected error while processing {login}", e, err=self.reporter.err)
            return LoginResult.failed(login, exit_code, str(e))

        if outcome.deferred:
            first = outcome.deferred[0]
            self.reporter.error(str(first))
            log.warning("LOGIN_FAILED", error=str(first), exit_code=first.exit_code)
            return LoginResult.failed(login, first.exit_code, str(first))

        return LoginResult.ok(login)

    def run(self, options: CommandOptions) -> BatchSummary:
        summary = BatchSummary()
        for login in options.logins:
            summary.add(self.process_login(login, options))

        if summary.failures:
            logger.warning(
                "BATCH_COMPLETED_WITH_FAILURES",
                total=len(summary.results),
                failed=len(summary.failures),
                failures={r.login: r.message for r in summary.failures},
                exit_code=summary.exit_code,
            )
        else:
            logger.info("BATCH_COMPLETED", total=len(summary.results))
        return summary
