"""
Tests for command line parsing: flag validation, conflicts and exit codes.
"""
import pytest
import typer

from userctl.cli import app, build_options, parse_bool, parse_non_negative_int, parser_usage_error, read_logins_file, run
from userctl.constants import EXIT_INVALID_ARGUMENT, EXIT_USAGE
from userctl.exceptions import UsageError, ValidationError


class TestParseBool:

    @pytest.mark.parametrize("token", ["true", "TRUE", "Yes", "1", "t", "T", "y", "Y", " true "])
    def test_true_tokens(self, token):
        assert parse_bool(token) is True

    @pytest.mark.parametrize("token", ["false", "no", "0", "f", "n", "", "maybe", "on", "enabled"])
    def test_everything_else_is_false(self, token):
        assert parse_bool(token) is False


class TestParseNonNegativeInt:

    @pytest.mark.parametrize("value,expected", [("0", 0), ("10", 10), ("007", 7), (" 42 ", 42)])
    def test_valid(self, value, expected):
        assert parse_non_negative_int(value, "--setmaxgears") == expected

    @pytest.mark.parametrize("value", ["-1", "ten", "1.5", "", "1e3", "+3", "\u0663", "1\u0662"])
    def test_invalid(self, value):
        with pytest.raises(ValidationError) as exc_info:
            parse_non_negative_int(value, "--setmaxgears")
        assert exc_info.value.exit_code == EXIT_INVALID_ARGUMENT
        assert "--setmaxgears" in str(exc_info.value)


class TestBuildOptions:

    def test_single_login(self):
        options = build_options(login="alice", setmaxgears="5", allowha="yes")
        assert options.logins == ["alice"]
        assert options.is_batch is False
        assert options.edit.max_gears == 5
        assert options.edit.allow_ha is True
        assert options.edit.max_domains is None

    def test_logins_file_is_merged_and_deduplicated(self, tmp_path):
        path = tmp_path / "logins.txt"
        path.write_text("bob\nalice\n# comment\n\n  carol  \nbob\n")

        options = build_options(login="alice", logins_file=str(path))

        assert options.logins == ["alice", "bob", "carol"]
        assert options.is_batch is True

    def test_unreadable_logins_file(self, tmp_path):
        with pytest.raises(ValidationError):
            read_logins_file(str(tmp_path / "missing.txt"))

    def test_login_required(self):
        with pytest.raises(UsageError):
            build_options()

    def test_empty_logins_file(self, tmp_path):
        path = tmp_path / "logins.txt"
        path.write_text("# nobody\n\n")
        with pytest.raises(UsageError):
            build_options(logins_file=str(path))

    @pytest.mark.parametrize("flag", ["addsubaccount", "removesubaccount"])
    def test_subaccount_changes_need_a_single_login(self, tmp_path, flag):
        path = tmp_path / "logins.txt"
        path.write_text("alice\nbob\n")
        with pytest.raises(UsageError):
            build_options(logins_file=str(path), **{flag: "child"})

    def test_quiet_and_listsubaccounts_conflict(self):
        with pytest.raises(UsageError):
            build_options(login="alice", quiet=True, list_subaccounts=True)

    def test_quiet_and_listsubaccounts_conflict_checked_before_values(self):
        # Conflict wins even when other values are invalid
        with pytest.raises(UsageError):
            build_options(login="alice", quiet=True, list_subaccounts=True, setmaxgears="lots")


class TestRunExitCodes:

    def test_quiet_with_listsubaccounts(self, capsys):
        assert run(["-l", "alice", "-q", "--listsubaccounts", "--setmaxgears", "3"]) == EXIT_USAGE
        assert "Usage:" in capsys.readouterr().err

    def test_no_login(self, capsys):
        assert run([]) == EXIT_USAGE

    def test_stray_positional(self, capsys):
        assert run(["-l", "alice", "stray"]) == EXIT_USAGE

    def test_unknown_flag(self, capsys):
        assert run(["-l", "alice", "--setmaxwidgets", "3"]) == EXIT_USAGE

    def test_missing_flag_value(self, capsys):
        assert run(["-l", "alice", "--setmaxgears"]) == EXIT_USAGE

    def test_help(self, capsys):
        assert run(["-h"]) == EXIT_USAGE
        assert "Usage:" in capsys.readouterr().out

    def test_parser_errors_match_the_commands_usage_error(self):
        command = typer.main.get_command(app)
        usage_error = parser_usage_error(command)

        with pytest.raises(usage_error):
            command.main(args=["-l", "alice", "stray"], prog_name="userctl", standalone_mode=False)

    def test_usage_error_printed_with_usage(self, capsys):
        assert run(["-l", "alice", "--setmaxwidgets", "3"]) == EXIT_USAGE

        err = capsys.readouterr().err
        assert err.startswith("ERROR: ")
        assert "Usage: userctl" in err

    def test_non_numeric_value(self, capsys):
        assert run(["-l", "alice", "--setmaxgears", "ten"]) == EXIT_INVALID_ARGUMENT
        assert "--setmaxgears" in capsys.readouterr().err


class TestRunEndToEnd:

    @pytest.fixture
    def config_file(self, tmp_path):
        path = tmp_path / "userctl.yaml"
        path.write_text(
            "environment: test\n"
            "data:\n"
            f"  database_url: sqlite:///{tmp_path / 'users.db'}\n"
            "locking:\n"
            "  lock_timeout_seconds: 2\n"
            "  extended_lock_timeout_seconds: 2\n"
            "  retry_interval_seconds: 0.01\n"
        )
        return path

    def test_create_and_edit(self, config_file, capsys):
        code = run(["-l", "alice", "-c", "--setmaxgears", "5", "--addgearsize", "medium", "--config", str(config_file)])

        out = capsys.readouterr().out
        assert code == 0
        assert "Creating user alice... Done." in out
        assert "User alice:" in out
        assert "max gears: 5" in out
        assert "gear sizes: small, medium" in out

    def test_missing_user_without_create(self, config_file, capsys):
        code = run(["-l", "ghost", "--setmaxgears", "5", "--config", str(config_file)])

        captured = capsys.readouterr()
        assert code == 5
        assert "User ghost not found" in captured.err
        assert captured.out == ""

    def test_quiet_suppresses_report(self, config_file, capsys):
        code = run(["-l", "alice", "-c", "-q", "--config", str(config_file)])

        assert code == 0
        assert capsys.readouterr().out == ""

    def test_missing_config_file(self, tmp_path, capsys):
        code = run(["-l", "alice", "--config", str(tmp_path / "nope.yaml")])

        assert code == EXIT_INVALID_ARGUMENT
        assert "invalid configuration" in capsys.readouterr().err
