import io
import sys
from datetime import datetime

import pytest

from sherlock.base import ExecuteResult, Session
from sherlock.cli import EXIT_CANCELLED, build_parser, build_session, run_cli, run_command, shell_loop
from sherlock.config import AppConfig
from sherlock.errors import CommandCancelled, SpawnError
from sherlock.history import HistoryManager
from sherlock.local import LocalSession
from sherlock.ssh import SSHSession


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("SSH_AUTH_SOCK", raising=False)
    for name in ("SHERLOCK_SSH_HOST", "SHERLOCK_SSH_USER", "SHERLOCK_SSH_PASSWORD", "SHERLOCK_SSH_PORT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SHERLOCK_HISTORY_PATH", str(tmp_path / "history.json"))


class StubSession(Session):
    def __init__(self, result=None, raises=None):
        self.result = result
        self.raises = raises
        self.commands = []

    @property
    def is_connected(self):
        return True

    def execute(self, command, token=None):
        self.commands.append(command)
        if self.raises:
            raise self.raises
        return self.result

    def execute_interactive(self, command, token=None):
        self.commands.append(command)
        if self.raises:
            raise self.raises

    def close(self):
        pass

    def host_info(self):
        return "stub"


class TestRunCommand:
    def test_writes_output_and_returns_exit_code(self):
        out, err = io.StringIO(), io.StringIO()
        session = StubSession(ExecuteResult("x", b"out\n", b"err\n", 5))
        assert run_command(session, "x", out, err) == 5
        assert out.getvalue() == "out\n"
        assert err.getvalue() == "err\n"

    def test_cancelled_result(self):
        out, err = io.StringIO(), io.StringIO()
        result = ExecuteResult("x", exit_code=-1, error=CommandCancelled("interrupted"))
        assert run_command(StubSession(result), "x", out, err) == EXIT_CANCELLED
        assert "command cancelled: interrupted" in err.getvalue()

    def test_engine_error_result(self):
        out, err = io.StringIO(), io.StringIO()
        result = ExecuteResult("x", exit_code=-1, error=SpawnError("no shell"))
        assert run_command(StubSession(result), "x", out, err) == 1

    def test_signal_exit_code(self):
        out, err = io.StringIO(), io.StringIO()
        assert run_command(StubSession(ExecuteResult("x", exit_code=-9)), "x", out, err) == 137

    def test_interactive_error_raised(self):
        out, err = io.StringIO(), io.StringIO()
        session = StubSession(raises=SpawnError("no shell"))
        assert run_command(session, "vim", out, err) == 1
        assert "no shell" in err.getvalue()

    def test_interactive_success(self):
        out, err = io.StringIO(), io.StringIO()
        assert run_command(StubSession(), "top", out, err) == 0


def test_shell_loop_runs_until_exit(tmp_path):
    lines = iter(["echo one", "   ", "cd sub", "pwd", "exit", "echo never"])
    (tmp_path / "sub").mkdir()
    session = LocalSession(str(tmp_path.resolve()))
    out, err = io.StringIO(), io.StringIO()
    prompts = []

    def read_line(prompt):
        prompts.append(prompt)
        return next(lines)

    status = shell_loop(session, out, err, read_line=read_line)

    assert status == 0
    assert out.getvalue() == f"one\n{tmp_path.resolve() / 'sub'}\n"
    assert prompts[0].endswith(f"{tmp_path.resolve()}$ ")
    assert len(prompts) == 5


def test_shell_loop_stops_on_eof():
    session = StubSession(ExecuteResult("x"))
    out = io.StringIO()

    def read_line(prompt):
        raise EOFError

    assert shell_loop(session, out, io.StringIO(), read_line=read_line) == 0
    assert session.commands == []


def test_build_session_local():
    args = build_parser().parse_args(["shell", "--local"])
    assert isinstance(build_session(args, AppConfig()), LocalSession)


def test_build_session_remote():
    args = build_parser().parse_args(
        ["shell", "-H", "deploy@example.com:2222", "--password", "pw", "--term", "vt100"]
    )
    session = build_session(args, AppConfig())
    assert isinstance(session, SSHSession)
    assert session.host_info() == "deploy@example.com:2222"
    assert session.credentials.term_type == "vt100"
    assert not session.is_connected


def test_build_session_uses_config_defaults():
    config = AppConfig()
    config.connection.host = "config.example.com"
    config.connection.port = 2200
    config.connection.user = "ops"
    config.connection.password = "pw"
    args = build_parser().parse_args(["shell"])
    assert build_session(args, config).host_info() == "ops@config.example.com:2200"


@pytest.mark.skipif(sys.platform == "win32", reason="uses a POSIX shell")
class TestRunCli:
    def test_exec_local(self, capsys):
        assert run_cli(["exec", "--local", "echo", "hello"]) == 0
        assert capsys.readouterr().out == "hello\n"

    def test_exec_local_exit_status(self, capsys):
        assert run_cli(["exec", "--local", "exit 3"]) == 3

    def test_exec_requires_command(self):
        with pytest.raises(SystemExit) as excinfo:
            run_cli(["exec", "--local"])
        assert excinfo.value.code == 2

    def test_exec_without_target(self, capsys):
        assert run_cli(["exec", "uptime"]) == 1
        assert "no target host" in capsys.readouterr().err

    def test_history(self, capsys, tmp_path):
        HistoryManager(tmp_path / "history.json").add_record(
            "example.com", 22, "root", timestamp=datetime(2024, 1, 2, 3, 4, 5)
        )
        assert run_cli(["history"]) == 0
        out = capsys.readouterr().out
        assert "root@example.com:22" in out
        assert "Last login: 2024-01-02 03:04:05" in out

    def test_history_empty(self, capsys):
        assert run_cli(["history", "--search", "nothing"]) == 0
        assert "No login history found." in capsys.readouterr().out

    def test_missing_config_file(self, capsys, tmp_path):
        assert run_cli(["--config", str(tmp_path / "nope.json"), "history"]) == 2
        assert "cannot load config" in capsys.readouterr().err


class TestAppMain:
    @pytest.mark.skipif(sys.platform == "win32", reason="uses a POSIX shell")
    def test_exits_with_command_status(self):
        from sherlock.main import app_main

        with pytest.raises(SystemExit) as excinfo:
            app_main(["exec", "--local", "exit 5"])
        assert excinfo.value.code == 5

    def test_interrupt_outside_command(self, monkeypatch):
        from sherlock import main

        def interrupted(argv):
            raise KeyboardInterrupt

        monkeypatch.setattr(main, "run_cli", interrupted)
        with pytest.raises(SystemExit) as excinfo:
            main.app_main([])
        assert excinfo.value.code == EXIT_CANCELLED
