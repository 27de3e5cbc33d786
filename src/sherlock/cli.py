"""Command-line interface for sherlock."""

from __future__ import annotations

import argparse
import getpass
import sys
import threading
from typing import Callable, List, Optional, TextIO

from .base import Session
from .cancel import CancelToken
from .config import AppConfig, load_config
from .errors import CommandCancelled, ConfigurationError, HistoryError, SherlockError
from .history import HistoryManager, format_records
from .local import LocalSession
from .ssh import HostInfo, HostKeyPolicy, SSHCredentials, SSHSession
from .terminal import write_bytes
from .utils.logging import configure_logging, get_logger

logger = get_logger(__name__)

EXIT_ENGINE_ERROR = 1
EXIT_USAGE = 2
EXIT_CANCELLED = 130


def _add_target_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--local", "-L", action="store_true",
        help="Run on this machine instead of over SSH",
    )
    parser.add_argument(
        "--host", "-H",
        help="Target host, optionally as user@host[:port]",
    )
    parser.add_argument("--port", "-p", type=int, default=None, help="SSH port")
    parser.add_argument("--user", "-u", default=None, help="SSH username")
    parser.add_argument("--password", default=None, help="SSH password")
    parser.add_argument(
        "--ask-password", action="store_true",
        help="Prompt for the SSH password",
    )
    parser.add_argument(
        "--identity", "-i", default=None,
        help="Path to SSH private key",
    )
    parser.add_argument("--passphrase", default=None, help="Passphrase for --identity")
    parser.add_argument(
        "--term", default=None,
        help="Terminal type for interactive commands (default: $TERM)",
    )
    parser.add_argument(
        "--host-key-policy",
        choices=[p.value for p in HostKeyPolicy],
        default=None,
        help="How to treat the server host key",
    )
    parser.add_argument("--known-hosts", default=None, help="known_hosts file to use")
    parser.add_argument(
        "--timeout", type=float, default=None,
        help="Connection timeout in seconds",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sherlock",
        description="Run commands on a remote host over SSH or on this machine.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file overriding defaults.",
    )
    parser.add_argument(
        "--verbose", "-v", action="count", default=0,
        help="Increase log verbosity (-v info, -vv debug)",
    )

    subparsers = parser.add_subparsers(dest="subcommand", required=True)

    exec_parser = subparsers.add_parser("exec", help="Run a single command")
    _add_target_arguments(exec_parser)
    exec_parser.add_argument(
        "remote_command", nargs=argparse.REMAINDER,
        help="Command line to run",
    )

    shell_parser = subparsers.add_parser(
        "shell", help="Open a prompt that runs each line on the target"
    )
    _add_target_arguments(shell_parser)

    history_parser = subparsers.add_parser("history", help="Show login history")
    history_parser.add_argument("--search", "-s", default=None, help="Filter by host or user")
    history_parser.add_argument(
        "--limit", "-n", type=int, default=20,
        help="Maximum number of records to show",
    )

    return parser


def build_session(args: argparse.Namespace, config: AppConfig) -> Session:
    """Create the session described by the CLI arguments and config defaults."""
    if args.local:
        return LocalSession(shell=config.local.shell)

    conn = config.connection
    target = args.host or conn.host
    if not target:
        raise ConfigurationError("no target host given; use --host or --local")
    host_info = HostInfo.parse(
        target,
        user=args.user or conn.user,
        port=args.port,
        default_port=conn.port,
    )

    password = args.password or conn.password
    if args.ask_password:
        password = getpass.getpass(f"{host_info.user}@{host_info.host}'s password: ")

    credentials = SSHCredentials(
        host_info=host_info,
        password=password,
        key_path=args.identity or conn.key_path,
        passphrase=args.passphrase or conn.passphrase,
        term_type=args.term or conn.term_type,
        timeout=args.timeout or conn.timeout,
        known_hosts=args.known_hosts or conn.known_hosts,
        host_key_policy=args.host_key_policy or conn.host_key_policy,
    )
    return SSHSession(credentials)


def _record_login(session: Session, config: AppConfig) -> None:
    if not isinstance(session, SSHSession) or not config.history.enabled:
        return
    info = session.credentials.host_info
    try:
        HistoryManager(config.history.resolved_path()).add_record(info.host, info.port, info.user)
    except HistoryError as exc:
        logger.warning("Could not update login history: %s", exc)


def _exit_status(exit_code: int) -> int:
    if exit_code < 0:
        # killed by a signal
        return 128 - exit_code
    return exit_code


def run_command(session: Session, command: str, out: TextIO, err: TextIO) -> int:
    """
    Run one command line on ``session`` and return a process exit status.

    The command runs on a worker thread so Ctrl-C in the main thread can
    cancel it through its token instead of tearing the session down.
    """
    token = CancelToken()
    outcome: dict = {}

    def worker() -> None:
        try:
            outcome["result"] = session.run(command, token)
        except SherlockError as exc:
            outcome["error"] = exc

    thread = threading.Thread(target=worker, name="sherlock-command", daemon=True)
    thread.start()
    try:
        while thread.is_alive():
            thread.join(0.1)
    except KeyboardInterrupt:
        token.cancel("interrupted")
        thread.join()

    error = outcome.get("error")
    result = outcome.get("result")
    if result is not None:
        write_bytes(out, result.stdout)
        write_bytes(err, result.stderr)
        error = result.error
    if error is not None:
        err.write(f"sherlock: {error}\n")
        err.flush()
        return EXIT_CANCELLED if isinstance(error, CommandCancelled) else EXIT_ENGINE_ERROR
    if result is None:
        # interactive command, or the worker died unexpectedly
        return 0 if "result" in outcome else EXIT_ENGINE_ERROR
    return _exit_status(result.exit_code)


def _prompt(session: Session) -> str:
    if isinstance(session, LocalSession):
        return f"{session.host_info()} {session.cwd}$ "
    return f"{session.host_info()}$ "


def shell_loop(
    session: Session,
    out: TextIO,
    err: TextIO,
    read_line: Callable[[str], str] = input,
) -> int:
    """Read command lines until exit/quit/EOF; return the last exit status."""
    status = 0
    while True:
        try:
            line = read_line(_prompt(session))
        except EOFError:
            out.write("\n")
            break
        except KeyboardInterrupt:
            out.write("\n")
            continue
        line = line.strip()
        if not line:
            continue
        if line in ("exit", "quit"):
            break
        status = run_command(session, line, out, err)
    return status


def handle_history_command(args: argparse.Namespace, config: AppConfig, out: TextIO) -> int:
    """Handle the history subcommand."""
    manager = HistoryManager(config.history.resolved_path())
    if args.search:
        records = manager.search_records(args.search)[: max(args.limit, 0)]
    else:
        records = manager.get_recent_records(args.limit)
    out.write(format_records(records))
    return 0


def _log_level(verbose: int, config: AppConfig) -> str:
    if verbose >= 2:
        return "DEBUG"
    if verbose == 1:
        return "INFO"
    return config.log_level


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    out, err = sys.stdout, sys.stderr

    try:
        config = load_config(args.config)
    except (OSError, ValueError) as exc:
        err.write(f"sherlock: cannot load config: {exc}\n")
        return EXIT_USAGE
    configure_logging(_log_level(args.verbose, config))

    if args.subcommand == "history":
        try:
            return handle_history_command(args, config, out)
        except HistoryError as exc:
            err.write(f"sherlock: {exc}\n")
            return EXIT_ENGINE_ERROR

    command = None
    if args.subcommand == "exec":
        words = list(args.remote_command)
        if words and words[0] == "--":
            words = words[1:]
        if not words:
            parser.error("exec: a command is required")
        command = " ".join(words)

    try:
        session = build_session(args, config)
    except ValueError as exc:
        err.write(f"sherlock: {exc}\n")
        return EXIT_USAGE
    except SherlockError as exc:
        err.write(f"sherlock: {exc}\n")
        return EXIT_ENGINE_ERROR

    try:
        try:
            session.connect()
        except SherlockError as exc:
            err.write(f"sherlock: {exc}\n")
            return EXIT_ENGINE_ERROR
        _record_login(session, config)

        if command is not None:
            return run_command(session, command, out, err)
        return shell_loop(session, out, err)
    finally:
        session.close()
