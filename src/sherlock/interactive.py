"""Classification of commands that need a terminal attached."""

from __future__ import annotations

# Commands that need a PTY for continuous or full-screen output.
INTERACTIVE_COMMANDS = frozenset(
    [
        # system monitors
        "top",
        "htop",
        "btop",
        "atop",
        "iotop",
        "iftop",
        "nload",
        "bmon",
        "glances",
        "nmon",
        "nethogs",
        "powertop",
        # editors
        "vi",
        "vim",
        "nvim",
        "nano",
        "emacs",
        "pico",
        "joe",
        "mcedit",
        # file managers
        "mc",
        "ranger",
        "nnn",
        "lf",
        "vifm",
        # terminal multiplexers
        "tmux",
        "screen",
        "byobu",
        # shells and REPLs
        "bash",
        "zsh",
        "fish",
        "sh",
        "python",
        "python3",
        "ipython",
        "node",
        "irb",
        "ghci",
        "lua",
        "php",
        # database clients
        "mysql",
        "psql",
        "sqlite3",
        "mongo",
        "redis-cli",
        # pagers and the rest
        "less",
        "more",
        "watch",
        "cfdisk",
        "parted",
        "cgdisk",
    ]
)


def _command_name(token: str) -> str:
    name = token.lower()
    if "/" in name:
        base = name.rsplit("/", 1)[1]
        if base:
            name = base
    return name


def _follows(name: str, args: list[str]) -> bool:
    """Is this a follow-mode invocation of tail, journalctl or dmesg?"""
    if name == "tail":
        return any(
            arg in ("-f", "-F", "--follow") or arg.startswith("-f") for arg in args
        )
    if name == "journalctl":
        return any(arg in ("-f", "--follow") for arg in args)
    if name == "dmesg":
        return any(arg in ("-w", "--follow") for arg in args)
    return False


def is_interactive_command(command: str) -> bool:
    """
    Decide whether ``command`` must run with a terminal attached.

    This is a UX heuristic: a miss only means the command's output is
    captured instead of streamed to a PTY.

    Args:
        command: Raw command line as typed by the user

    Returns:
        True if the command should go through ``execute_interactive``
    """
    parts = command.split()
    if not parts:
        return False

    name = _command_name(parts[0])
    if name in INTERACTIVE_COMMANDS:
        return True
    return _follows(name, parts[1:])
