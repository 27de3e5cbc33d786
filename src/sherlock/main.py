"""Console-script entry point for sherlock."""

from __future__ import annotations

import sys
from typing import List, Optional

from .cli import EXIT_CANCELLED, run_cli


def app_main(argv: Optional[List[str]] = None) -> None:
    try:
        exit_code = run_cli(argv)
    except KeyboardInterrupt:
        # Ctrl-C outside a running command, e.g. at the password prompt
        exit_code = EXIT_CANCELLED
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    app_main()
