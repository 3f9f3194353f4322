"""Launch the Notionally local server.

``python main.py`` is shorthand for ``notionally serve``; any arguments are
passed through to the command line interface unchanged.
"""

from __future__ import annotations

import logging
import sys

from notionally.cli import main as cli_main

logger = logging.getLogger("notionally.main")

COMMANDS = frozenset({"serve", "process", "resolve", "check"})


def main(argv: list[str] | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if not COMMANDS.intersection(args):
        args.append("serve")
    try:
        return cli_main(args)
    except KeyboardInterrupt:
        logger.warning("Interrupted; shutting down")
        return 130


if __name__ == "__main__":
    sys.exit(main())
