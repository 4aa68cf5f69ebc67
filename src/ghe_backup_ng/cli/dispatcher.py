"""CLI entry point: argument parsing, configuration and error reporting."""

import argparse
import contextlib
import os
import signal
import sys
from typing import Iterator, Optional

from .. import __version__
from ..__logger__ import create_logger, logger, print_error, verbose
from ..__util__ import BackupError
from ..config import load_config
from .common import BackupArgumentParser, add_verbosity_args, apply_verbosity
from .run import execute_backup

INTERRUPTED_EXIT_CODE = 130


def create_parser() -> argparse.ArgumentParser:
    """Create the command line parser."""
    parser = BackupArgumentParser(
        prog="ghe-backup",
        description=(
            "Take a snapshot of all appliance data. Settings are read from "
            "backup.config and the GHE_* environment variables."
        ),
    )
    add_verbosity_args(parser)
    parser.add_argument(
        "--version",
        action="store_true",
        help="Show version and exit",
    )
    return parser


@contextlib.contextmanager
def terminate_as_interrupt() -> Iterator[None]:
    """Deliver SIGTERM as KeyboardInterrupt so cleanup handlers run."""

    def handler(signum, frame):
        raise KeyboardInterrupt

    previous = signal.signal(signal.SIGTERM, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the ghe-backup CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = create_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"ghe-backup-ng {__version__}")
        return 0

    try:
        with terminate_as_interrupt():
            config = load_config(environ=apply_verbosity(args, os.environ))
            create_logger(config.verbose, config.verbose_log, config.debug)
            if config.source is not None:
                verbose.debug(
                    "Using %s configuration %s", config.source.label, config.source.path
                )
            return execute_backup(config)
    except BackupError as e:
        print_error(str(e))
        return e.exit_code
    except OSError as e:
        print_error(str(e))
        return BackupError.exit_code
    except KeyboardInterrupt:
        logger.error("Backup interrupted")
        return INTERRUPTED_EXIT_CODE
