"""Shared CLI utilities and argument parsers."""

import argparse
import sys

from ..__util__ import UsageError


class BackupArgumentParser(argparse.ArgumentParser):
    """ArgumentParser whose usage errors exit with status 1."""

    def error(self, message: str):
        self.print_usage(sys.stderr)
        self.exit(UsageError.exit_code, f"{self.prog}: error: {message}\n")


def add_verbosity_args(parser: argparse.ArgumentParser) -> None:
    """Add verbosity-related arguments to a parser."""
    group = parser.add_argument_group("Output options")
    group.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    group.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug output",
    )


def apply_verbosity(args: argparse.Namespace, environ: dict) -> dict:
    """Fold command line verbosity flags into the settings environment.

    Args:
        args: Parsed command line arguments
        environ: Environment the configuration is loaded from

    Returns:
        A copy of environ with the flags applied
    """
    environ = dict(environ)
    if getattr(args, "verbose", False):
        environ["GHE_VERBOSE"] = "1"
    if getattr(args, "debug", False):
        environ["GHE_DEBUG"] = "1"
    return environ
