# pyright: standard

"""ghe-backup-ng: ghe_backup_ng/__logger__.py
Common loggers: the console logger and the verbosity channel.

``logger`` carries progress and summary output and always reaches the
console. ``verbose`` is the diagnostic channel; where it writes is decided
once by :func:`create_logger` so callers never check verbosity themselves.
"""

import logging
import sys
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

# Initialize basic console and handler
cons = Console()
err_cons = Console(stderr=True)
rich_handler = RichHandler(console=cons, show_path=False)
# Create loggers directly
logger = logging.getLogger("ghe_backup_ng")
logger.setLevel(logging.INFO)
verbose = logging.getLogger("ghe_backup_ng.verbose")
verbose.setLevel(logging.DEBUG)
verbose.propagate = False
verbose.addHandler(logging.NullHandler())


def create_logger(
    verbose_mode: bool = False,
    log_file: Optional[str] = None,
    debug: bool = False,
) -> None:
    """Configure the console logger and route the verbosity channel.

    Args:
        verbose_mode: Send diagnostic output somewhere instead of discarding it
        log_file: Write diagnostic output to this file rather than stdout
        debug: Also emit DEBUG records from the console logger
    """
    # pylint: disable=global-statement
    global cons, rich_handler

    cons = Console()
    rich_handler = RichHandler(console=cons, show_path=False)

    logger.handlers.clear()
    logger.propagate = False
    logger.addHandler(rich_handler)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)

    verbose.handlers.clear()
    verbose.propagate = False
    if verbose_mode and log_file:
        handler: logging.Handler = logging.FileHandler(log_file)
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(message)s", datefmt="%H:%M:%S")
        )
    elif verbose_mode:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.NullHandler()
    verbose.addHandler(handler)


def print_error(message: str) -> None:
    """Print a fatal diagnostic to standard error."""
    err_cons.print(
        Text.assemble(("Error: ", "bold red"), message),
        highlight=False,
        soft_wrap=True,
    )
