"""Command line interface for ghe-backup-ng."""

from .dispatcher import main

__all__ = ["main"]
