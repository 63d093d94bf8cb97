"""Shared Rich console and log routing for the CLI."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

# stdout carries only installed store paths.
err = Console(stderr=True)


def configure_logging(level: str = "INFO") -> None:
    """Route all log records to stderr through Rich; safe to call repeatedly."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)
    handler = RichHandler(console=err, show_time=False, show_path=False, markup=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    root.setLevel(level.upper())
