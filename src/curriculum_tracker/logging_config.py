"""Logging setup for the console application."""
import logging

from rich.logging import RichHandler


def setup_logging(log_level: str = "WARNING") -> logging.Logger:
    """Route log records through rich so they render alongside the console UI."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )
    return logging.getLogger("curriculum_tracker")
