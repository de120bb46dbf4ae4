"""Shared logging configuration for the need-status engine.

Call ``configure_logging()`` once at any CLI entry point to ensure logs are
emitted. The function is idempotent: if the root logger already has handlers,
it does nothing.
"""

import logging

from .config import LOGS_DIR


def configure_logging(level: int = logging.INFO) -> None:
    """Configure root logger with console + optional file handler."""
    root = logging.getLogger()
    if root.handlers:
        return

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    try:
        LOGS_DIR.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(LOGS_DIR / "engine.log", mode="a")
        fh.setFormatter(formatter)
        root.addHandler(fh)
    except OSError:
        pass

    root.setLevel(level)
