"""Shared logging configuration for chatsync.

Provides a single place to configure console + rotating file logging for the engine and UI.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler


def _has_filehandler(logger: logging.Logger, filename: str) -> bool:
    for h in logger.handlers:
        if isinstance(h, (logging.FileHandler, RotatingFileHandler)):
            if getattr(h, "baseFilename", "").endswith(filename):
                return True
    return False


def configure_logging(
    level: int | str = logging.INFO,
    log_file: str | None = "chatsync.log",
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    console: bool = True,
) -> None:
    """Configure the root logger with console + rotating file handlers.

    Safe to call multiple times; avoids duplicate handlers. Pass ``log_file=None``
    to log to the console only, or ``console=False`` while a TUI owns the terminal.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    root = logging.getLogger()
    root.setLevel(level)

    # Console handler
    if console and not any(type(h) is logging.StreamHandler for h in root.handlers):
        sh = logging.StreamHandler()
        sh.setLevel(level)
        sh.setFormatter(fmt)
        root.addHandler(sh)

    # File handler
    if log_file and not _has_filehandler(root, log_file):
        fh = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count)
        fh.setLevel(level)
        fh.setFormatter(fmt)
        root.addHandler(fh)

    # Quiet noisy libraries unless debugging
    quiet_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for noisy in ("websockets", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(quiet_level)
