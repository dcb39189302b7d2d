# src/homework_dock/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

APP_LOGGER = "homework_dock"
LOG_FILE_NAME = "homework_dock.log"

# Library loggers capped even in the log file.
_LIBRARY_LEVELS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "PIL": logging.INFO,  # one DEBUG line per image plugin it tries
}


class _ConsoleNoiseFilter(logging.Filter):
    """
    The console shares the terminal with the chat transcript, so only our own
    records reach it freely. Library records and captured warnings need at
    least `foreign_level`.
    """

    def __init__(self, foreign_level: int = logging.ERROR) -> None:
        super().__init__()
        self.foreign_level = foreign_level

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name == APP_LOGGER or record.name.startswith(APP_LOGGER + "."):
            return True
        return record.levelno >= self.foreign_level


def setup_logging(
    *,
    log_dir: str | Path = ".local/homework_dock",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Route every record to stderr (filtered) and to `<log_dir>/homework_dock.log`.

    Replaces handlers already on the root logger, so calling it twice does
    not double the output. Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(formatter)
    console.addFilter(_ConsoleNoiseFilter())
    root.addHandler(console)

    to_file = logging.FileHandler(str(log_file), encoding="utf-8")
    to_file.setLevel(file_level)
    to_file.setFormatter(formatter)
    root.addHandler(to_file)

    # warnings.warn() arrives as "py.warnings" and goes through the same filter.
    logging.captureWarnings(True)

    for name, level in _LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(level)

    return log_file
