"""
Logging utilities for the lq toolkit.

Provides unified structured logging:
- pretty console output via Rich
- structured (JSON) file output when `LQ_LOG_JSON` names a log file
"""

import json
import logging
import os
from pathlib import Path

from rich.logging import RichHandler

LOG_JSON_ENV = "LQ_LOG_JSON"


class JSONFormatter(logging.Formatter):
    """
    Formatter that serializes log records to JSON.
    """
    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level":     record.levelname,
            "logger":    record.name,
            "message":   record.getMessage(),
        }
        return json.dumps(log_record)


def get_logger(name: str, level: int | str = logging.INFO) -> logging.Logger:
    """
    Return a configured logger for the given name.

    Attaches:
    - a RichHandler for console output
    - when `LQ_LOG_JSON` is set, a FileHandler appending JSON lines to that path

    Parameters
    ----------
    name
        Logger name (typically __name__).
    level
        Log level (int or string), defaults to INFO.

    Returns
    -------
    logging.Logger
        Configured logger instance.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        # Console via Rich
        console_handler = RichHandler(rich_tracebacks=True)
        console_handler.setLevel(level)
        logger.addHandler(console_handler)

        json_path = os.environ.get(LOG_JSON_ENV)
        if json_path:
            file_handler = logging.FileHandler(Path(json_path), mode="a", encoding="utf-8")
            file_handler.setLevel(level)
            file_handler.setFormatter(JSONFormatter())
            logger.addHandler(file_handler)

    return logger


def set_verbosity(verbose: bool) -> None:
    """
    Switch every `lq.*` logger (and its handlers) between INFO and DEBUG.
    """
    level = logging.DEBUG if verbose else logging.INFO
    for name, logger in logging.Logger.manager.loggerDict.items():
        if not isinstance(logger, logging.Logger):
            continue
        if name != "lq" and not name.startswith("lq."):
            continue
        logger.setLevel(level)
        for handler in logger.handlers:
            handler.setLevel(level)
