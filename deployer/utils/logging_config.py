import logging
import sys
import os
from datetime import datetime
from typing import Iterable

_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d - %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"
_MASK = "***"


class ColoredFormatter(logging.Formatter):
    """Custom formatter to add colors to console output."""

    cyan = "\x1b[36m"
    green = "\x1b[32m"
    yellow = "\x1b[33m"
    red = "\x1b[31m"
    bold_red = "\x1b[31;1m"
    reset = "\x1b[0m"

    FORMATS = {
        logging.DEBUG: cyan + _FORMAT + reset,
        logging.INFO: green + _FORMAT + reset,
        logging.WARNING: yellow + _FORMAT + reset,
        logging.ERROR: red + _FORMAT + reset,
        logging.CRITICAL: bold_red + _FORMAT + reset,
    }

    def format(self, record):
        log_fmt = self.FORMATS.get(record.levelno, _FORMAT)
        formatter = logging.Formatter(log_fmt, datefmt=_DATEFMT)
        return formatter.format(record)


class SecretMaskingFilter(logging.Filter):
    """
    Redacts known secret values from every record passing through a handler.

    Secrets are registered once per run (see ``register_secrets``). The
    record message is rendered, scrubbed, and frozen so formatters never
    see the raw value again.
    """

    def __init__(self) -> None:
        super().__init__()
        self._secrets: set[str] = set()

    def add(self, values: Iterable[str]) -> None:
        for v in values:
            # very short values would mask ordinary words
            if v and len(v) >= 4:
                self._secrets.add(v)

    def mask(self, text: str) -> str:
        # longest first so a secret containing another is masked whole
        for secret in sorted(self._secrets, key=len, reverse=True):
            text = text.replace(secret, _MASK)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        record.msg = self.mask(record.getMessage())
        record.args = None
        return True


_secret_filter = SecretMaskingFilter()


def register_secrets(values: Iterable[str]) -> None:
    """Add secret values that must never appear in log output."""
    _secret_filter.add(values)


def get_secret_filter() -> SecretMaskingFilter:
    return _secret_filter


def setup_logging(level=logging.INFO, log_dir: str = "logs"):
    """Setup centralized logging configuration."""
    root_logger = logging.getLogger()

    # Clear existing handlers to prevent duplicate logs
    if root_logger.handlers:
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

    root_logger.setLevel(level)

    # 1. Console handler (using stderr for uvicorn compatibility)
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(ColoredFormatter())
    console_handler.addFilter(_secret_filter)
    root_logger.addHandler(console_handler)

    # 2. File handler for persistence
    if not os.path.exists(log_dir):
        os.makedirs(log_dir)

    file_handler = logging.FileHandler(
        os.path.join(log_dir, f"deployer_{datetime.now().strftime('%Y%m%d')}.log")
    )
    file_handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATEFMT))
    file_handler.addFilter(_secret_filter)
    root_logger.addHandler(file_handler)

    # Force propagation for all relevant internal loggers
    for logger_name in ["deployer", "uvicorn", "uvicorn.error", "uvicorn.access", "main"]:
        l = logging.getLogger(logger_name)
        l.setLevel(level)
        l.propagate = True

    root_logger.info("Logging initialized (Console + File, secrets masked).")
