"""Structured logging helpers for the Jarvis application."""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path

__all__ = [
    "SecretRedactingFilter",
    "get_log_path",
    "get_logger",
    "register_secret",
    "setup_logging",
]

_DEFAULT_LOG_DIR = Path.home() / ".jarvis" / "logs"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "qasync", "httpx", "httpcore", "openai")
_MIN_SECRET_LENGTH = 8
_CONFIGURED = False
_LOG_PATH: Path | None = None


class SecretRedactingFilter(logging.Filter):
    """Mask registered secrets (API keys, bearer tokens) in emitted records."""

    def __init__(self) -> None:
        super().__init__()
        self._secrets: set[str] = set()

    def add(self, secret: str | None) -> None:
        value = (secret or "").strip()
        if len(value) >= _MIN_SECRET_LENGTH:
            self._secrets.add(value)

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        message = record.getMessage()
        redacted = message
        for secret in self._secrets:
            if secret in redacted:
                redacted = redacted.replace(secret, f"{secret[:4]}***")
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


_REDACTOR = SecretRedactingFilter()


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Configure root logging with rotating file + optional console handlers."""

    global _CONFIGURED, _LOG_PATH
    if _CONFIGURED and not force and _LOG_PATH is not None:
        return _LOG_PATH

    target_dir = _resolve_log_dir(log_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / "jarvis.log"

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handlers: list[logging.Handler] = []
    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handlers.append(file_handler)

    if console:
        handlers.append(logging.StreamHandler())

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(_REDACTOR)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    _tune_external_loggers(level)

    _CONFIGURED = True
    _LOG_PATH = log_path
    return log_path


def register_secret(secret: str | None) -> None:
    """Ensure ``secret`` never reaches a configured log handler in clear text."""

    _REDACTOR.add(secret)


def get_logger(name: str) -> logging.Logger:
    """Return a module-specific logger."""

    return logging.getLogger(name)


def get_log_path() -> Path | None:
    """Return the currently configured log file if available."""

    return _LOG_PATH


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    env_override = os.environ.get("JARVIS_LOG_DIR")
    return Path(log_dir or env_override or _DEFAULT_LOG_DIR).expanduser()


def _tune_external_loggers(root_level: int) -> None:
    quiet_level = logging.WARNING if root_level < logging.WARNING else root_level
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet_level)
