from __future__ import annotations

import logging
import os
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

# Root of every logger in the package; adapters log under
# shipping_hub.providers.<code>, services under shipping_hub.services.<name>.
PACKAGE_LOGGER = "shipping_hub"

# Fan-out runs on "shipping-hub_N" worker threads, so the thread is part of every line.
_DEFAULT_FMT = "%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s"
_DEFAULT_DATEFMT = "%Y-%m-%d %H:%M:%S"

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "NOTSET": logging.NOTSET,
}

MASK = "***"

# Carrier bodies are logged at DEBUG; matches are masked before any handler writes them.
_SECRET_PATTERNS = (
    re.compile(r'("(?:token|auth_token|password|api_key|x-api-key|webhook_token|secret)"\s*:\s*")[^"]*(")', re.I),
    re.compile(r"('(?:token|auth_token|password|api_key|x-api-key|webhook_token|secret)'\s*:\s*')[^']*(')", re.I),
    re.compile(r"(\bBearer\s+)[A-Za-z0-9._~+/=-]+()", re.I),
    re.compile(r"(\bx-api-key\s*[:=]\s*)[^\s,;}]+()", re.I),
)


def redact_secrets(text: str) -> str:
    """Mask carrier tokens, passwords and API keys inside a log line."""
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(lambda m: f"{m.group(1)}{MASK}{m.group(2)}", text)
    return text


class SecretRedactingFilter(logging.Filter):
    """Handler filter that rewrites a record's message with secrets masked."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact_secrets(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


def _coerce_level(level: Optional[Union[int, str]]) -> int:
    """
    Accepts logging levels as int or str (e.g., 'INFO', 'debug').
    Falls back to LOG_LEVEL env, then INFO.
    """
    if level is None:
        level = os.getenv("LOG_LEVEL") or None

    if isinstance(level, int):
        return level
    if isinstance(level, str):
        return _LEVELS.get(level.strip().upper(), logging.INFO)
    return logging.INFO


def get_logger(
    name: Optional[str] = PACKAGE_LOGGER,
    *,
    level: Optional[Union[int, str]] = None,
    log_file: Optional[Union[str, Path]] = None,
    console: bool = True,
    propagate: bool = False,
    redact: bool = True,
    fmt: str = _DEFAULT_FMT,
    datefmt: str = _DEFAULT_DATEFMT,
    max_bytes: int = 5_000_000,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Create/configure a logger. Safe to call multiple times:
    - Won't duplicate existing handlers
    - Will add missing targets (e.g., add file later)

    Configure the package logger once at startup; module loggers under
    `shipping_hub.` inherit its handlers. With `redact=True` (the default)
    every handler added here masks provider credentials.
    """
    logger = logging.getLogger(name)
    logger.setLevel(_coerce_level(level))
    logger.propagate = propagate

    formatter = logging.Formatter(fmt=fmt, datefmt=datefmt)

    def _install(handler: logging.Handler) -> None:
        handler.setFormatter(formatter)
        handler.setLevel(logger.level)
        if redact:
            handler.addFilter(SecretRedactingFilter())
        logger.addHandler(handler)

    def _has_console() -> bool:
        return any(
            isinstance(h, logging.StreamHandler)
            and not isinstance(h, logging.FileHandler)
            and getattr(h, "stream", None) in (sys.stderr, sys.stdout)
            for h in logger.handlers
        )

    def _has_file(path: Path) -> bool:
        target = path.resolve()
        return any(
            isinstance(h, RotatingFileHandler) and Path(h.baseFilename).resolve() == target
            for h in logger.handlers
        )

    if console and not _has_console():
        _install(logging.StreamHandler(stream=sys.stderr))

    if log_file is not None:
        log_path = Path(log_file)
        if not _has_file(log_path):
            log_path.parent.mkdir(parents=True, exist_ok=True)
            _install(RotatingFileHandler(
                filename=str(log_path),
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
                delay=True,
            ))

    return logger
