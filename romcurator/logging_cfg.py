"""Centralized logging helpers for romcurator.

Provide a small helper to create a logger that writes to stdout and, when a
base directory is given, to a run log under it. Candidate writing gets its own
audit logger so every copy/move/link lands in a rotating file.
"""

from __future__ import annotations

import contextvars
import functools
import json
import logging
import logging.handlers
import os
import sys
import time
import uuid
from pathlib import Path
from typing import Optional


_STD_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def get_logger(
    name: str = "romcurator",
    base_dir: Optional[Path] = None,
    level: int = logging.INFO,
) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level)

    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in logger.handlers
    )
    if not has_console:
        ch = logging.StreamHandler()
        ch.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(ch)

    has_file = any(isinstance(h, logging.FileHandler) for h in logger.handlers)

    if base_dir and not has_file:
        base_dir = Path(base_dir)
        try:
            base_dir.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(str(base_dir / "_ROMCURATOR_LOG.txt"))
            fh.setFormatter(logging.Formatter(_STD_FORMAT))
            logger.addHandler(fh)
        except OSError:
            logger.debug("Could not create file handler for logger at %s", base_dir)

    return logger


# Correlation ID support for tracing one DAT run across modules
_cid_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "romcurator_correlation_id", default=None
)


def set_correlation_id(cid: str | None = None) -> str:
    """Set or create and set a correlation id for the current context.

    Returns the correlation id string.
    """
    if cid is None:
        cid = uuid.uuid4().hex
    _cid_var.set(cid)
    return cid


def get_correlation_id() -> str | None:
    return _cid_var.get()


class JsonFormatter(logging.Formatter):
    """Minimal JSON formatter that includes correlation id when available."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        cid = get_correlation_id()
        if cid:
            payload["correlation_id"] = cid
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def log_call(level: int = logging.DEBUG):
    """Decorator that logs coroutine entry, duration and exit.

    Usage:
        @log_call()
        async def generate(...):
            ...
    """

    def _decorator(func):
        @functools.wraps(func)
        async def _wrapper(*args, **kwargs):
            logger = logging.getLogger(func.__module__)
            start = time.time()
            logger.debug("Entering %s", func.__qualname__)
            try:
                result = await func(*args, **kwargs)
            except Exception:
                duration = (time.time() - start) * 1000.0
                logger.exception(
                    "Exception in %s after %.2fms", func.__qualname__, duration
                )
                raise
            duration = (time.time() - start) * 1000.0
            logger.log(
                level,
                "Exited %s; duration_ms=%.2f",
                func.__qualname__,
                duration,
            )
            return result

        return _wrapper

    return _decorator


def get_fileops_logger(
    base_dir: Optional[Path] = None, level: int = logging.INFO
) -> logging.Logger:
    """Return a logger dedicated to file operations (audit-capable).

    This logger writes to a rotating file under base_dir/logs/fileops.log and
    also to console if not already configured. Handlers are added idempotently.
    """
    name = "romcurator.fileops"
    logger = logging.getLogger(name)
    logger.setLevel(level)

    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in logger.handlers
    )
    if not has_console:
        ch = logging.StreamHandler()
        ch.setFormatter(logging.Formatter(_STD_FORMAT))
        logger.addHandler(ch)

    has_rotating = any(
        isinstance(h, logging.handlers.RotatingFileHandler) for h in logger.handlers
    )
    if base_dir and not has_rotating:
        try:
            logs_dir = Path(base_dir) / "logs"
            logs_dir.mkdir(parents=True, exist_ok=True)
            rfh = logging.handlers.RotatingFileHandler(
                str(logs_dir / "fileops.log"),
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
            rfh.setFormatter(logging.Formatter(_STD_FORMAT))
            logger.addHandler(rfh)
        except OSError:
            logger.debug(
                "Could not create rotating file handler for fileops logger at %s",
                base_dir,
            )

    # Prevent propagation to root to avoid duplicate entries
    logger.propagate = False
    return logger


def configure_logging(env: Optional[str] = "auto", level: int = logging.INFO):
    """Configure the root logger.

    env: 'auto' (default) | 'json' | 'human'
    - 'auto' honours ROMCURATOR_LOG_FORMAT, then chooses human-readable when
      stdout is a TTY, otherwise JSON.
    - 'json' forces JSON output.
    - 'human' forces a readable formatter.

    Returns the root logger.
    """
    chosen = env
    if not chosen or chosen == "auto":
        chosen = os.getenv("ROMCURATOR_LOG_FORMAT", "auto")
    chosen = chosen.lower()
    if chosen in ("json", "human"):
        mode = chosen
    else:
        try:
            mode = "human" if sys.stdout.isatty() else "json"
        except (AttributeError, ValueError):
            mode = "json"

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Add one console handler idempotently (mark by name)
    if not any(
        getattr(h, "name", None) == "romcurator_console"
        for h in root_logger.handlers
    ):
        sh = logging.StreamHandler()
        sh.name = "romcurator_console"
        if mode == "json":
            sh.setFormatter(JsonFormatter())
        else:
            fmt = logging.Formatter(
                "%(asctime)s - %(levelname)s - %(name)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
            sh.setFormatter(fmt)
        root_logger.addHandler(sh)

    return root_logger
