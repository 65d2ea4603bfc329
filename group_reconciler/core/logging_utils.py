"""Logging utilities for the group reconciler.

Dual-channel logging:
- Console handler: INFO/WARNING/ERROR to stderr (human-friendly).
- File handler: level driven by environment (.env), written under ./logs by default,
  with filename pattern: <action>-YYYY-MM-DD.log.

Both handlers mask Coder session tokens. Calling `setup_logging(...)` again
reconfigures the root logger without duplicating handlers.
"""

from __future__ import annotations

import logging
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv

DEF_CONSOLE_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"
DEF_FILE_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s "
    "[%(filename)s:%(lineno)d %(funcName)s] - %(message)s"
)


class MaskSecretsFilter(logging.Filter):
    """Redact session tokens and bearer credentials from log records."""

    _patterns = [
        re.compile(r"(Coder-Session-Token:\s*)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(Authorization:\s*Bearer\s+)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(session[_-]?token\s*[=:]\s*)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(\btoken\s*[=:]\s*)([A-Za-z0-9._-]+)", re.IGNORECASE),
    ]

    @staticmethod
    def _mask(text: str) -> str:
        masked = text
        for pat in MaskSecretsFilter._patterns:
            masked = pat.sub(r"\1***REDACTED***", masked)
        return masked

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._mask(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(self._mask(a) if isinstance(a, str) else a for a in record.args)
        return True


def _load_env() -> None:
    """Load environment variables from a .env file if present."""
    env_path = find_dotenv(usecwd=True) or ""
    if env_path:
        load_dotenv(env_path, override=False)


def _resolve_file_level() -> int:
    """Resolve the numeric level for the *file* handler from environment.

    Precedence:
        1) GROUPS_LOG_FILE_LEVEL
        2) GROUPS_LOG_LEVEL
        3) DEBUG
    """
    lvl_name = (
        os.getenv("GROUPS_LOG_FILE_LEVEL")
        or os.getenv("GROUPS_LOG_LEVEL")
        or "DEBUG"
    ).upper()
    return getattr(logging, lvl_name, logging.DEBUG)


def _ensure_logs_dir() -> Path:
    """Return the logs directory path, creating it if necessary."""
    p = Path(os.getenv("GROUPS_LOG_DIR") or "./logs")
    p.mkdir(parents=True, exist_ok=True)
    return p


def _build_log_filename(action: str) -> str:
    return f"{action}-{datetime.now().strftime('%Y-%m-%d')}.log"


def setup_logging(
    level: Optional[str] = None,
    *,
    action: Optional[str] = None,
) -> None:
    """Configure the root logger with console + optional file handlers.

    Args:
        level: Root threshold fallback; handler levels are managed separately.
        action: CLI subcommand (e.g. 'apply'). When given, a file handler is added.

    Behavior:
        - Console: fixed at INFO (or ``level`` if it is higher).
        - File: level comes from `.env` (GROUPS_LOG_FILE_LEVEL -> GROUPS_LOG_LEVEL -> DEBUG).
        - Root level is the minimum of the handler levels.
    """
    _load_env()
    logging.captureWarnings(True)

    root_level_name = (level or os.getenv("GROUPS_LOG_LEVEL") or "INFO").upper()
    requested = getattr(logging, root_level_name, logging.INFO)
    console_level = max(logging.INFO, requested)
    file_level = _resolve_file_level()
    root_level = min(console_level, file_level) if action else console_level

    mask = MaskSecretsFilter()
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter(DEF_CONSOLE_FORMAT))
    console_handler.addFilter(mask)
    root.addHandler(console_handler)

    if action:
        logfile = _ensure_logs_dir() / _build_log_filename(action)
        file_handler = logging.FileHandler(logfile, encoding="utf-8")
        file_handler.setLevel(file_level)
        file_handler.setFormatter(logging.Formatter(DEF_FILE_FORMAT))
        file_handler.addFilter(mask)
        root.addHandler(file_handler)

    root.setLevel(root_level)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a child logger with the given name."""
    return logging.getLogger(name or "group_reconciler")
