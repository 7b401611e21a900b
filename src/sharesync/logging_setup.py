"""Logging setup for the sharesync CLI and reconciler daemon."""

import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import Config, LoggingConfig

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Reconcile workers are named reconcile-<slot>, so the daemon format shows which
# worker handled a share
CLI_FORMAT = "%(levelname)-5s %(message)s"
DAEMON_FORMAT = "%(asctime)s %(levelname)-5s [%(threadName)-11s] %(name)s: %(message)s"

REDACTED = "***"

# 115 session cookie fields and Telegram bot tokens embedded in API URLs
_COOKIE_FIELD_RE = re.compile(r"\b(UID|CID|SEID|KID)=([^;\s]+)")
_BOT_TOKEN_RE = re.compile(r"/bot\d+:[\w-]+")

_initialized = False


class CredentialFilter(logging.Filter):
    """Masks session cookies and bot tokens before a record is emitted."""

    def __init__(self, secrets: list[str] | None = None):
        super().__init__()
        # Longest first so a cookie containing another secret is masked whole
        self.secrets = sorted((s for s in secrets or [] if s), key=len, reverse=True)

    def redact(self, text: str) -> str:
        for secret in self.secrets:
            text = text.replace(secret, REDACTED)
        text = _COOKIE_FIELD_RE.sub(lambda m: f"{m.group(1)}={REDACTED}", text)
        return _BOT_TOKEN_RE.sub(f"/bot{REDACTED}", text)

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = self.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def _file_handler(log_config: LoggingConfig) -> logging.Handler:
    path = Path(log_config.file)
    path.parent.mkdir(parents=True, exist_ok=True)
    if not log_config.rotate:
        return logging.FileHandler(path)
    return RotatingFileHandler(
        path,
        maxBytes=log_config.max_size_mb * 1024 * 1024,
        backupCount=log_config.backup_count,
    )


def setup_logging(
    config: Config,
    verbose: bool = False,
    daemon_mode: bool = False,
) -> None:
    """
    Configure the ``sharesync`` logger once per process.

    Console output is terse for CLI commands and timestamped, with the worker
    thread name, in daemon mode. The file handler always uses the daemon
    format. Every handler masks the configured cookie and bot token.
    """
    global _initialized
    if _initialized:
        return
    _initialized = True

    log_config = config.logging
    level_name = "DEBUG" if verbose else log_config.level.upper()
    level = getattr(logging, level_name, logging.INFO)

    logger = logging.getLogger("sharesync")
    logger.setLevel(level)
    logger.handlers.clear()

    handlers: list[tuple[logging.Handler, str]] = []
    if log_config.output in ("console", "both"):
        handlers.append(
            (logging.StreamHandler(sys.stderr), DAEMON_FORMAT if daemon_mode else CLI_FORMAT)
        )
    if log_config.output in ("file", "both") and log_config.file:
        handlers.append((_file_handler(log_config), DAEMON_FORMAT))

    redactor = CredentialFilter([config.fallback_cookie, config.telegram.bot_token])
    for handler, fmt in handlers:
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(fmt, datefmt=DATE_FORMAT))
        handler.addFilter(redactor)
        logger.addHandler(handler)

    # httpx logs every request URL at INFO, including the Telegram bot token
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


def reset_logging() -> None:
    """Forget earlier setup so tests can configure logging again."""
    global _initialized
    _initialized = False
    logging.getLogger("sharesync").handlers.clear()
