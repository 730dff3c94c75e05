"""
Logging setup for Ghostline.

Plain text by default, one JSON object per line with GHOSTLINE_LOG_JSON=1.
Every handler carries a filter that masks Telegram bot tokens: the HTTP
client logs request URLs, and those embed the token.
"""
import json
import logging
import os
import re
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# "<bot id>:<secret>" as issued by BotFather
TOKEN_PATTERN = re.compile(r"(?<!\d)\d{5,}:[A-Za-z0-9_-]{20,}")
REDACTED = "<bot-token>"

NOISY_LOGGERS = ("httpx", "httpcore", "telegram")


def redact(text: str) -> str:
    return TOKEN_PATTERN.sub(REDACTED, text)


class TokenRedactingFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = ()
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update(getattr(record, "fields", None) or {})
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class StructuredLogger(logging.Logger):
    """Logger with ``*_with`` variants that attach key/value fields to a record."""

    def _log_fields(self, level: int, msg: str, fields: Dict[str, Any]):
        if not self.isEnabledFor(level):
            return
        if fields:
            # Text output gets the fields inline; JSON output gets them as keys
            msg = f"{msg} | " + " ".join(f"{k}={v}" for k, v in fields.items())
        self._log(level, msg, (), extra={"fields": fields})

    def debug_with(self, msg: str, **fields):
        self._log_fields(logging.DEBUG, msg, fields)

    def info_with(self, msg: str, **fields):
        self._log_fields(logging.INFO, msg, fields)

    def warning_with(self, msg: str, **fields):
        self._log_fields(logging.WARNING, msg, fields)

    def error_with(self, msg: str, **fields):
        self._log_fields(logging.ERROR, msg, fields)


logging.setLoggerClass(StructuredLogger)


def setup_logging(
    level: Optional[str] = None,
    json_format: Optional[bool] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """Configure the root logger. Arguments win over GHOSTLINE_LOG_* variables."""
    level = level or os.environ.get("GHOSTLINE_LOG_LEVEL", "INFO")
    if json_format is None:
        json_format = os.environ.get("GHOSTLINE_LOG_JSON", "0") == "1"
    log_file = log_file or os.environ.get("GHOSTLINE_LOG_FILE")

    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "[%(asctime)s] %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(TokenRedactingFilter())
        root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


def get_logger(name: str) -> StructuredLogger:
    return logging.getLogger(name)
