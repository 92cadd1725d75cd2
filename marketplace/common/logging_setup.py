import json
import logging
import re
import sys
from logging.handlers import QueueHandler, QueueListener
from queue import Queue
from typing import Any, Dict, Optional
from marketplace.common.constants import request_id_ctx
from marketplace.config.admin_config import admin_config

ENV = admin_config.ENV.lower()

SENSITIVE_KEYS = (
    "password", "secret", "token", "authorization", "api_key", "apikey",
    "otp", "code_hash", "token_hash", "password_hash",
)

# attributes every LogRecord carries; anything else came in through `extra`
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({})).keys()) | {"message", "asctime"}

_MASKED_FIELDS = ("user_public_id", "public_id", "email", "phone_number")


def sanitize_message_text(msg: str) -> str:
    """Redact `key=value` and `"key": "value"` pairs whose key looks sensitive."""
    out = msg
    for key in SENSITIVE_KEYS:
        out = re.sub(rf'("{key}"\s*:\s*")[^"]+(")', r"\1[REDACTED]\2", out, flags=re.IGNORECASE)
        out = re.sub(rf"({key}\s*[=:]\s*)[\w\-\./+]+", r"\1[REDACTED]", out, flags=re.IGNORECASE)
    return out


def _mask(value: Any) -> str:
    val = str(value)
    if "@" in val:
        name, _, domain = val.partition("@")
        return f"{name[:2]}***@{domain}"
    if len(val) > 12:
        return val[:8] + "..." + val[-4:]
    return val[:4] + "..."


class JSONFormatter(logging.Formatter):
    """Structured JSON formatter used outside dev."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "env": ENV,
            "service": admin_config.SERVICE_NAME,
        }

        rid = request_id_ctx.get()
        if rid:
            log_data["request_id"] = rid

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            if key in _MASKED_FIELDS and value is not None:
                value = _mask(value)
            elif any(s in key.lower() for s in SENSITIVE_KEYS):
                value = "[REDACTED]"
            log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        log_data["event"] = sanitize_message_text(log_data["event"])
        return json.dumps(log_data, default=str)


class SecurityFilter(logging.Filter):
    """Redacts sensitive patterns from the rendered message before it is formatted."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            record.msg = sanitize_message_text(record.getMessage())
            record.args = ()
        else:
            record.msg = sanitize_message_text(str(record.msg))
        return True


_queue_listener: Optional[QueueListener] = None


def setup_logging() -> logging.Logger:
    """Route every record through a queue so request handlers never block on stdout."""
    global _queue_listener

    if _queue_listener is not None:
        return logging.getLogger("marketplace.app")

    log_level = logging.INFO if ENV in ("prod", "staging") else logging.DEBUG

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)

    q: Queue = Queue(-1)
    root.setLevel(log_level)
    root.addHandler(QueueHandler(q))

    console_handler = logging.StreamHandler(sys.stdout)
    if ENV != "dev":
        console_handler.setFormatter(JSONFormatter())
        console_handler.addFilter(SecurityFilter())
    else:
        console_handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)8s] %(name)s:%(funcName)s:%(lineno)d | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))

    _queue_listener = QueueListener(q, console_handler, respect_handler_level=True)
    _queue_listener.start()

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING if ENV != "dev" else logging.INFO)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return logging.getLogger("marketplace.app")


def shutdown_logging() -> None:
    global _queue_listener
    if _queue_listener is not None:
        _queue_listener.stop()
        _queue_listener = None


class ContextLogger:
    """Thin wrapper that stamps the current request id onto every record's extras."""

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, msg: str, *args, **kwargs):
        extra = dict(kwargs.pop("extra", None) or {})
        rid = request_id_ctx.get()
        if rid:
            extra.setdefault("request_id", rid)
        kwargs.setdefault("stacklevel", 3)
        self._logger.log(level, msg, *args, extra=extra, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        kwargs.setdefault("exc_info", True)
        self._log(logging.ERROR, msg, *args, **kwargs)


def get_logger(name: str = "marketplace.app") -> ContextLogger:
    return ContextLogger(name)
