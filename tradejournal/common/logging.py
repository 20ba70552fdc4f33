"""
JSON-lines logging for the journal functions (stdlib only).

Cloud Logging parses one JSON object per stdout line into a structured entry,
so every record carries `severity`, `message`, `service`, `env`,
`event_type` and the `request_id` bound for the current trigger invocation.
Semantic events go through `log_event(logger, "fanout.completed", ...)`; the
extra keyword fields land as top-level JSON keys.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import traceback
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

DEFAULT_SERVICE = "trade-journal-functions"

_REQUEST_ID: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Attributes every LogRecord has; anything else on a record came from `extra=`.
_RECORD_ATTRS: frozenset[str] = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
    "taskName",
}
_PAYLOAD_KEYS = frozenset({"timestamp", "severity", "service", "env", "request_id", "event_type", "message", "logger"})

_SEVERITIES = frozenset({"DEBUG", "INFO", "NOTICE", "WARNING", "ERROR", "CRITICAL", "ALERT", "EMERGENCY"})


def _one_line(v: Any, *, max_len: int) -> str:
    s = "" if v is None else str(v)
    s = " ".join(s.splitlines()).strip()
    return s if len(s) <= max_len else s[: max_len - 1] + "…"


def _first_env(*names: str, default: str) -> str:
    for name in names:
        v = (os.getenv(name) or "").strip()
        if v:
            return _one_line(v, max_len=128)
    return default


def default_service_name() -> str:
    return _first_env("SERVICE_NAME", "K_SERVICE", "FUNCTION_TARGET", default=DEFAULT_SERVICE)


def default_env_name() -> str:
    return _first_env("ENVIRONMENT", "ENV", default="unknown")


def _severity(levelname: str) -> str:
    s = levelname.upper()
    if s in _SEVERITIES:
        return s
    return {"WARN": "WARNING", "FATAL": "CRITICAL"}.get(s, "DEFAULT")


def get_request_id() -> Optional[str]:
    return _REQUEST_ID.get()


@contextmanager
def bind_request_id(*, request_id: Optional[str] = None) -> Iterator[str]:
    """Bind `request_id` (or a fresh one) to every record logged inside the block."""
    rid = _one_line(request_id, max_len=128) or uuid.uuid4().hex
    token = _REQUEST_ID.set(rid)
    try:
        yield rid
    finally:
        _REQUEST_ID.reset(token)


class JsonLogFormatter(logging.Formatter):
    def __init__(self, *, service: Optional[str] = None, env: Optional[str] = None) -> None:
        super().__init__()
        self._service = service or default_service_name()
        self._env = env or default_env_name()

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "severity": _severity(record.levelname),
            "service": self._service,
            "env": self._env,
            "request_id": get_request_id(),
            "event_type": getattr(record, "event_type", None) or "log",
            "message": _one_line(record.getMessage(), max_len=4000),
            "logger": record.name,
        }
        if record.exc_info:
            payload["exception"] = "".join(traceback.format_exception(*record.exc_info))[-8000:]

        for k, v in vars(record).items():
            if k in _RECORD_ATTRS or k in _PAYLOAD_KEYS or k.startswith("_"):
                continue
            payload[k] = v

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def init_structured_logging(
    *,
    service: Optional[str] = None,
    env: Optional[str] = None,
    level: str | int | None = None,
) -> None:
    """
    Route the root logger to stdout as JSON lines. Calling it again replaces
    the handler.
    """
    lvl = level or (os.getenv("LOG_LEVEL") or "INFO").upper()
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter(service=service, env=env))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(lvl)


def log_event(
    logger: logging.Logger,
    event_type: str,
    *,
    severity: str = "INFO",
    message: Optional[str] = None,
    exc_info: bool = False,
    **fields: Any,
) -> None:
    """Log a semantic event; `fields` become top-level JSON keys."""
    logger.log(
        getattr(logging, severity.upper(), logging.INFO),
        message or event_type,
        exc_info=exc_info,
        extra={"event_type": event_type, **fields},
    )
