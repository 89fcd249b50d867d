from __future__ import annotations

"""
JSON-lines logging for the ledger (stdlib `logging` underneath).

Every line carries the process identity (service/env/version/sha), the bound
request id, and a stable `event_type`. Ledger code emits semantic events through
`log_event(logger, "area.event", **fields)`; decimals and datetimes are rendered
as strings so amounts are logged without precision loss.
"""

import json
import logging
import os
import sys
import traceback
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterator, Optional

_REQUEST_ID: ContextVar[Optional[str]] = ContextVar("tokenledger_request_id", default=None)

# Attributes every LogRecord has; anything else on a record came from `extra=`.
_RECORD_ATTRS = frozenset(logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__) | {"message", "asctime"}
_CORE_FIELDS = frozenset({"timestamp", "severity", "service", "env", "version", "sha", "request_id", "event_type", "logger"})

_SEVERITIES = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_SEVERITY_ALIASES = {"WARN": "WARNING", "FATAL": "CRITICAL"}


def _one_line(v: Any, limit: int) -> str:
    s = "" if v is None else str(v)
    s = " ".join(s.splitlines()).strip()
    return s if len(s) <= limit else s[: limit - 1] + "…"


def _first_env(*names: str, default: str = "unknown") -> str:
    for name in names:
        v = (os.getenv(name) or "").strip()
        if v:
            return _one_line(v, 128)
    return default


def _severity(level: str | int | None) -> str:
    name = logging.getLevelName(level) if isinstance(level, int) else str(level or "INFO")
    name = str(name).strip().upper()
    name = _SEVERITY_ALIASES.get(name, name)
    return name if name in _SEVERITIES else "INFO"


def _json_default(v: Any) -> Any:
    if isinstance(v, Decimal):
        return str(v)
    if isinstance(v, datetime):
        return v.isoformat()
    return str(v)


@dataclass(frozen=True)
class ProcessIdentity:
    service: str
    env: str
    version: str
    sha: str

    @staticmethod
    def from_env(
        *, service: str | None = None, env: str | None = None, version: str | None = None, sha: str | None = None
    ) -> "ProcessIdentity":
        return ProcessIdentity(
            service=service or _first_env("SERVICE_NAME", "SERVICE", default="tokenledger"),
            env=env or _first_env("ENVIRONMENT", "ENV", "APP_ENV"),
            version=version or _first_env("APP_VERSION", "VERSION", "IMAGE_TAG"),
            sha=sha or _first_env("GIT_SHA", "COMMIT_SHA", "BUILD_SHA"),
        )


def get_request_id() -> Optional[str]:
    return _REQUEST_ID.get()


@contextmanager
def bind_request_id(*, request_id: str | None = None) -> Iterator[str]:
    """
    Bind a request id for the duration of a unit of work.

    Every log line emitted inside the block carries it, which makes a buy and the
    order executions it triggers traceable as one request.
    """
    rid = _one_line(request_id, 128) or uuid.uuid4().hex
    token = _REQUEST_ID.set(rid)
    try:
        yield rid
    finally:
        _REQUEST_ID.reset(token)


class JsonLogFormatter(logging.Formatter):
    def __init__(
        self, *, service: str | None = None, env: str | None = None, version: str | None = None, sha: str | None = None
    ) -> None:
        super().__init__()
        self.identity = ProcessIdentity.from_env(service=service, env=env, version=version, sha=sha)

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "severity": _severity(getattr(record, "severity", None) or record.levelno),
            "service": self.identity.service,
            "env": self.identity.env,
            "version": self.identity.version,
            "sha": self.identity.sha,
            "request_id": getattr(record, "request_id", None) or get_request_id(),
            "event_type": getattr(record, "event_type", None) or "log",
            "message": _one_line(record.getMessage(), 4000),
            "logger": record.name,
        }
        if record.exc_info:
            payload["exception"] = "".join(traceback.format_exception(*record.exc_info))[-8000:]

        for k, v in record.__dict__.items():
            if k in _RECORD_ATTRS or k in _CORE_FIELDS or k.startswith("_"):
                continue
            payload[k] = v
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=_json_default)


def init_structured_logging(
    *,
    service: str | None = None,
    env: str | None = None,
    version: str | None = None,
    sha: str | None = None,
    level: str | int | None = None,
) -> logging.Handler:
    """
    Route the root logger to stdout as JSON lines. Re-running replaces the handler.
    """
    lvl = level or (os.getenv("LOG_LEVEL") or "INFO").upper()
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter(service=service, env=env, version=version, sha=sha))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(lvl)
    logging.captureWarnings(True)
    return handler


def log_event(
    logger: logging.Logger,
    event_type: str,
    *,
    severity: str = "INFO",
    message: str | None = None,
    **fields: Any,
) -> None:
    """Emit a semantic event with a stable `event_type`; `fields` become JSON keys."""
    lvl = logging.getLevelName(_severity(severity))
    logger.log(lvl, message or event_type, extra={"event_type": event_type, **fields})


__all__ = [
    "JsonLogFormatter",
    "ProcessIdentity",
    "bind_request_id",
    "get_request_id",
    "init_structured_logging",
    "log_event",
]
