"""Logging for axiomtrade.

Every record is tagged with the login/request flow it belongs to and the
Axiom API host the flow is talking to. Auth cookie values that end up in a
message (error bodies, echoed headers) are masked before formatting.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from axiomtrade.models import ACCESS_COOKIE, OTP_COOKIE, REFRESH_COOKIE

if TYPE_CHECKING:
    from axiomtrade.config import Config

correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")
api_host: ContextVar[str] = ContextVar("api_host", default="")

TEXT_FORMAT = "%(levelname)s %(name)s [%(flow)s] %(message)s"
QUIET_LOGGERS = ("httpx", "httpcore", "hpack")

_COOKIE_VALUE = re.compile(
    rf"({'|'.join(re.escape(c) for c in (ACCESS_COOKIE, REFRESH_COOKIE, OTP_COOKIE))})=([^;\s\"']+)"
)


def redact(secret: str | None, keep: int = 8) -> str:
    """Short prefix of a token or secret, safe to put in a log line."""
    if not secret:
        return "<none>"
    return f"{secret[:keep]}..."


def scrub_cookies(text: str) -> str:
    return _COOKIE_VALUE.sub(lambda m: f"{m.group(1)}={redact(m.group(2))}", text)


class AxiomContextFilter(logging.Filter):
    """Attach flow id and API host; mask auth cookie values in the message."""

    def filter(self, record: logging.LogRecord) -> bool:
        cid = correlation_id.get()
        host = api_host.get()
        record.correlation_id = cid  # type: ignore[attr-defined]
        record.api_host = host  # type: ignore[attr-defined]
        record.flow = "@".join(p for p in (cid, host) if p) or "-"  # type: ignore[attr-defined]
        message = record.getMessage()
        scrubbed = scrub_cookies(message)
        if scrubbed != message:
            record.msg, record.args = scrubbed, None
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in ("correlation_id", "api_host"):
            value = getattr(record, key, "")
            if value:
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(config: "Config") -> None:
    """Install one stderr handler on the root logger per config.logging."""
    log_cfg = config.logging
    level = getattr(logging, log_cfg.level.upper(), logging.WARNING)

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.addFilter(AxiomContextFilter())
    if log_cfg.format.lower() == "json":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.ERROR)


def new_correlation_id() -> str:
    """Start a new flow: fresh correlation id, no API host yet."""
    cid = uuid.uuid4().hex[:12]
    correlation_id.set(cid)
    api_host.set("")
    return cid
