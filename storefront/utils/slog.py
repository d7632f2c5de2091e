# =============================================
# File: storefront/utils/slog.py
# Purpose: Structured request logging (one JSON object per line) for the FastAPI middleware
# =============================================
from __future__ import annotations
import json
import logging
import os
import uuid
from typing import Any, Dict, Optional

_LOGGER_NAME = "storefront"
_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

_logger = logging.getLogger(_LOGGER_NAME)
if not _logger.handlers:
    _logger.setLevel(getattr(logging, _LEVEL, logging.INFO))
    _handler = logging.StreamHandler()
    # Emit the message as-is; records are pre-formatted JSON
    _handler.setFormatter(logging.Formatter("%(message)s"))
    _logger.addHandler(_handler)
    _logger.propagate = True  # allow pytest caplog to capture

_MAX_REQUEST_ID = 64


def request_id_from(header_value: Optional[str]) -> str:
    """Reuse a caller-supplied X-Request-ID when it is sane, otherwise mint one."""
    v = (header_value or "").strip()
    if v and len(v) <= _MAX_REQUEST_ID and v.replace("-", "").isalnum():
        return v
    return uuid.uuid4().hex


def _emit(level: int, payload: Dict[str, Any]) -> None:
    _logger.log(level, json.dumps(payload, ensure_ascii=False, default=str))


def log_event(event: str, **fields: Any) -> None:
    rec: Dict[str, Any] = {"event": event}
    rec.update(fields)
    _emit(logging.INFO, rec)


def finalize_request_log(
    request_id: str,
    method: str,
    path: str,
    status: int,
    latency_ms: int,
    client_ip: str | None,
    ctx: Dict[str, Any] | None = None,
) -> None:
    payload: Dict[str, Any] = {
        "event": "request.completed",
        "request_id": request_id,
        "method": method,
        "path": path,
        "status": status,
        "latency_ms": latency_ms,
        "client_ip": client_ip or "",
    }
    if ctx:
        payload.update(ctx)
    _emit(logging.WARNING if status >= 500 else logging.INFO, payload)
