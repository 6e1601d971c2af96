"""
Structured logging for the Narrative Gateway.

JSON log lines carry a per-request ID held in a ContextVar. The same ID is
returned to callers as `requestId` so a failed narrative can be traced from
the case-management UI back to the gateway log.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "google_genai", "uvicorn.access")


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request ID to the current context, generating one if needed."""
    if not request_id:
        request_id = uuid.uuid4().hex[:12]
    request_id_var.set(request_id)
    return request_id


class JSONFormatter(logging.Formatter):
    """Render each record as a single JSON object."""

    def __init__(self, service_name: str = "narrative-gateway"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "service": self.service_name,
            "message": record.getMessage(),
        }

        request_id = get_request_id()
        if request_id:
            entry["request_id"] = request_id

        fields = getattr(record, "fields", None)
        if fields:
            entry["fields"] = fields

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class StructuredLogger:
    """Logger facade that takes keyword fields: log.info("msg", endpoint=...)."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _emit(self, level: int, message: str, fields: dict) -> None:
        if not self.logger.isEnabledFor(level):
            return
        self.logger.log(level, message, extra={"fields": fields} if fields else None)

    def debug(self, message: str, **fields: Any) -> None:
        self._emit(logging.DEBUG, message, fields)

    def info(self, message: str, **fields: Any) -> None:
        self._emit(logging.INFO, message, fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._emit(logging.WARNING, message, fields)

    def error(self, message: str, **fields: Any) -> None:
        self._emit(logging.ERROR, message, fields)


def setup_logging(
    level: str = "INFO",
    service_name: str = "narrative-gateway",
    use_json: bool = True,
) -> None:
    """Install a single stderr handler on the root logger.

    Args:
        level: Level name such as "INFO" or "DEBUG". Unknown names fall back to INFO.
        service_name: Value of the `service` field in JSON output
        use_json: Plain text lines when False (handy for local development)
    """
    numeric_level = logging.getLevelName(level.upper()) if isinstance(level, str) else level
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    root = logging.getLogger()
    root.setLevel(numeric_level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)
    if use_json:
        handler.setFormatter(JSONFormatter(service_name))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s [%(name)s] %(message)s"
        ))
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def mask_ip(ip: str) -> str:
    """Keep only the network half of an address for logs."""
    if ip.count(".") == 3:
        first, second, _, _ = ip.split(".")
        return f"{first}.{second}.xxx.xxx"
    if ":" in ip:
        groups = [g for g in ip.split(":") if g]
        return ":".join(groups[:2]) + ":xxxx" if groups else "xxxx"
    return "xxx"


def log_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    client_ip: Optional[str] = None,
) -> None:
    """One line per HTTP request; 4xx at WARNING, 5xx at ERROR."""
    log = StructuredLogger("narrative_gateway.http")
    fields = {
        "method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": round(duration_ms, 2),
    }
    if client_ip:
        fields["client_ip"] = mask_ip(client_ip)

    message = f"{method} {path} {status_code}"
    if status_code >= 500:
        log.error(message, **fields)
    elif status_code >= 400:
        log.warning(message, **fields)
    else:
        log.info(message, **fields)


def log_generation(
    endpoint: str,
    outcome: str,
    model: Optional[str] = None,
    tokens: int = 0,
    duration_ms: Optional[float] = None,
    code: Optional[str] = None,
) -> None:
    """Record the outcome of one gateway operation.

    `outcome` is one of "generated", "cached", "denied" or "failed".
    """
    log = StructuredLogger("narrative_gateway.generation")
    fields: dict = {"endpoint": endpoint, "outcome": outcome}
    if model:
        fields["model"] = model
    if tokens:
        fields["tokens"] = tokens
    if duration_ms is not None:
        fields["duration_ms"] = round(duration_ms, 2)
    if code:
        fields["code"] = code

    if outcome == "failed":
        log.error(f"{endpoint} failed ({code})", **fields)
    elif outcome == "denied":
        log.warning(f"{endpoint} denied ({code})", **fields)
    else:
        log.info(f"{endpoint} {outcome}", **fields)
