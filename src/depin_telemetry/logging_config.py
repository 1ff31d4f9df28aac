"""
Structured logging for depin-telemetry.

Connectors log through module-level stdlib loggers with ``extra={...}``
fields. The formatters here make those records safe to ship:

- credential-bearing fields (api_key, authorization, token, ...) are dropped
- API keys and bearer tokens in free text are redacted
- URLs are reduced to their path, so query strings never reach the logs
- raw payloads and request params are replaced by placeholders

Usage:
    from depin_telemetry.logging_config import setup_logging, get_logger

    setup_logging(json_format=False)
    logger = get_logger(__name__)
    logger.info("Connector ready", extra={"network": "ionet"})
"""

from __future__ import annotations

import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlsplit

import orjson

_URL_PATTERN = re.compile(r"(https?://[^\s\"'<>]+)")

_SENSITIVE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\b(x-)?api[_-]?key[\"']?\s*[=:]\s*[\"']?[\w\-\.]+[\"']?", re.I), "[API_KEY]"),
    (re.compile(r"\bbearer\s+[\w\-\.=]+", re.I), "[TOKEN]"),
    (re.compile(r"\b(access_|refresh_)?token[\"']?\s*[=:]\s*[\"']?[\w\-\.]+[\"']?", re.I), "[TOKEN]"),
    (re.compile(r"\bauthorization[\"']?\s*[=:]\s*[\"']?[^\s,;\"']+", re.I), "[AUTH]"),
]

# Dropped from structured output; substring match on the lowercased key
BLOCKED_FIELDS: frozenset[str] = frozenset(
    {
        "api_key",
        "apikey",
        "secret",
        "token",
        "password",
        "authorization",
        "bearer",
        "credential",
        "cookie",
    }
)

# Replaced by a placeholder; "url" is kept as its path under "endpoint"
REDACTED_FIELDS: dict[str, str] = {
    "url": "endpoint",
    "body": "[BODY]",
    "payload": "[PAYLOAD]",
    "params": "[PARAMS]",
    "headers": "[HEADERS]",
    "html": "[HTML]",
}

_RECORD_ATTRS: frozenset[str] = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
    "taskName",
}

_MAX_DEPTH = 3
_MAX_LIST = 10


def _url_path(url: str) -> str:
    return urlsplit(url).path or "/"


def _redact_url(match: re.Match[str]) -> str:
    path = _url_path(match.group(1))
    return path if path != "/" else "[URL]"


def sanitize_text(text: str) -> str:
    """Reduce URLs to paths and redact credentials in free-form text."""
    if not text:
        return text
    result = _URL_PATTERN.sub(_redact_url, text)
    for pattern, replacement in _SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


def filter_fields(fields: dict[str, Any], *, _depth: int = 0) -> dict[str, Any]:
    """Drop blocked keys and sanitize values, recursing into nested dicts."""
    if _depth > _MAX_DEPTH:
        return {"_truncated": "max depth exceeded"}

    filtered: dict[str, Any] = {}
    for key, value in fields.items():
        key_lower = key.lower()
        if any(blocked in key_lower for blocked in BLOCKED_FIELDS):
            continue

        if key_lower in REDACTED_FIELDS:
            if key_lower == "url" and isinstance(value, str):
                filtered["endpoint"] = _url_path(value)
            else:
                filtered[key] = REDACTED_FIELDS[key_lower]
            continue

        if value is None or isinstance(value, (bool, int, float)):
            filtered[key] = value
        elif isinstance(value, str):
            filtered[key] = sanitize_text(value)
        elif isinstance(value, (list, tuple)):
            filtered[key] = (
                [sanitize_text(v) if isinstance(v, str) else v for v in value]
                if len(value) <= _MAX_LIST
                else f"[list:{len(value)} items]"
            )
        elif isinstance(value, dict):
            filtered[key] = filter_fields(value, _depth=_depth + 1)
        else:
            filtered[key] = sanitize_text(str(value))

    return filtered


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line.

    {"ts":"2025-01-01T00:00:00.000+00:00","level":"INFO","logger":"...","msg":"...", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": sanitize_text(record.getMessage()),
        }

        if record.levelno >= logging.WARNING:
            entry["file"] = record.filename
            entry["line"] = record.lineno

        if record.exc_info:
            entry["exc"] = sanitize_text(self.formatException(record.exc_info))

        extra = _extra_fields(record)
        if extra:
            entry.update(filter_fields(extra))

        return orjson.dumps(entry, default=str).decode()


class SimpleFormatter(logging.Formatter):
    """Human-readable ``LEVEL logger: msg | k=v`` lines for development."""

    def format(self, record: logging.LogRecord) -> str:
        line = f"{record.levelname:8s} {record.name}: {sanitize_text(record.getMessage())}"

        filtered = filter_fields(_extra_fields(record))
        if filtered:
            line = f"{line} | " + " ".join(f"{k}={v}" for k, v in filtered.items())

        if record.exc_info:
            line = f"{line}\n{sanitize_text(self.formatException(record.exc_info))}"
        return line


def setup_logging(
    *,
    level: int | str = logging.INFO,
    json_format: bool = True,
    stream: Any = None,
) -> None:
    """
    Install a single root handler. Call once at startup.

    Args:
        level: Root log level.
        json_format: JsonFormatter when True, SimpleFormatter otherwise.
        stream: Output stream (default stderr).
    """
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(JsonFormatter() if json_format else SimpleFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
