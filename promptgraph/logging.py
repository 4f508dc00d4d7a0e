from __future__ import annotations

import logging
import os
import re
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Dict, List, Optional

import structlog

# Set per HTTP request by the app middleware and once per CLI run
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Event fields whose whole value is masked
_SECRET_FIELDS = ("api_key", "authorization", "password", "secret", "token")
# Free-text event fields that may echo provider errors
_ERROR_FIELDS = ("error", "message")

_TRUTHY = {"1", "true", "yes", "on"}


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Use ``correlation_id`` for the current context, generating one if absent."""
    cid = correlation_id or str(uuid.uuid4())
    correlation_id_var.set(cid)
    return cid


def _bind_correlation_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    cid = correlation_id_var.get()
    if cid and "correlation_id" not in event_dict:
        event_dict["correlation_id"] = cid
    return event_dict


def _scrub_secrets(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Mask credential fields and strip keys or paths out of error text.

    Trace lists attached to workflow events get the same treatment for their
    per-node ``error`` entries; the caller's trace itself is left untouched.
    """
    for key, value in list(event_dict.items()):
        lowered = key.lower()
        if any(name in lowered for name in _SECRET_FIELDS) and value:
            event_dict[key] = "[redacted]"
        elif lowered in _ERROR_FIELDS and isinstance(value, str):
            event_dict[key] = sanitize_error_message(value)
    trace = event_dict.get("trace")
    if isinstance(trace, list):
        event_dict["trace"] = [
            {**entry, "error": sanitize_error_message(str(entry["error"]))}
            if isinstance(entry, dict) and "error" in entry
            else entry
            for entry in trace
        ]
    return event_dict


def _stream_factory(stream: str):
    """Logger factory that looks the stream up on ``sys`` for every new logger."""

    def factory(*args: Any) -> structlog.PrintLogger:
        return structlog.PrintLogger(getattr(sys, stream))

    return factory


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in _TRUTHY


def configure_logging(
    level: Optional[str] = None,
    *,
    json_output: Optional[bool] = None,
    development_mode: Optional[bool] = None,
    stream: str = "stdout",
) -> None:
    """(Re)configure structlog; unset arguments fall back to LOG_* variables.

    Args:
        level: DEBUG, INFO, WARNING or ERROR (``LOG_LEVEL``)
        json_output: JSON lines instead of key=value console output (``LOG_JSON``)
        development_mode: colored console output (``LOG_DEV_MODE``)
        stream: ``"stdout"`` or ``"stderr"``
    """
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if json_output is None:
        json_output = _env_flag("LOG_JSON", "true")
    if development_mode is None:
        development_mode = _env_flag("LOG_DEV_MODE", "false")

    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _bind_correlation_id,
        _scrub_secrets,
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output and not development_mode:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=development_mode))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level, logging.INFO)
        ),
        context_class=dict,
        logger_factory=_stream_factory(stream),
        cache_logger_on_first_use=True,
    )


def log_to_stderr() -> None:
    """Keep stdout for command output; only the logger factory changes."""
    structlog.configure(logger_factory=_stream_factory("stderr"))


configure_logging()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)




def log_workflow_trace(trace: list, logger: Optional[Any] = None) -> None:
    """Log a finished workflow trace: nodes executed, routes taken, errors."""
    log = logger or get_logger("workflow")
    log.info("workflow_trace", trace=trace)


# Patterns that indicate sensitive information in error messages
_SENSITIVE_ERROR_PATTERNS = [
    r'(?i)/(?:home|var|etc|usr|opt|tmp)/[^\s]+',
    r'(?i)[a-z]:\\[^\s]+',
    r'(?i)(password|secret|token|key|credential|api.?key)\s*[:=]\s*[^\s]+',
    r'(?i)sk-[a-z0-9_-]{8,}',
    r'(?i)traceback\s*\(most recent call last\)',
]

_SENSITIVE_PATTERNS_COMPILED = [re.compile(p) for p in _SENSITIVE_ERROR_PATTERNS]


def sanitize_error_message(error: str, *, replacement: str = "[redacted]") -> str:
    """Sanitize an error message before it leaves the process.

    Removes file paths, credentials (including provider API keys echoed back
    by upstream errors) and stack trace markers, and caps the length.
    """
    if not error or not isinstance(error, str):
        return "An error occurred"

    result = error
    for pattern in _SENSITIVE_PATTERNS_COMPILED:
        result = pattern.sub(replacement, result)

    if len(result) > 500:
        result = result[:497] + "..."

    return result


def sanitize_workflow_trace(trace: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Reduce a workflow trace to node names, statuses, timings and output keys."""
    sanitized = []
    for entry in trace:
        if not isinstance(entry, dict):
            continue

        safe_entry = {
            "node": entry.get("node"),
            "status": entry.get("status"),
            "duration_ms": entry.get("duration_ms"),
        }
        if "label" in entry:
            safe_entry["label"] = entry["label"]
        if "error" in entry:
            safe_entry["error"] = sanitize_error_message(str(entry.get("error", "")))
        if isinstance(entry.get("output_keys"), list):
            safe_entry["output_keys"] = list(entry["output_keys"])

        sanitized.append(safe_entry)

    return sanitized
