"""Logging configuration using loguru.

Provides:
- Structured JSON logging (one object per line) for log shipping
- Human-readable logging for development
- File context tracking (the id of the file being loaded or saved)
- Save and key-resolution event helpers with structured fields
"""

from __future__ import annotations

import json
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from loguru import logger

# Context variable for the file currently being processed
file_id_ctx: ContextVar[str | None] = ContextVar("file_id", default=None)

# Map loguru levels to severity names understood by log collectors
LEVEL_TO_SEVERITY = {
    "TRACE": "DEBUG",
    "DEBUG": "DEBUG",
    "INFO": "INFO",
    "SUCCESS": "INFO",
    "WARNING": "WARNING",
    "ERROR": "ERROR",
    "CRITICAL": "CRITICAL",
}


def _json_formatter(record: dict[str, Any]) -> str:
    """Serialize a log record into a single JSON line.

    The line is stashed in ``extra`` and referenced from the returned
    format string, so loguru does not try to interpret braces in it.
    """
    log_entry: dict[str, Any] = {
        "timestamp": datetime.now(UTC).isoformat(),
        "severity": LEVEL_TO_SEVERITY.get(record["level"].name, "INFO"),
        "message": record["message"],
        "logger": record["name"],
        "function": record["function"],
        "line": record["line"],
    }

    file_id = file_id_ctx.get()
    if file_id:
        log_entry["file_id"] = file_id

    for key, value in record["extra"].items():
        if key != "serialized" and key not in log_entry:
            log_entry[key] = value

    if record["exception"]:
        exc = record["exception"]
        log_entry["exception"] = {
            "type": exc.type.__name__ if exc.type else None,
            "value": str(exc.value) if exc.value else None,
        }

    record["extra"]["serialized"] = json.dumps(log_entry, default=str)
    return "{extra[serialized]}\n"


def _dev_formatter(_record: dict[str, Any]) -> str:
    """Format log record for development (human-readable)."""
    file_id = file_id_ctx.get()
    context_str = f"[file={file_id}] " if file_id else ""

    return (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
        + context_str.replace("{", "{{").replace("}", "}}")
        + "<level>{message}</level>\n"
        "{exception}"
    )


def setup_logging(json_logs: bool = False, log_level: str = "INFO") -> None:
    """Configure loguru for the application.

    Args:
        json_logs: If True, output one JSON object per log line
        log_level: Minimum log level to output
    """
    logger.remove()

    if json_logs:
        logger.add(
            sys.stderr,
            format=_json_formatter,
            level=log_level,
            serialize=False,
        )
    else:
        logger.add(
            sys.stderr,
            format=_dev_formatter,
            level=log_level,
            colorize=True,
        )


@contextmanager
def file_context(file_id: str | None) -> Iterator[None]:
    """Tag every log line emitted inside the block with a file id."""
    token = file_id_ctx.set(file_id)
    try:
        yield
    finally:
        file_id_ctx.reset(token)


# =============================================================================
# Event Logging
# =============================================================================


def log_save_started(file_id: str, key: str, manual: bool) -> None:
    """Log when a save begins."""
    logger.bind(
        event="save_started",
        file_id=file_id,
        key=key,
        manual=manual,
    ).info("Save started")


def log_save_succeeded(file_id: str, key: str, size: int, file_name: str) -> None:
    """Log a completed save."""
    logger.bind(
        event="save_succeeded",
        file_id=file_id,
        key=key,
        bytes=size,
        file_name=file_name,
    ).info("Save succeeded")


def log_save_failed(file_id: str, reason: str) -> None:
    """Log a failed or timed out save."""
    logger.bind(
        event="save_failed",
        file_id=file_id,
        reason=reason,
    ).warning("Save failed")


def log_key_resolved(file_id: str, key: str, attempts: int, via_listing: bool) -> None:
    """Log which storage key a file resolved to."""
    logger.bind(
        event="key_resolved",
        file_id=file_id,
        key=key,
        attempts=attempts,
        via_listing=via_listing,
    ).info("Storage key resolved")
