"""Logging setup for the worker and the ops API.

JSON lines with a GCP ``severity`` field on Cloud Run (or LOG_FORMAT=json),
plain text locally. Every log line of one extraction cycle carries the same
short cycle ID; HTTP requests carry a request ID.
"""

from __future__ import annotations

import logging
import os
import uuid

from pythonjsonlogger.json import JsonFormatter

# Per-request transport logs from the Gemini SDK drown out cycle logs
_QUIET_LOGGERS = ("httpx", "httpcore", "google_genai", "google.auth")


class GCPJsonFormatter(JsonFormatter):
    """Renames ``levelname`` to the ``severity`` key Cloud Logging reads."""

    def add_fields(
        self,
        log_record: dict[str, object],
        record: logging.LogRecord,
        message_dict: dict[str, object],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["severity"] = record.levelname
        log_record.pop("levelname", None)


def _use_json() -> bool:
    if os.getenv("LOG_FORMAT", "").strip().lower() == "json":
        return True
    return bool(os.getenv("K_SERVICE") or os.getenv("CLOUD_RUN_JOB"))


def _build_formatter() -> logging.Formatter:
    if _use_json():
        return GCPJsonFormatter(
            fmt="%(message)s %(name)s %(funcName)s %(lineno)d",
            rename_fields={"name": "logger"},
        )
    return logging.Formatter(
        "%(asctime)s %(levelname)-8s %(name)s:%(lineno)d  %(message)s",
        datefmt="%H:%M:%S",
    )


def setup_logging(*, level: str = "INFO") -> None:
    """Replace root handlers with a single stream handler at ``level``."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for h in root.handlers[:]:
        root.removeHandler(h)

    handler = logging.StreamHandler()
    handler.setFormatter(_build_formatter())
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def generate_request_id() -> str:
    return uuid.uuid4().hex[:16]


def generate_cycle_id() -> str:
    """Short ID that tags every log line of one extraction cycle."""
    return uuid.uuid4().hex[:8]
