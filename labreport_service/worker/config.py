from __future__ import annotations

import os
from dataclasses import dataclass

from labreport_service.pipeline.scheduler import DEFAULT_ERROR_RETRY_DELAY_MS


def _get_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "t", "yes", "y", "on")


def _get_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None:
        return default
    return int(v)


@dataclass(frozen=True)
class WorkerConfig:
    # Claiming
    batch_size: int

    # Scheduling
    initial_delay_ms: int
    error_retry_delay_ms: int

    # Crash recovery: claims older than this are returned to pending at startup
    stale_claim_seconds: int

    @classmethod
    def from_env(cls) -> WorkerConfig:
        return cls(
            batch_size=_get_int("LAB_BATCH_SIZE", 50),
            initial_delay_ms=_get_int("LAB_INITIAL_DELAY_MS", 0),
            error_retry_delay_ms=_get_int(
                "LAB_SCHEDULER_ERROR_RETRY_DELAY_MS", DEFAULT_ERROR_RETRY_DELAY_MS
            ),
            stale_claim_seconds=_get_int("LAB_STALE_CLAIM_SECONDS", 900),
        )

    def validate(self) -> None:
        if self.batch_size < 1:
            raise ValueError("LAB_BATCH_SIZE must be >= 1")
        if self.initial_delay_ms < 0:
            raise ValueError("LAB_INITIAL_DELAY_MS must be >= 0")
        if self.error_retry_delay_ms < 0:
            raise ValueError("LAB_SCHEDULER_ERROR_RETRY_DELAY_MS must be >= 0")
        if self.stale_claim_seconds < 1:
            raise ValueError("LAB_STALE_CLAIM_SECONDS must be >= 1")
