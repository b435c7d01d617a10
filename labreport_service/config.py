"""Environment-variable-driven configuration for the lab-report service.

All config comes from env vars; defaults match local development.
"""

from __future__ import annotations

import os


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# -- Polling backoff ----------------------------------------------------------
LAB_IDLE_DELAY_MS: int = int(os.getenv("LAB_IDLE_DELAY_MS", "30000"))
LAB_FAST_RETRY_DELAY_MS: int = int(os.getenv("LAB_FAST_RETRY_DELAY_MS", "100"))

# -- Extraction (Gemini) ------------------------------------------------------
LAB_EXTRACTION_MODEL: str = os.getenv("LAB_EXTRACTION_MODEL", "gemini-2.5-flash")
LAB_EXTRACTION_TEMPERATURE: float = float(os.getenv("LAB_EXTRACTION_TEMPERATURE", "0.1"))
LAB_EXTRACTION_TOP_P: float = float(os.getenv("LAB_EXTRACTION_TOP_P", "0.8"))
LAB_EXTRACTION_MAX_OUTPUT_TOKENS: int = int(os.getenv("LAB_EXTRACTION_MAX_OUTPUT_TOKENS", "8192"))
LAB_EXTRACTION_MAX_RETRIES: int = int(os.getenv("LAB_EXTRACTION_MAX_RETRIES", "2"))
LAB_EXTRACTION_RETRY_BASE_SECONDS: float = float(os.getenv("LAB_EXTRACTION_RETRY_BASE_SECONDS", "0.5"))

# -- Poller -------------------------------------------------------------------
LAB_POLLER_ENABLED: bool = _env_bool("LAB_POLLER_ENABLED", True)

# -- GCP ----------------------------------------------------------------------
VERTEX_PROJECT: str = os.getenv("GOOGLE_CLOUD_PROJECT", "labreport-dev")
VERTEX_LOCATION: str = os.getenv("GOOGLE_CLOUD_LOCATION", "us-central1")
