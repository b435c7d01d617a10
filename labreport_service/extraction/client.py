"""Gemini-backed extraction of lab reports from OCR records.

The client sends one prompt per batch and returns one ExtractionResult per
object the model produced. It does not decide which results are usable:
binding results to claimed records (by ``ocrdataId``) is the orchestrator's
job. Any failure to obtain a parseable JSON array raises ExtractionError,
which the orchestrator treats as a wholesale rejection of the batch.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from collections.abc import Sequence
from functools import lru_cache
from typing import Any

from google import genai

from labreport_service.config import (
    LAB_EXTRACTION_MAX_OUTPUT_TOKENS,
    LAB_EXTRACTION_MAX_RETRIES,
    LAB_EXTRACTION_MODEL,
    LAB_EXTRACTION_RETRY_BASE_SECONDS,
    LAB_EXTRACTION_TEMPERATURE,
    LAB_EXTRACTION_TOP_P,
    VERTEX_LOCATION,
    VERTEX_PROJECT,
)
from labreport_service.extraction.prompts import build_lab_report_prompt
from labreport_service.pipeline.types import ExtractionResult, OcrRecord

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


class ExtractionError(RuntimeError):
    """Raised when the extraction service cannot produce a usable response."""


def _is_gcp_environment() -> bool:
    """Detect if running on GCP (Cloud Run, GCE, etc.)."""
    return bool(os.getenv("K_SERVICE") or os.getenv("GOOGLE_APPLICATION_CREDENTIALS"))


@lru_cache(maxsize=1)
def _get_gemini_client() -> genai.Client:
    """Cached Gemini client with automatic credential detection."""
    if _is_gcp_environment():
        return genai.Client(
            vertexai=True, project=VERTEX_PROJECT, location=VERTEX_LOCATION
        )
    api_key = os.getenv("GEMINI_API_KEY")
    if not api_key:
        raise ValueError(
            "GEMINI_API_KEY not set. Set it for local dev or run on GCP for ADC."
        )
    return genai.Client(api_key=api_key)


def parse_model_response(text: str | None) -> list[Any]:
    """Extract the JSON array of reports from raw model output.

    Accepts a bare array, an array inside a markdown code fence, or an object
    of the form ``{"reports": [...]}``.
    """
    if not text or not text.strip():
        raise ExtractionError("Extraction response was empty")

    raw = text.strip()
    if match := _FENCED_JSON.search(raw):
        raw = match.group(1).strip()

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ExtractionError(f"Extraction response is not valid JSON: {e}") from e

    if isinstance(parsed, dict) and isinstance(parsed.get("reports"), list):
        parsed = parsed["reports"]
    if not isinstance(parsed, list):
        raise ExtractionError(
            f"Extraction response must be a JSON array, got {type(parsed).__name__}"
        )
    return parsed


def coerce_source_id(value: Any) -> int | None:
    """Normalize an ``ocrdataId`` value to an int, or None if unrecognizable."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def to_extraction_results(entries: Sequence[Any]) -> list[ExtractionResult]:
    results: list[ExtractionResult] = []
    for entry in entries:
        if not isinstance(entry, dict):
            logger.warning("Dropping non-object extraction entry: %r", entry)
            continue
        results.append(
            ExtractionResult(
                source_id=coerce_source_id(entry.get("ocrdataId")),
                payload=entry,
            )
        )
    return results


def generate_reports_text(prompt: str) -> str:
    """Blocking Gemini call returning the raw response text."""
    client = _get_gemini_client()

    response = client.models.generate_content(
        model=LAB_EXTRACTION_MODEL,
        contents=prompt,
        config={
            "temperature": LAB_EXTRACTION_TEMPERATURE,
            "top_p": LAB_EXTRACTION_TOP_P,
            "max_output_tokens": LAB_EXTRACTION_MAX_OUTPUT_TOKENS,
            "response_mime_type": "application/json",
        },
    )

    text = response.text
    if text is None:
        raise ExtractionError("Extraction response contained no text")
    return text


class GeminiExtractionClient:
    """Extraction client that asks a Gemini model for structured lab reports."""

    def __init__(
        self,
        *,
        max_retries: int = LAB_EXTRACTION_MAX_RETRIES,
        retry_base_seconds: float = LAB_EXTRACTION_RETRY_BASE_SECONDS,
    ) -> None:
        self._max_retries = max(0, max_retries)
        self._retry_base_seconds = retry_base_seconds

    async def process_batch(self, records: Sequence[OcrRecord]) -> list[ExtractionResult]:
        if not records:
            return []

        prompt = build_lab_report_prompt(records)
        logger.info(
            "Requesting extraction for %d OCR records (prompt %d chars, model %s)",
            len(records),
            len(prompt),
            LAB_EXTRACTION_MODEL,
        )

        text = await self._generate_with_retries(prompt)
        results = to_extraction_results(parse_model_response(text))
        logger.info("Extraction returned %d reports for %d records", len(results), len(records))
        return results

    async def _generate_with_retries(self, prompt: str) -> str:
        """Run the blocking model call in the executor with bounded retries."""
        loop = asyncio.get_running_loop()

        for attempt in range(self._max_retries + 1):
            try:
                return await loop.run_in_executor(None, generate_reports_text, prompt)
            except ValueError:
                # Missing credentials; retrying cannot help
                raise
            except Exception as e:
                if attempt >= self._max_retries:
                    raise ExtractionError(f"Extraction call failed: {e}") from e
                backoff_seconds = self._retry_base_seconds * (2**attempt)
                logger.warning(
                    "Extraction attempt %d/%d failed; retrying in %.2fs",
                    attempt + 1,
                    self._max_retries + 1,
                    backoff_seconds,
                )
                await asyncio.sleep(backoff_seconds)

        raise RuntimeError("Unreachable extraction retry path")
