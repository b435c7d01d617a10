"""Collaborator interfaces used by the extraction orchestrator."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from labreport_service.pipeline.types import ExtractionResult, OcrRecord


class RecordStore(Protocol):
    """Persistent OCR records with atomic claim, commit and restore."""

    async def claim(self, max_count: int) -> list[OcrRecord]: ...

    async def commit(self, record_id: int) -> bool: ...

    async def restore(self, record_id: int) -> bool: ...

    async def exists(self, record_id: int) -> bool: ...


class ExtractionClient(Protocol):
    """Turns claimed OCR records into structured lab-report payloads."""

    async def process_batch(self, records: Sequence[OcrRecord]) -> list[ExtractionResult]: ...


class ReportWriter(Protocol):
    """Validates and persists one lab-report payload; raises when invalid."""

    async def create(self, payload: Mapping[str, Any]) -> int: ...


__all__ = ["RecordStore", "ExtractionClient", "ReportWriter"]
