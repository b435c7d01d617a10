"""Unit test conftest: no database or model access required.

Collaborators are in-process fakes: the in-memory record store, a scripted
extraction client, and a report writer that validates like the real one but
keeps reports in a dict.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping, Sequence
from typing import Any

import pytest

from labreport_service.pipeline.orchestrator import ExtractionOrchestrator
from labreport_service.pipeline.types import ExtractionResult, OcrRecord
from labreport_service.stores.lab_report_store import validate_lab_report
from labreport_service.stores.ocr_record_store import InMemoryOcrRecordStore


class FakeExtractionClient:
    """Scripted extraction client.

    By default returns a valid payload for every record. Set ``respond`` to
    customize results, ``error`` to reject the batch, or ``gate`` to hold the
    call open until the test releases it.
    """

    def __init__(self, make_payload: Callable[..., dict[str, Any]]) -> None:
        self._make_payload = make_payload
        self.calls: list[list[int]] = []
        self.error: BaseException | None = None
        self.gate: asyncio.Event | None = None
        self.respond: Callable[[Sequence[OcrRecord]], Any] = self._all_succeed

    def _all_succeed(self, records: Sequence[OcrRecord]) -> list[ExtractionResult]:
        return [ExtractionResult(source_id=r.id, payload=self._make_payload(r.id)) for r in records]

    async def process_batch(self, records: Sequence[OcrRecord]) -> list[ExtractionResult]:
        self.calls.append([r.id for r in records])
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        out = self.respond(records)
        if asyncio.iscoroutine(out):
            out = await out
        return out


class FakeReportWriter:
    """Validates payloads like LabReportWriter and keeps them in memory."""

    def __init__(self) -> None:
        self.written: dict[int, dict[str, Any]] = {}
        self.fail_ids: set[int] = set()
        self._next_id = 100

    async def create(self, payload: Mapping[str, Any]) -> int:
        report = validate_lab_report(payload)
        if report.ocrdata_id in self.fail_ids:
            raise RuntimeError(f"simulated write failure for {report.ocrdata_id}")
        self._next_id += 1
        self.written[report.ocrdata_id] = dict(payload)
        return self._next_id


@pytest.fixture
def store() -> InMemoryOcrRecordStore:
    return InMemoryOcrRecordStore()


@pytest.fixture
def extraction_client(make_payload) -> FakeExtractionClient:
    return FakeExtractionClient(make_payload)


@pytest.fixture
def report_writer() -> FakeReportWriter:
    return FakeReportWriter()


@pytest.fixture
def orchestrator(store, extraction_client, report_writer) -> ExtractionOrchestrator:
    return ExtractionOrchestrator(
        store=store,
        client=extraction_client,
        writer=report_writer,
        idle_delay_ms=30000,
        fast_retry_delay_ms=100,
    )


@pytest.fixture
def seed(store, test_workspace_id):
    """Insert ``count`` pending OCR records and return them in insertion order."""

    async def _seed(count: int, *, workspace_id: int | None = None) -> list[OcrRecord]:
        return [
            await store.add(
                source_image_ref=f"report-{i}.jpg",
                raw_ocr_payload=f'{{"textResults": [{{"text": "姓名：患者{i}"}}]}}',
                workspace_id=workspace_id or test_workspace_id,
            )
            for i in range(count)
        ]

    return _seed
