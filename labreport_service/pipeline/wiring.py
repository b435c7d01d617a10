"""Builds the production extraction pipeline object graph."""

from __future__ import annotations

from dataclasses import dataclass

from labreport_service.extraction.client import GeminiExtractionClient
from labreport_service.pipeline.interfaces import ExtractionClient, ReportWriter
from labreport_service.pipeline.orchestrator import ExtractionOrchestrator
from labreport_service.pipeline.scheduler import PollingScheduler
from labreport_service.pipeline.single_flight import GuardedOrchestrator
from labreport_service.stores.lab_report_store import LabReportWriter
from labreport_service.stores.ocr_record_store import (
    InMemoryOcrRecordStore,
    PostgresOcrRecordStore,
)
from labreport_service.worker.config import WorkerConfig


@dataclass(frozen=True)
class ExtractionPipeline:
    store: PostgresOcrRecordStore | InMemoryOcrRecordStore
    orchestrator: ExtractionOrchestrator
    guarded: GuardedOrchestrator
    scheduler: PollingScheduler


def build_pipeline(
    cfg: WorkerConfig,
    *,
    store: PostgresOcrRecordStore | InMemoryOcrRecordStore | None = None,
    client: ExtractionClient | None = None,
    writer: ReportWriter | None = None,
) -> ExtractionPipeline:
    """Wire store, extraction client and writer into a guarded, scheduled orchestrator.

    Defaults are the Postgres store, the Gemini client and the Postgres
    writer; tests pass their own collaborators.
    """
    store = store if store is not None else PostgresOcrRecordStore()
    orchestrator = ExtractionOrchestrator(
        store=store,
        client=client if client is not None else GeminiExtractionClient(),
        writer=writer if writer is not None else LabReportWriter(),
    )
    guarded = GuardedOrchestrator(orchestrator, batch_size=cfg.batch_size)

    async def _release_stale_claims() -> list[int]:
        return await store.restore_stale(cfg.stale_claim_seconds)

    scheduler = PollingScheduler(
        guarded.next_delay_ms,
        initial_delay_ms=cfg.initial_delay_ms,
        error_retry_delay_ms=cfg.error_retry_delay_ms,
        on_start=_release_stale_claims,
    )
    return ExtractionPipeline(
        store=store,
        orchestrator=orchestrator,
        guarded=guarded,
        scheduler=scheduler,
    )
