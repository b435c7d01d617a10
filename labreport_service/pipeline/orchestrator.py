"""One extraction cycle: claim -> extract -> reconcile -> commit or restore.

Every record claimed by a cycle leaves it either committed (report written,
record removed) or restored (pending again, retried by a later cycle). The
returned delay tells the scheduler how soon to run the next cycle:

- idle delay when there was nothing to do, everything committed, or the
  extraction service rejected the whole batch (back off from a failing
  dependency);
- fast-retry delay when at least one record was restored, since known work
  is still outstanding.

Store errors (connectivity) are not caught here and end the cycle.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from labreport_service.config import LAB_FAST_RETRY_DELAY_MS, LAB_IDLE_DELAY_MS
from labreport_service.logging_config import generate_cycle_id
from labreport_service.pipeline.interfaces import ExtractionClient, RecordStore, ReportWriter
from labreport_service.pipeline.types import (
    CycleResult,
    CycleState,
    ExtractionResult,
    OcrRecord,
)

logger = logging.getLogger(__name__)


def build_payload_lookup(
    claimed: Sequence[OcrRecord],
    results: Sequence[ExtractionResult],
) -> tuple[dict[int, Mapping[str, Any]], int]:
    """Bind extraction results to claimed records by source id.

    Results without a source id, without a payload, or naming a record
    outside the claimed batch are discarded. When the same id appears more
    than once the first result wins. Returns (lookup, discarded_count).
    """
    claimed_ids = {r.id for r in claimed}
    lookup: dict[int, Mapping[str, Any]] = {}
    discarded = 0

    for res in results:
        if res.source_id is None or not res.payload:
            discarded += 1
            continue
        if res.source_id not in claimed_ids:
            logger.warning("Discarding result for unknown ocrdata id %s", res.source_id)
            discarded += 1
            continue
        if res.source_id in lookup:
            logger.warning("Discarding duplicate result for ocrdata id %s", res.source_id)
            discarded += 1
            continue
        lookup[res.source_id] = res.payload

    return lookup, discarded


def _bind_to_record(payload: Mapping[str, Any], record: OcrRecord) -> dict[str, Any]:
    # Ownership fields always come from the claimed record, never the model
    bound = dict(payload)
    bound["ocrdataId"] = record.id
    bound["workspaceId"] = record.workspace_id
    bound["reportImage"] = record.source_image_ref
    return bound


class ExtractionOrchestrator:
    """Runs extraction cycles against a record store."""

    def __init__(
        self,
        *,
        store: RecordStore,
        client: ExtractionClient,
        writer: ReportWriter,
        idle_delay_ms: int = LAB_IDLE_DELAY_MS,
        fast_retry_delay_ms: int = LAB_FAST_RETRY_DELAY_MS,
    ) -> None:
        self._store = store
        self._client = client
        self._writer = writer
        self._idle_delay_ms = idle_delay_ms
        self._fast_retry_delay_ms = fast_retry_delay_ms

    @property
    def idle_delay_ms(self) -> int:
        return self._idle_delay_ms

    @property
    def fast_retry_delay_ms(self) -> int:
        return self._fast_retry_delay_ms

    async def run_cycle(self, batch_size: int) -> CycleResult:
        cycle_id = generate_cycle_id()

        if batch_size <= 0:
            logger.debug("cycle=%s batch_size=%d; nothing to claim", cycle_id, batch_size)
            return CycleResult(cycle_id=cycle_id, state=CycleState.IDLE, delay_ms=self._idle_delay_ms)

        claimed = await self._store.claim(batch_size)
        if not claimed:
            logger.debug("cycle=%s no pending OCR records", cycle_id)
            return CycleResult(cycle_id=cycle_id, state=CycleState.IDLE, delay_ms=self._idle_delay_ms)

        logger.info(
            "cycle=%s state=%s claimed %d OCR records: %s",
            cycle_id,
            CycleState.EXTRACTING.value,
            len(claimed),
            [r.id for r in claimed],
        )

        try:
            results = await self._client.process_batch(claimed)
        except Exception:
            logger.exception(
                "cycle=%s extraction rejected batch of %d; restoring all", cycle_id, len(claimed)
            )
            for rec in claimed:
                await self._store.restore(rec.id)
            return CycleResult(
                cycle_id=cycle_id,
                state=CycleState.ROLLED_BACK,
                delay_ms=self._idle_delay_ms,
                claimed=len(claimed),
                restored=len(claimed),
            )

        lookup, discarded = build_payload_lookup(claimed, results)
        logger.info(
            "cycle=%s state=%s %d/%d records matched (%d results discarded)",
            cycle_id,
            CycleState.RECONCILING.value,
            len(lookup),
            len(claimed),
            discarded,
        )

        committed = restored = vanished = 0
        for rec in claimed:
            payload = lookup.get(rec.id)

            if payload is None:
                logger.warning("cycle=%s no usable result for ocrdata %s; restoring", cycle_id, rec.id)
                await self._store.restore(rec.id)
                restored += 1
                continue

            if not await self._store.exists(rec.id):
                logger.info("cycle=%s ocrdata %s deleted during processing; dropping result", cycle_id, rec.id)
                vanished += 1
                continue

            try:
                report_id = await self._writer.create(_bind_to_record(payload, rec))
            except Exception as e:
                logger.warning(
                    "cycle=%s writing report for ocrdata %s failed (%s: %s); restoring",
                    cycle_id,
                    rec.id,
                    type(e).__name__,
                    e,
                )
                await self._store.restore(rec.id)
                restored += 1
                continue

            await self._store.commit(rec.id)
            committed += 1
            logger.info("cycle=%s ocrdata %s -> lab report %s", cycle_id, rec.id, report_id)

        if restored:
            state, delay_ms = CycleState.FAST, self._fast_retry_delay_ms
        else:
            state, delay_ms = CycleState.IDLE, self._idle_delay_ms

        logger.info(
            "cycle=%s done: committed=%d restored=%d vanished=%d next_delay_ms=%d",
            cycle_id,
            committed,
            restored,
            vanished,
            delay_ms,
        )
        return CycleResult(
            cycle_id=cycle_id,
            state=state,
            delay_ms=delay_ms,
            claimed=len(claimed),
            committed=committed,
            restored=restored,
            vanished=vanished,
            discarded_results=discarded,
        )
