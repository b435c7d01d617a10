"""Claim / commit / restore operations on the ocr_data table.

A record is pending while ``claimed_at IS NULL``, claimed while it is set,
and absent once its row is deleted. ``claim`` is the only operation that
coordinates concurrent workers: it selects and marks rows in one statement
with ``FOR UPDATE SKIP LOCKED`` so two claims can never return the same row.

Infrastructure errors (asyncpg / OSError) propagate to the caller.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import Any

from labreport_service.db import connection
from labreport_service.pipeline.types import OcrRecord

logger = logging.getLogger(__name__)

_RECORD_COLUMNS = "id, report_image, ocr_primitive, workspace_id, claimed_at, created_at"


def _row_to_record(row: Any) -> OcrRecord:
    return OcrRecord(
        id=int(row["id"]),
        source_image_ref=row["report_image"],
        raw_ocr_payload=row["ocr_primitive"],
        workspace_id=int(row["workspace_id"]),
        claimed_at=row["claimed_at"],
        created_at=row["created_at"],
    )


def _claim_order(record: OcrRecord) -> tuple[datetime, int]:
    return (record.created_at or datetime.min.replace(tzinfo=UTC), record.id)


class PostgresOcrRecordStore:
    """Record store backed by the ocr_data table."""

    async def claim(self, max_count: int) -> list[OcrRecord]:
        """Atomically claim up to ``max_count`` pending records, oldest first."""
        if max_count <= 0:
            return []

        async with connection() as conn:
            rows = await conn.fetch(
                """
                WITH picked AS (
                    SELECT id
                    FROM ocr_data
                    WHERE claimed_at IS NULL
                    ORDER BY created_at, id
                    LIMIT $1
                    FOR UPDATE SKIP LOCKED
                )
                UPDATE ocr_data AS o
                SET claimed_at = NOW(), updated_at = NOW()
                FROM picked
                WHERE o.id = picked.id
                RETURNING o.id, o.report_image, o.ocr_primitive, o.workspace_id,
                          o.claimed_at, o.created_at
                """,
                max_count,
            )

        # UPDATE ... RETURNING does not preserve the subquery order
        return sorted((_row_to_record(r) for r in rows), key=_claim_order)

    async def commit(self, record_id: int) -> bool:
        """Permanently remove a claimed record. No-op if already absent."""
        async with connection() as conn:
            tag = await conn.execute(
                "DELETE FROM ocr_data WHERE id = $1 AND claimed_at IS NOT NULL",
                record_id,
            )
        return tag == "DELETE 1"

    async def restore(self, record_id: int) -> bool:
        """Return a claimed record to pending. No-op if it no longer exists."""
        async with connection() as conn:
            tag = await conn.execute(
                """
                UPDATE ocr_data
                SET claimed_at = NULL, updated_at = NOW()
                WHERE id = $1 AND claimed_at IS NOT NULL
                """,
                record_id,
            )
        return tag == "UPDATE 1"

    async def exists(self, record_id: int) -> bool:
        async with connection() as conn:
            found = await conn.fetchval(
                "SELECT EXISTS (SELECT 1 FROM ocr_data WHERE id = $1)",
                record_id,
            )
        return bool(found)

    async def restore_stale(self, older_than_seconds: float) -> list[int]:
        """Release claims left behind by a worker that died mid-cycle."""
        async with connection() as conn:
            rows = await conn.fetch(
                """
                UPDATE ocr_data
                SET claimed_at = NULL, updated_at = NOW()
                WHERE claimed_at IS NOT NULL
                  AND claimed_at < NOW() - make_interval(secs => $1)
                RETURNING id
                """,
                float(older_than_seconds),
            )
        ids = sorted(int(r["id"]) for r in rows)
        if ids:
            logger.warning("Released %d stale claims: %s", len(ids), ids)
        return ids

    async def add(
        self,
        *,
        source_image_ref: str,
        raw_ocr_payload: str,
        workspace_id: int,
    ) -> OcrRecord:
        """Insert a new pending record."""
        async with connection() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO ocr_data (report_image, ocr_primitive, workspace_id)
                VALUES ($1, $2, $3)
                RETURNING {_RECORD_COLUMNS}
                """,
                source_image_ref,
                raw_ocr_payload,
                workspace_id,
            )
        return _row_to_record(row)

    async def delete(self, record_id: int) -> bool:
        """Hard delete regardless of claim state (user-initiated removal)."""
        async with connection() as conn:
            tag = await conn.execute("DELETE FROM ocr_data WHERE id = $1", record_id)
        return tag == "DELETE 1"


class InMemoryOcrRecordStore:
    """Process-local record store; claims are serialized by an asyncio.Lock.

    Used for local runs without a database and as the reference store in
    unit tests. Ids come from a monotonic counter and are never reused.
    """

    def __init__(self) -> None:
        self._records: dict[int, OcrRecord] = {}
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    async def claim(self, max_count: int) -> list[OcrRecord]:
        if max_count <= 0:
            return []
        async with self._lock:
            pending = sorted(
                (r for r in self._records.values() if r.claimed_at is None),
                key=_claim_order,
            )[:max_count]
            now = datetime.now(UTC)
            claimed = []
            for rec in pending:
                updated = replace(rec, claimed_at=now)
                self._records[rec.id] = updated
                claimed.append(updated)
            return claimed

    async def commit(self, record_id: int) -> bool:
        async with self._lock:
            rec = self._records.get(record_id)
            if rec is None or rec.claimed_at is None:
                return False
            del self._records[record_id]
            return True

    async def restore(self, record_id: int) -> bool:
        async with self._lock:
            rec = self._records.get(record_id)
            if rec is None or rec.claimed_at is None:
                return False
            self._records[record_id] = replace(rec, claimed_at=None)
            return True

    async def exists(self, record_id: int) -> bool:
        return record_id in self._records

    async def restore_stale(self, older_than_seconds: float) -> list[int]:
        cutoff = datetime.now(UTC) - timedelta(seconds=older_than_seconds)
        async with self._lock:
            stale = sorted(
                r.id
                for r in self._records.values()
                if r.claimed_at is not None and r.claimed_at < cutoff
            )
            for record_id in stale:
                self._records[record_id] = replace(self._records[record_id], claimed_at=None)
        if stale:
            logger.warning("Released %d stale claims: %s", len(stale), stale)
        return stale

    async def add(
        self,
        *,
        source_image_ref: str,
        raw_ocr_payload: str,
        workspace_id: int,
    ) -> OcrRecord:
        async with self._lock:
            rec = OcrRecord(
                id=next(self._ids),
                source_image_ref=source_image_ref,
                raw_ocr_payload=raw_ocr_payload,
                workspace_id=workspace_id,
                created_at=datetime.now(UTC),
            )
            self._records[rec.id] = rec
            return rec

    async def delete(self, record_id: int) -> bool:
        async with self._lock:
            return self._records.pop(record_id, None) is not None

    def pending_ids(self) -> list[int]:
        return sorted(r.id for r in self._records.values() if r.claimed_at is None)

    def claimed_ids(self) -> list[int]:
        return sorted(r.id for r in self._records.values() if r.claimed_at is not None)
