"""Validation and persistence for extracted lab reports.

A report and its items are written in one transaction. ``lab_reports`` has a
unique index on ``ocrdata_id``, so writing the same OCR record twice (a
worker that crashed after the write but before committing the record)
returns the existing report instead of creating a duplicate.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from labreport_service.db import transaction
from labreport_service.models import LabReportPayload

logger = logging.getLogger(__name__)


class ReportValidationError(ValueError):
    """Raised when an extracted payload is not a valid lab report."""


def validate_lab_report(payload: Mapping[str, Any]) -> LabReportPayload:
    """Parse a raw payload, raising ReportValidationError on any shape problem."""
    try:
        return LabReportPayload.model_validate(dict(payload))
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ReportValidationError(f"Invalid lab report payload: {problems}") from e


class LabReportWriter:
    """Writes validated lab reports to lab_reports / lab_report_items."""

    async def create(self, payload: Mapping[str, Any]) -> int:
        report = validate_lab_report(payload)

        async with transaction() as conn:
            report_id = await conn.fetchval(
                """
                INSERT INTO lab_reports
                    (patient, report_time, doctor, hospital, report_image,
                     workspace_id, ocrdata_id)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                ON CONFLICT (ocrdata_id) DO NOTHING
                RETURNING id
                """,
                report.patient,
                report.report_time,
                report.doctor,
                report.hospital,
                report.report_image,
                report.workspace_id,
                report.ocrdata_id,
            )

            if report_id is None:
                existing = await conn.fetchval(
                    "SELECT id FROM lab_reports WHERE ocrdata_id = $1",
                    report.ocrdata_id,
                )
                logger.info(
                    "Lab report for ocrdata %s already exists (id=%s); skipping write",
                    report.ocrdata_id,
                    existing,
                )
                return int(existing)

            if report.items:
                await conn.executemany(
                    """
                    INSERT INTO lab_report_items
                        (report_id, position, item_name, result, unit, reference_value)
                    VALUES ($1, $2, $3, $4, $5, $6)
                    """,
                    [
                        (report_id, idx, it.item_name, it.result, it.unit, it.reference_value)
                        for idx, it in enumerate(report.items)
                    ],
                )

        logger.debug(
            "Created lab report %s for ocrdata %s with %d items",
            report_id,
            report.ocrdata_id,
            len(report.items),
        )
        return int(report_id)
