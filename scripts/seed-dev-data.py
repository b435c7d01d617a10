"""Seed pending OCR records for local development.

Usage:
    python scripts/seed-dev-data.py

Requires:
    - Database running (default: localhost:5432)
    - Migration applied (alembic upgrade head)

The records are picked up by the next extraction cycle (``lab-extractor``).
"""

from __future__ import annotations

import asyncio
import json
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def _ocr_text(lines: list[str]) -> str:
    return json.dumps(
        {
            "totalTextsFound": len(lines),
            "textResults": [{"text": line} for line in lines],
        },
        ensure_ascii=False,
    )


SAMPLE_RECORDS = [
    {
        "source_image_ref": "cbc-2025-03-22.jpg",
        "raw_ocr_payload": _ocr_text(
            [
                "北京大学人民医院检验报告单",
                "姓名：张三  性别：男  年龄：45岁",
                "申请医生：李医生",
                "报告时间：2025-03-22 15:52",
                "白细胞计数 WBC 7.65 10^9/L 3.5-9.5",
                "红细胞计数 RBC 4.82 10^12/L 4.3-5.8",
                "血红蛋白 HGB 148 g/L 130-175",
            ]
        ),
    },
    {
        "source_image_ref": "lipids-2025-04-02.jpg",
        "raw_ocr_payload": _ocr_text(
            [
                "City General Hospital Laboratory",
                "Name: Jane Doe",
                "Requesting physician: Dr. Smith",
                "Report time: 2025-04-02 09:10",
                "Total cholesterol 5.1 mmol/L <5.2",
                "LDL cholesterol 3.2 mmol/L <3.4",
                "HDL cholesterol 1.4 mmol/L >1.0",
            ]
        ),
    },
    {
        "source_image_ref": "glucose-2025-04-10.jpg",
        "raw_ocr_payload": "Name: John Roe\nReport time: 2025-04-10 08:00\nFasting glucose 5.4 mmol/L 3.9-6.1",
    },
]


async def main() -> None:
    from labreport_service.db import close_pool
    from labreport_service.stores.ocr_record_store import PostgresOcrRecordStore

    store = PostgresOcrRecordStore()
    workspace_id = int(os.getenv("WORKSPACE_ID", "1"))

    print(f"Seeding {len(SAMPLE_RECORDS)} OCR records into workspace {workspace_id}...")

    for sample in SAMPLE_RECORDS:
        rec = await store.add(
            source_image_ref=sample["source_image_ref"],
            raw_ocr_payload=sample["raw_ocr_payload"],
            workspace_id=workspace_id,
        )
        print(f"  {rec.source_image_ref}: id={rec.id}")

    await close_pool()
    print("Done!")


if __name__ == "__main__":
    asyncio.run(main())
