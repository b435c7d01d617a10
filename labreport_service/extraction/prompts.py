"""Prompt template for lab-report extraction."""

from __future__ import annotations

import json
from collections.abc import Sequence

from labreport_service.pipeline.types import OcrRecord

_LAB_REPORT_PROMPT = """\
You are a medical data extraction specialist. Parse OCR output from scanned \
laboratory reports and convert each one into structured JSON.

Each input object has:
- id: the OCR record id
- reportImage: the source image name
- workspaceId: the owning workspace
- ocrPrimitive: raw OCR output (plain text or JSON with text elements and bounding boxes)

For every input object you can read, emit one lab report:
- ocrdataId: copy the input object's id exactly (required, integer)
- workspaceId: copy the input object's workspaceId
- reportImage: copy the input object's reportImage
- patient: patient name (e.g. the value after '姓名：' or 'Name:')
- reportTime: report time (e.g. '报告时间：'), ISO 8601
- doctor: requesting doctor (e.g. '申请医生：'), or null
- hospital: hospital name from the report header, or null
- items: list of test rows, each with
    itemName (test name, keep the original language),
    result (result value as a string),
    unit (or null),
    referenceValue (reference range, or null)

Rules:
1. Never invent an ocrdataId; skip inputs you cannot parse instead of guessing.
2. Create separate items for variants of the same test (e.g. NE% and NE#).
3. Strip OCR artifacts but keep the original wording of test names.
4. Output only a JSON array, with no commentary.

OCR data list:
{records}
"""


def build_lab_report_prompt(records: Sequence[OcrRecord]) -> str:
    payload = [r.to_extraction_input() for r in records]
    return _LAB_REPORT_PROMPT.format(records=json.dumps(payload, ensure_ascii=False, indent=2))
