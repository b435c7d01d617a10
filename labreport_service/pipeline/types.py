from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class OcrRecord:
    id: int
    source_image_ref: str
    raw_ocr_payload: str  # opaque OCR output (text or JSON)
    workspace_id: int
    claimed_at: datetime | None = None
    created_at: datetime | None = None

    def to_extraction_input(self) -> dict[str, Any]:
        """Fields the extraction service sees; timestamps stay internal."""
        return {
            "id": self.id,
            "reportImage": self.source_image_ref,
            "ocrPrimitive": self.raw_ocr_payload,
            "workspaceId": self.workspace_id,
        }


@dataclass(frozen=True)
class ExtractionResult:
    source_id: int | None  # should equal an OcrRecord.id
    payload: Mapping[str, Any] | None


class CycleState(str, Enum):
    IDLE = "idle"
    EXTRACTING = "extracting"
    ROLLED_BACK = "rolled_back"
    RECONCILING = "reconciling"
    FAST = "fast"


@dataclass(frozen=True)
class CycleResult:
    cycle_id: str
    state: CycleState  # final state: idle|rolled_back|fast
    delay_ms: int
    claimed: int = 0
    committed: int = 0
    restored: int = 0
    vanished: int = 0
    discarded_results: int = 0
