"""Pydantic schemas: lab-report payload validation and API responses."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# -- Lab report payloads ------------------------------------------------------


class LabReportItemPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, extra="ignore")

    item_name: str = Field(..., alias="itemName", min_length=1, max_length=200)
    result: str = Field(..., min_length=1, max_length=500)
    unit: str | None = Field(None, max_length=50)
    reference_value: str | None = Field(None, alias="referenceValue", max_length=200)

    @field_validator("result", "unit", "reference_value", mode="before")
    @classmethod
    def _numbers_as_text(cls, v: Any) -> Any:
        # Models often emit numeric results ("7.65" vs 7.65)
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


class LabReportPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, extra="ignore")

    ocrdata_id: int | None = Field(None, alias="ocrdataId", gt=0)
    workspace_id: int = Field(..., alias="workspaceId", gt=0)
    patient: str = Field(..., min_length=1, max_length=100)
    report_time: datetime = Field(..., alias="reportTime")
    doctor: str | None = Field(None, max_length=100)
    hospital: str | None = Field(None, max_length=200)
    report_image: str | None = Field(None, alias="reportImage", max_length=500)
    items: list[LabReportItemPayload]

    @field_validator("report_time")
    @classmethod
    def _assume_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v


# -- Health -------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str
    error: str | None = None


# -- Processor ----------------------------------------------------------------


class SchedulerStatusResponse(BaseModel):
    running: bool
    cycle_in_flight: bool
    run_count: int
    started_at: datetime | None = None
    last_run_at: datetime | None = None
    last_delay_ms: int | None = None
    last_error: str | None = None


class CycleResponse(BaseModel):
    cycle_id: str
    state: str
    delay_ms: int
    claimed: int
    committed: int
    restored: int
    vanished: int
    discarded_results: int
