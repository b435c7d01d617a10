"""Shared test fixtures for the lab-report service test suite."""

from __future__ import annotations

from typing import Any

import pytest


@pytest.fixture
def test_workspace_id() -> int:
    return 1


@pytest.fixture
def other_workspace_id() -> int:
    return 2


@pytest.fixture
def make_payload():
    """Factory for a valid lab-report payload bound to an OCR record id."""

    def _make(record_id: Any, **overrides: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "ocrdataId": record_id,
            "patient": f"Patient {record_id}",
            "reportTime": "2025-03-22T15:52:00.000Z",
            "doctor": "Dr. Li",
            "hospital": "Test Hospital",
            "items": [
                {
                    "itemName": "白细胞计数",
                    "result": "7.65",
                    "unit": "10^9/L",
                    "referenceValue": "3.5-9.5",
                }
            ],
        }
        payload.update(overrides)
        return payload

    return _make
