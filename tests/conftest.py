"""Shared fixtures for the triage pipeline tests."""

import json
from pathlib import Path

import pytest

from src.triage.config import TriageConfig
from src.triage.context import OperatorSelection, RunContext

SLUG = "cole-hospitality"


def write_json(path: Path, data) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path


@pytest.fixture
def operator():
    return OperatorSelection(
        name="Cole Hospitality",
        slug=SLUG,
        locations=42,
        confidence_score=8,
        priority="Immediate",
        outreach_status="prequalified",
    )


@pytest.fixture
def workspace(tmp_path, operator):
    """Working root holding only the operator selection record."""
    write_json(tmp_path / ".ago" / "operator_selected.json", operator.to_dict())
    return tmp_path


@pytest.fixture
def ctx(workspace):
    return RunContext.load(workspace, TriageConfig())


@pytest.fixture
def intake_response():
    """Intake with strong PMS/Payments evidence and weak POS evidence."""
    return {
        "operator": {"name": "Cole Hospitality", "slug": SLUG, "locations": 42},
        "systems": {
            "PMS": {"vendor": "Oracle", "product": "OPERA Cloud", "evidenceUrl": "https://example.com/pms",
                    "notes": "Confirmed by operator", "confidence": 9},
            "Payments": {"vendor": "Toast", "product": "Toast Payments", "notes": None, "confidence": 8,
                         "pciScope": "SAQ-D"},
            "POS": {"vendor": "Micros", "product": None, "notes": None, "confidence": 5},
            "HRIS": None,
        },
        "aiInventory": {"blocker_R001_closed": False, "aiEnabledTools": ["ChatGPT"]},
    }


@pytest.fixture
def intake_file(workspace, intake_response):
    return write_json(workspace / "fixtures" / "intake" / f"{SLUG}.intake-response.json", intake_response)


@pytest.fixture
def tier1_file(tmp_path):
    return write_json(tmp_path / "data" / "tier1.json", {
        "leads": [
            {"operator": "Cole Hospitality", "slug": SLUG, "locations": 42,
             "confidence": 8, "priority": "Immediate"},
            {"operator": "Harbor Inns", "locations": "12", "priority": "Later"},
        ]
    })
