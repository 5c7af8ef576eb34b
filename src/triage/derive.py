"""
Derive the risk register from evidence.

Ensures every evidenced system type has a row, then marks rows whose system
type has observed evidence as mitigated. Rows without qualifying evidence
are left untouched.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .errors import SchemaViolation
from .evidence import STATUS_OBSERVED, EvidenceDocument, EvidenceItem
from .register import (
    EMPTY_REFS,
    MUTABLE_COLUMNS,
    RISK_REGISTER_COLUMNS,
    STATUS_MITIGATED,
    STATUS_OPEN,
    RiskRegister,
    RiskRow,
)

logger = logging.getLogger(__name__)

SEEDED_RISK_PREFIX = "R-SYS-"
DERIVED_MARKER = "derivedFromEvidence"

# Display order for seeded system rows; anything else sorts after, alphabetically.
CORE_SYSTEM_ORDER = ["PMS", "POS", "HRIS", "WFM", "Scheduling", "Payments", "PCI", "PII", "Other"]
HIGH_SEVERITY_SYSTEMS = {"Payments", "PCI", "PII"}
_CORE_INDEX: Dict[str, int] = {t: i for i, t in enumerate(CORE_SYSTEM_ORDER)}

DERIVE_COLUMNS = MUTABLE_COLUMNS + tuple(c for c in RISK_REGISTER_COLUMNS if c not in MUTABLE_COLUMNS)


def seeded_risk_id(system_type: str) -> str:
    return f"{SEEDED_RISK_PREFIX}{system_type.upper()}"


def default_severity(system_type: str) -> str:
    return "High" if system_type in HIGH_SEVERITY_SYSTEMS else "Medium"


def seed_row(system_type: str) -> RiskRow:
    return RiskRow(
        risk_id=seeded_risk_id(system_type),
        title=f"{system_type} governance coverage unknown",
        system_type=system_type,
        category="Discovery",
        severity=default_severity(system_type),
        likelihood="Medium",
        status=STATUS_OPEN,
        owner="CIAG",
        evidence_refs=EMPTY_REFS,
        notes="",
    )


def ordered_system_types(system_types: List[str]) -> List[str]:
    """Core systems in CORE_SYSTEM_ORDER first, then the rest alphabetically."""
    distinct = sorted(set(system_types))
    core = [t for t in CORE_SYSTEM_ORDER if t in distinct]
    return core + [t for t in distinct if t not in CORE_SYSTEM_ORDER]


def best_observed_evidence(evidence: EvidenceDocument, system_type: str) -> Optional[EvidenceItem]:
    """
    Highest-confidence observed item for a system type.

    Ties keep document order, which is stable across runs.
    """
    candidates = [
        it for it in evidence.items
        if it.system_type.strip() == system_type and it.status == STATUS_OBSERVED
    ]
    if not candidates:
        return None
    return sorted(candidates, key=lambda it: -float(it.confidence))[0]


def _row_sort_key(row: RiskRow):
    system = row.system_type.strip()
    return (
        row.risk_id.startswith(SEEDED_RISK_PREFIX),
        _CORE_INDEX.get(system, 999),
        system,
    )


def derive_risk_register(evidence: EvidenceDocument, register: RiskRegister) -> RiskRegister:
    """
    Sync the register's rows against the evidence document.

    Args:
        evidence: Evidence document for the operator
        register: Register currently on disk (not mutated)

    Returns:
        New register with seeded rows added and evidenced rows mitigated

    Raises:
        SchemaViolation: If the register lacks any required column
    """
    register.require_columns(DERIVE_COLUMNS)
    if not evidence.items:
        raise SchemaViolation("evidence.json has no items (seed evidence first)")

    derived = register.copy()
    existing = {t.casefold() for t in derived.system_types()}
    existing_ids = {r.risk_id.strip() for r in derived.rows}

    added = 0
    for system_type in ordered_system_types(evidence.system_types()):
        # System types match case-insensitively; risk ids stay unique.
        if system_type.casefold() in existing or seeded_risk_id(system_type) in existing_ids:
            continue
        derived.rows.append(seed_row(system_type))
        existing.add(system_type.casefold())
        existing_ids.add(seeded_risk_id(system_type))
        added += 1

    derived.rows.sort(key=_row_sort_key)

    marked = 0
    for row in derived.rows:
        system_type = row.system_type.strip()
        if not system_type:
            continue
        best = best_observed_evidence(evidence, system_type)
        if best is None:
            continue

        marker = f"{DERIVED_MARKER}=[{best.id}]"
        changed = False
        if row.status != STATUS_MITIGATED:
            row.status = STATUS_MITIGATED
            changed = True
        if row.likelihood != "Low":
            row.likelihood = "Low"
            changed = True
        if marker not in row.notes:
            notes = row.notes.strip()
            row.notes = f"{notes} | {marker}" if notes else marker
            changed = True
        if changed:
            marked += 1

    logger.info("Risk register derived: %d row(s) seeded, %d row(s) marked from evidence", added, marked)
    return derived
