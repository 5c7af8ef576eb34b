"""
Evidence threshold policy.

A risk row is promoted to the policy's mitigated state when its system type
has evidence with the required status at or above the confidence threshold.
Promotion is one-way: this step never reopens a row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .artifacts import read_json
from .errors import SchemaViolation
from .evidence import STATUS_OBSERVED, EvidenceDocument, EvidenceItem
from .register import MUTABLE_COLUMNS, STATUS_MITIGATED, RiskRegister, append_evidence_ref
from .schemas import POLICY_SCHEMA, validate_document

logger = logging.getLogger(__name__)

DEFAULT_MIN_CONFIDENCE = 7
DEFAULT_NOTES_TAG = "policy=threshold-v1"


@dataclass(frozen=True)
class GovernancePolicy:
    min_confidence: float = DEFAULT_MIN_CONFIDENCE
    required_status: str = STATUS_OBSERVED
    mitigate_status: str = STATUS_MITIGATED
    mitigate_likelihood: str = "Low"
    notes_tag: str = DEFAULT_NOTES_TAG
    id: str = ""
    version: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GovernancePolicy":
        """
        Build a policy from its JSON document.

        threshold.minConfidence is mandatory; everything else has a default.
        """
        validate_document(data, POLICY_SCHEMA, label="governance policy")
        threshold = data["threshold"]
        on_mitigate = (data.get("mapping") or {}).get("onMitigate") or {}
        return cls(
            min_confidence=threshold["minConfidence"],
            required_status=threshold.get("requiredStatus", STATUS_OBSERVED),
            mitigate_status=on_mitigate.get("status", STATUS_MITIGATED),
            mitigate_likelihood=on_mitigate.get("likelihood", "Low"),
            notes_tag=on_mitigate.get("notesTag", DEFAULT_NOTES_TAG),
            id=data.get("id", ""),
            version=data.get("version", ""),
        )


def load_policy(path: Path) -> GovernancePolicy:
    """
    Load the governance policy file.

    Raises:
        MissingInput: If the policy file doesn't exist
        SchemaViolation: If it is malformed or omits the confidence threshold
    """
    policy = GovernancePolicy.from_dict(read_json(path, label="governance policy"))
    logger.debug("Loaded policy %s %s (minConfidence=%s)", policy.id, policy.version, policy.min_confidence)
    return policy


def best_evidence_for(
    policy: GovernancePolicy,
    evidence: EvidenceDocument,
    system_type: str,
) -> Optional[EvidenceItem]:
    """
    Highest-confidence item meeting the policy threshold, or None.

    None is the normal threshold-unmet outcome, not an error.
    """
    st = (system_type or "").strip()
    if not st:
        return None
    candidates = [
        it for it in evidence.items
        if (it.system_type or "").strip() == st
        and (it.status or "").strip() == policy.required_status
        and float(it.confidence or 0) >= policy.min_confidence
    ]
    if not candidates:
        return None
    return sorted(candidates, key=lambda it: -float(it.confidence or 0))[0]


def apply_policy(
    policy: GovernancePolicy,
    evidence: EvidenceDocument,
    register: RiskRegister,
) -> Tuple[RiskRegister, int]:
    """
    Apply the threshold policy to every row of the register.

    Args:
        policy: Loaded governance policy
        evidence: Evidence document
        register: Register to evaluate (not mutated)

    Returns:
        (updated_register, changed_row_count)

    Raises:
        SchemaViolation: If a required column is missing or there are no rows
    """
    register.require_columns(MUTABLE_COLUMNS)
    if not register.rows:
        raise SchemaViolation("risk-register.csv has no rows")

    updated = register.copy()
    changed = 0

    for row in updated.rows:
        ev = best_evidence_for(policy, evidence, row.system_type)
        if ev is None:
            continue

        evidence_id = (ev.id or "").strip()
        next_refs = append_evidence_ref(row.evidence_refs, evidence_id)
        note = f"{policy.notes_tag}; derivedFromEvidence=[{evidence_id}]"
        if note in row.notes:
            next_notes = row.notes
        else:
            prev = row.notes.strip()
            next_notes = f"{prev} | {note}" if prev else note

        before = (row.status, row.likelihood, row.evidence_refs, row.notes)
        row.status = policy.mitigate_status
        row.likelihood = policy.mitigate_likelihood
        row.evidence_refs = next_refs
        row.notes = next_notes
        if (row.status, row.likelihood, row.evidence_refs, row.notes) != before:
            changed += 1

    logger.info("Policy %s applied: %d row(s) updated", policy.id or "threshold", changed)
    return updated, changed
