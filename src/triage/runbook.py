"""
Pilot runbook generator.

The runbook is a fixed-structure operational plan. Only the header (operator
metadata) and the scope section (systems cleared / still open in the risk
register) vary between operators.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, List, Optional, Tuple

from .artifacts import read_json
from .context import OperatorSelection, RunContext, as_number, display_value
from .errors import MissingInput
from .recommendation import VERDICT, group_by_system
from .register import RiskRegister, is_mitigated

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"

# Keys tried in order inside each locations source.
PREQUAL_LOCATION_KEYS = ("locations", "reported_locations", "reportedLocations")
PIPELINE_LOCATION_KEYS = ("locations",)

DEFAULT_OPEN_SCOPE = ["POS", "HRIS", "WFM", "Scheduling", "Other AI-enabled vendors"]

GATES = [
    ("Gate 1", "AI inventory complete", "Proceed"),
    ("Gate 2", "Evidence linked to risks", "Proceed"),
    ("Gate 3", "Policy re-applied", "Proceed"),
    ("Gate 4", "Recommendation regenerated", "Exit / Expand"),
]


def _locations_from(path: Path, keys: Tuple[str, ...]) -> Optional[Any]:
    if not path.exists():
        return None
    data = read_json(path, label=path.name)
    if not isinstance(data, dict):
        return None
    for key in keys:
        n = as_number(data.get(key))
        if n is not None:
            return n
    return None


def resolve_locations(ctx: RunContext) -> Optional[Any]:
    """
    Resolve the operator's location count.

    Sources, first numeric value wins:
        1. the Operator Selection Record
        2. out/reach/<slug>/prequal.json
        3. out/sales/<slug>/02_pipeline_state.json

    Returns:
        The number, or None when no source carries one
    """
    n = as_number(ctx.operator.locations)
    if n is not None:
        return n
    for path, keys in (
        (ctx.prequal_path, PREQUAL_LOCATION_KEYS),
        (ctx.pipeline_state_path, PIPELINE_LOCATION_KEYS),
    ):
        n = _locations_from(path, keys)
        if n is not None:
            logger.debug("Locations for %s resolved from %s", ctx.slug, ctx.relative(path))
            return n
    logger.warning("Locations for %s unresolved; rendering '%s'", ctx.slug, UNKNOWN)
    return None


def scope_from_register(register: Optional[RiskRegister]) -> Tuple[List[str], List[str]]:
    """(cleared, open) system types; falls back to the default scope without a register."""
    if register is None or not register.rows:
        return [], list(DEFAULT_OPEN_SCOPE)
    groups = group_by_system(register.rows)
    cleared = [s for s, rows in groups.items() if all(is_mitigated(r.status) for r in rows)]
    still_open = [s for s in groups if s not in cleared]
    return cleared, still_open


def generate_runbook(
    operator: OperatorSelection,
    recommendation_exists: bool,
    risk_register_exists: bool,
    locations: Optional[Any] = None,
    register: Optional[RiskRegister] = None,
    evidence_updated_at: Optional[str] = None,
) -> str:
    """
    Render pilot-runbook.md.

    Args:
        operator: Operator Selection Record
        recommendation_exists: Whether recommendation.md is on disk
        risk_register_exists: Whether risk-register.csv is on disk
        locations: Resolved location count (see resolve_locations)
        register: Risk register used for the scope section
        evidence_updated_at: Evidence meta.updatedAt shown in the header

    Raises:
        MissingInput: If either upstream artifact is absent
    """
    if not recommendation_exists:
        raise MissingInput("recommendation.md", hint="run recommend first")
    if not risk_register_exists:
        raise MissingInput("risk-register.csv", hint="run derive first")

    cleared, still_open = scope_from_register(register)

    lines: List[str] = [
        "# CIAG Pilot Runbook",
        "",
        f"**Operator:** {operator.name} ({operator.slug})  ",
        f"**Locations:** {display_value(locations, UNKNOWN)}  ",
        f"**Priority:** {display_value(operator.priority, UNKNOWN)}  ",
        f"**Outreach Status:** {display_value(operator.outreach_status, UNKNOWN)}  ",
        f"**Evidence As Of:** {display_value(evidence_updated_at, UNKNOWN)}",
        "",
        "---",
        "",
        "## 1. Pilot Objective",
        "",
        "Execute a **governance-observed pilot** to validate AI usage visibility, control readiness, "
        "and evidence capture across core hospitality systems.",
        "",
        "This pilot is classified as:",
        "",
        f"> **{VERDICT}**",
        "",
        "Proceeding is permitted **only with explicit closure of blocking governance items during the pilot window**.",
        "",
        "---",
        "",
        "## 2. Pilot Scope",
        "",
        "### Included Systems (cleared by evidence)",
    ]
    lines += [f"- {s} (cleared)" for s in cleared] or ["- No systems cleared yet"]
    lines += ["", "### Observed / In-Scope"]
    lines += [f"- {s}" for s in still_open] or ["- No open systems"]

    lines += [
        "",
        "---",
        "",
        "## 3. Mandatory Day-0 / Day-14 Actions (Non-Negotiable)",
        "",
        "### R-001: AI Usage Inventory (BLOCKER)",
        "",
        "**Requirement**",
        "Within the first **14 days**, the operator must complete an AI usage inventory covering:",
        "",
        "- AI-enabled vendor features",
        "- Embedded AI in SaaS platforms",
        "- Shadow AI usage (marketing, ops, HR, finance)",
        "- Data classes processed by AI (PII, PCI adjacency, workforce data)",
        "",
        "**Evidence Artifacts Required**",
        "- Vendor list + AI features",
        "- Data category mapping",
        "- Responsible owner per system",
        "",
        "Failure to complete this action **pauses pilot progression**.",
        "",
        "---",
        "",
        "## 4. Evidence Capture Rules",
        "",
        "- All evidence is captured via CIAG artifacts",
        "- No verbal attestations",
        "- No screenshots without provenance",
        "- All updates are timestamped and attributed",
        "",
        "---",
        "",
        "## 5. Governance Gates",
        "",
        "| Gate | Requirement | Outcome |",
        "|------|-------------|---------|",
    ]
    lines += [f"| {gate} | {req} | {outcome} |" for gate, req, outcome in GATES]
    lines += [
        "",
        "---",
        "",
        "## 6. Pilot Exit Criteria",
        "",
        "The pilot is considered **successful** when:",
        "",
        "- All blocking risks are closed or downgraded",
        "- Remaining open risks have owners and timelines",
        "- A post-pilot governance roadmap is generated",
        "",
        "---",
        "",
        "## 7. Commercial Boundary",
        "",
        "This pilot is:",
        "- Non-production",
        "- Governance-observed",
        "- Non-expansive beyond scoped systems",
        "",
        "Any expansion requires **new governance approval**.",
        "",
        "---",
        "",
        "## 8. Deliverables",
        "",
        "- Updated risk register",
        "- Updated recommendation",
        "- Pilot summary memo",
        "- Governance readiness score",
        "",
        "---",
        "",
        "**End of Runbook**",
    ]
    return "\n".join(lines) + "\n"
