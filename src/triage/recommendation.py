"""
Recommendation generator.

Pure function of (operator, risk register, evidence): identical inputs give
byte-identical Markdown. The verdict headline is always "Pilot-Safe with
Conditions"; blocking risks only change the qualifying clause.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Dict, List

from .context import OperatorSelection, display_value
from .evidence import STATUS_OBSERVED, EvidenceDocument, EvidenceItem
from .register import RiskRegister, RiskRow, is_mitigated, severity_rank

VERDICT = "Pilot-Safe with Conditions"
VERDICT_BLOCKED = "proceed only after closing blocking risks and confirming remaining system evidence gaps."
VERDICT_CLEAR = "proceed with monitoring and evidence capture plan."

MAX_GAPS_PER_SYSTEM = 6
UNKNOWN_SYSTEM = "Unknown"


def is_blocking(row: RiskRow) -> bool:
    """Open rows that are Critical/High, or anything PCI-categorised."""
    if is_mitigated(row.status):
        return False
    return severity_rank(row.severity) <= 1 or "pci" in (row.category or "").strip().lower()


def _risk_order(row: RiskRow):
    return (severity_rank(row.severity), row.risk_id.strip())


def group_by_system(rows: List[RiskRow]) -> Dict[str, List[RiskRow]]:
    groups: Dict[str, List[RiskRow]] = {}
    for row in rows:
        groups.setdefault(row.system_type.strip() or UNKNOWN_SYSTEM, []).append(row)
    return OrderedDict(sorted(groups.items(), key=lambda kv: (kv[0].lower(), kv[0])))


def evidence_gaps(evidence: EvidenceDocument, system: str) -> List[EvidenceItem]:
    want = system.strip().lower()
    items = [it for it in evidence.items if (it.system_type or "").strip().lower() == want]
    items.sort(key=lambda it: str(it.id))
    return [it for it in items if (it.status or "").strip().lower() != STATUS_OBSERVED]


def format_risk_line(row: RiskRow) -> str:
    parts = [
        f"**{row.risk_id.strip()}**" if row.risk_id.strip() else "**(no id)**",
        row.title.strip() or "(no title)",
        f"sev={row.severity.strip() or '?'}",
        f"lik={row.likelihood.strip() or '?'}",
        f"status={row.status.strip() or '?'}",
    ]
    if row.evidence_refs.strip():
        parts.append(f"evidence={row.evidence_refs.strip()}")
    line = "- " + " | ".join(parts)
    if row.notes.strip():
        line += f"\n  - Notes: {row.notes.strip()}"
    return line


def _next_actions(evidence: EvidenceDocument, system: str) -> List[str]:
    lines = [f"- **{system}**: confirm vendor/product, AI-enabled features, and governance surface."]
    gaps = evidence_gaps(evidence, system)
    if not gaps:
        lines.append("  - Evidence: no open gaps recorded for this system type.")
        return lines

    lines.append(f"  - Evidence gaps ({len(gaps)}):")
    for it in gaps[:MAX_GAPS_PER_SYSTEM]:
        lines.append(f"    - {it.id}: {(it.claim or '').strip() or '(no claim)'}")
    if len(gaps) > MAX_GAPS_PER_SYSTEM:
        lines.append(f"    - (+{len(gaps) - MAX_GAPS_PER_SYSTEM} more)")
    return lines


def summarize(register: RiskRegister) -> Dict[str, int]:
    rows = register.rows
    groups = group_by_system(rows)
    cleared = [s for s, rs in groups.items() if all(is_mitigated(r.status) for r in rs)]
    return {
        "total_risks": len(rows),
        "mitigated": sum(1 for r in rows if is_mitigated(r.status)),
        "open": sum(1 for r in rows if not is_mitigated(r.status)),
        "cleared_systems": len(cleared),
        "open_systems": len(groups) - len(cleared),
        "blockers": sum(1 for r in rows if is_blocking(r)),
    }


def generate_recommendation(
    operator: OperatorSelection,
    register: RiskRegister,
    evidence: EvidenceDocument,
) -> str:
    """
    Render recommendation.md.

    Args:
        operator: Operator Selection Record
        register: Policy-applied risk register
        evidence: Evidence document

    Returns:
        Markdown text ending in a single newline
    """
    rows = register.rows
    open_rows = [r for r in rows if not is_mitigated(r.status)]
    blockers = sorted((r for r in rows if is_blocking(r)), key=_risk_order)

    groups = group_by_system(rows)
    cleared = [s for s, rs in groups.items() if all(is_mitigated(r.status) for r in rs)]
    open_systems = [s for s in groups if s not in cleared]

    lines: List[str] = [
        "# CIAG Governance Triage Recommendation",
        "",
        f"**Operator:** {operator.name} ({operator.slug})",
    ]
    for label, value in (
        ("Locations", operator.locations),
        ("Confidence Score", operator.confidence_score),
        ("Priority", operator.priority),
        ("Outreach Status", operator.outreach_status),
        ("Evidence As Of", evidence.meta.get("updatedAt")),
    ):
        rendered = display_value(value)
        if rendered:
            lines.append(f"**{label}:** {rendered}")

    lines += [
        "",
        "## Executive Summary",
        "",
        f"We ran a governance-first triage for **{operator.name}** to determine pilot readiness "
        "and the minimum viable control set.",
        "",
        f"- **Total risks:** {len(rows)}",
        f"- **Mitigated:** {len(rows) - len(open_rows)}",
        f"- **Open:** {len(open_rows)}",
        f"- **Blocking candidates:** {len(blockers)}",
        "",
        "## Systems cleared by evidence",
        "",
    ]
    lines += [f"- {s}" for s in cleared] or ["- None"]

    lines += ["", "## Outstanding risk areas (open)", ""]
    if open_systems:
        for system in open_systems:
            system_open = sorted((r for r in groups[system] if not is_mitigated(r.status)), key=_risk_order)
            lines += [f"### {system}", ""]
            lines += [format_risk_line(r) for r in system_open]
            lines.append("")
    else:
        lines += ["_No open risk areas._", ""]

    lines += ["## Immediate next actions (30-60 days)", ""]
    if open_systems:
        for i, system in enumerate(open_systems):
            if i:
                lines.append("")
            lines += _next_actions(evidence, system)
    else:
        lines.append("- No actions required.")

    lines += [
        "",
        "## Pilot readiness verdict",
        "",
        f"**{VERDICT}**: {VERDICT_BLOCKED if blockers else VERDICT_CLEAR}",
    ]
    if blockers:
        lines += ["", "### Blocking risks (must address)", ""]
        lines += [format_risk_line(r) for r in blockers]

    return "\n".join(lines) + "\n"
