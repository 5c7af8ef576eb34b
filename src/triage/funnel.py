"""
Sales funnel artifacts from a local Tier-1 leads file.

Picks one lead, turns it into the Operator Selection Record and renders the
prequalification and outreach artifacts the triage run is audited against.
Nothing here is sent anywhere; letters are local files.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from .artifacts import read_json
from .context import OperatorSelection, as_number, display_value, normalize_slug, require_slug
from .errors import InvalidIdentity, SchemaViolation
from .evidence import utc_now

logger = logging.getLogger(__name__)

PIPELINE_STATUS = "prequalified"
SALES_SOURCE = "ciag_sales_e2e"


def load_tier1_leads(path: Path) -> List[Dict[str, Any]]:
    """
    Load leads from a Tier-1 export: a JSON list or {"leads": [...]}.

    Raises:
        MissingInput: If the file doesn't exist
        SchemaViolation: If it holds no leads
    """
    data = read_json(path, label="tier1 leads")
    leads = data.get("leads") if isinstance(data, dict) else data
    if not isinstance(leads, list) or not leads:
        raise SchemaViolation(f"No leads in tier1: {path}")
    if not all(isinstance(lead, dict) for lead in leads):
        raise SchemaViolation(f"tier1 leads must be JSON objects: {path}")
    return leads


def lead_slug(lead: Dict[str, Any]) -> str:
    return normalize_slug(lead.get("slug") or lead.get("operator") or lead.get("company"))


def lead_name(lead: Dict[str, Any]) -> str:
    return str(lead.get("name") or lead.get("operator") or lead.get("company") or lead_slug(lead))


def lead_locations(lead: Dict[str, Any]) -> Optional[Any]:
    for key in ("locations", "reported_locations", "reportedLocations", "locationCount", "units"):
        n = as_number(lead.get(key))
        if n is not None:
            return n
    return None


def choose_lead(leads: List[Dict[str, Any]], slug: Optional[str] = None) -> Dict[str, Any]:
    """
    Lead whose normalized slug matches, or the first lead when no slug given.

    Raises:
        InvalidIdentity: If no lead matches
    """
    if not slug:
        return leads[0]
    want = normalize_slug(slug)
    for lead in leads:
        if lead_slug(lead) == want:
            return lead
    raise InvalidIdentity(f"Operator not found in tier1: {slug}")


def selection_from_lead(lead: Dict[str, Any], tier1_source: str) -> OperatorSelection:
    """Build the Operator Selection Record for a chosen lead."""
    return OperatorSelection(
        name=lead_name(lead),
        slug=require_slug(lead_slug(lead)),
        locations=lead_locations(lead),
        confidence_score=lead.get("confidenceScore", lead.get("confidence_score", lead.get("confidence"))),
        priority=lead.get("priority"),
        outreach_status=lead.get("outreachStatus", lead.get("outreach_status", PIPELINE_STATUS)),
        provenance={"source": tier1_source},
    )


def render_prequal_letter(lead: Dict[str, Any]) -> str:
    return "\n".join([
        "# CIAG Governance Triage: Pilot Invite",
        "",
        f"Hi {lead_name(lead)},",
        "",
        "We run a governance-first AI compliance triage for multi-location hospitality operators.",
        "",
        f"Reported locations: {display_value(lead_locations(lead), 'N/A')}",
        "",
        "CIAG",
    ]) + "\n"


def render_outreach_letter(operator: OperatorSelection) -> str:
    lines = [
        "# CIAG Outreach Letter (Simulation)",
        "",
        f"**Operator:** {operator.name} ({operator.slug})",
    ]
    locations = display_value(operator.locations)
    if locations:
        lines.append(f"**Locations:** {locations}")
    lines += [
        "",
        "## Purpose",
        "We are running a governance-first AI exposure and compliance triage to determine pilot readiness "
        "and the minimum viable control set for AI-enabled vendor systems.",
        "",
        "## What we need from the operator (pilot-safe, non-production)",
        "- Confirmation of core systems (PMS, POS, Payments, HRIS, WFM, Scheduling)",
        "- Inventory of AI-enabled features and workflows in use (including shadow AI)",
        "- PCI adjacency assumptions and scope confirmation (if applicable)",
        "",
        "## Next step",
        "Complete the CIAG Intake Pack and return the intake response JSON for deterministic processing.",
    ]
    return "\n".join(lines) + "\n"


def sales_source(operator: OperatorSelection, now: Optional[str] = None) -> Dict[str, Any]:
    return {
        "generatedAt": now or utc_now(),
        "slug": operator.slug,
        "source": SALES_SOURCE,
        "operatorSelected": operator.to_dict(),
    }


def pipeline_state(operator: OperatorSelection, now: Optional[str] = None) -> Dict[str, Any]:
    return {
        "generatedAt": now or utc_now(),
        "slug": operator.slug,
        "status": PIPELINE_STATUS,
        "locations": as_number(operator.locations),
        "confidence_score": operator.confidence_score,
        "priority": operator.priority,
        "outreach_status": operator.outreach_status,
    }
