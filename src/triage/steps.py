"""
Pipeline steps.

Each step reads its predecessor's artifacts from disk, calls the pure
transformation and writes its own artifact only when the content changed.
Steps share nothing in memory; the RunContext says where everything lives.

Order:
    select (tier1) -> sales -> scaffold -> seed -> apply_intake -> derive
    -> apply_policy -> recommend -> runbook -> manifest -> validate
"""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import funnel
from .artifacts import (
    dump_json,
    read_json,
    read_text,
    require_file,
    write_json_if_changed,
    write_text_if_changed,
)
from .config import REPO_ROOT, TriageConfig
from .context import RunContext, as_number, display_value, relative_to_root, resolve
from .derive import derive_risk_register
from .errors import (
    DirtyWorkingTree,
    InvalidIdentity,
    MissingEvidenceDocument,
    TriageError,
    UnresolvedReference,
)
from .evidence import (
    EvidenceDocument,
    apply_intake_response,
    assert_no_regression,
    build_intake_template,
    seed_evidence,
)
from .manifest import RunManifest, build_manifest, validate_manifest, write_manifest
from .policy import apply_policy as apply_threshold_policy
from .policy import load_policy
from .recommendation import generate_recommendation, summarize
from .register import (
    EMPTY_REFS,
    STATUS_OPEN,
    RiskRegister,
    RiskRow,
    new_register,
    parse_risk_register,
    serialize_risk_register,
)
from .runbook import UNKNOWN, generate_runbook, resolve_locations

logger = logging.getLogger(__name__)

LOCATIONS_LINE = re.compile(r"\*\*Locations:\*\*\s*([^\n\r]+)")


# =============================================================================
# Loaders
# =============================================================================

def load_evidence(ctx: RunContext) -> EvidenceDocument:
    """
    Raises:
        MissingEvidenceDocument: If evidence.json has not been seeded
        InvalidIdentity: If it belongs to another operator
    """
    if not ctx.evidence_path.is_file():
        raise MissingEvidenceDocument(ctx.relative(ctx.evidence_path))
    doc = EvidenceDocument.from_dict(read_json(ctx.evidence_path, label="evidence.json"))
    if doc.slug != ctx.slug:
        raise InvalidIdentity(f"evidence.json belongs to operator '{doc.slug}', not '{ctx.slug}'")
    return doc


def load_register(ctx: RunContext) -> RiskRegister:
    require_file(ctx.risk_register_path, "risk-register.csv", hint="run scaffold first")
    return parse_risk_register(read_text(ctx.risk_register_path))


def policy_path(ctx: RunContext) -> Path:
    """Configured policy under the working root, else the copy shipped with the repo."""
    path = ctx.policy_path
    if not path.exists() and not Path(ctx.config.policy_path).is_absolute():
        shipped = REPO_ROOT / ctx.config.policy_path
        if shipped.exists():
            return shipped
    return path


# =============================================================================
# Funnel
# =============================================================================

def select_operator(
    root: Path,
    config: TriageConfig,
    tier1: Path,
    slug: Optional[str] = None,
) -> RunContext:
    """
    Pick a Tier-1 lead and write the selection record plus prequal artifacts.

    Returns:
        RunContext for the selected operator
    """
    root = Path(root)
    tier1_path = resolve(root, str(tier1))
    lead = funnel.choose_lead(funnel.load_tier1_leads(tier1_path), slug)
    operator = funnel.selection_from_lead(lead, relative_to_root(root, tier1_path))
    ctx = RunContext(root=root, operator=operator, config=config)

    write_json_if_changed(ctx.operator_selection_path, operator.to_dict())
    write_json_if_changed(ctx.prequal_path, lead)
    write_text_if_changed(ctx.letter_path, funnel.render_prequal_letter(lead))
    logger.info("Sales funnel prequal complete: %s", ctx.relative(ctx.reach_dir))
    return ctx


def sales(ctx: RunContext, now: Optional[str] = None) -> None:
    """Write out/sales/<slug>/ source, outreach letter and pipeline state."""
    write_json_if_changed(ctx.sales_source_path, funnel.sales_source(ctx.operator, now))
    write_text_if_changed(ctx.outreach_letter_path, funnel.render_outreach_letter(ctx.operator))
    write_json_if_changed(ctx.pipeline_state_path, funnel.pipeline_state(ctx.operator, now))
    logger.info("Sales artifacts ready: %s", ctx.relative(ctx.sales_dir))


# =============================================================================
# Triage
# =============================================================================

def initial_register() -> RiskRegister:
    return new_register([
        RiskRow(
            risk_id="R-001",
            title="Unknown AI usage scope",
            system_type="",
            category="Discovery",
            severity="High",
            likelihood="Medium",
            status=STATUS_OPEN,
            owner="CIAG",
            evidence_refs=EMPTY_REFS,
            notes="",
        )
    ])


def render_memo(ctx: RunContext) -> str:
    op = ctx.operator
    return "\n".join([
        "# CIAG Governance Triage Memo",
        "",
        f"**Operator:** {op.name} ({op.slug})",
        f"**Locations:** {display_value(op.locations, UNKNOWN)}",
        f"**Priority:** {display_value(op.priority, UNKNOWN)}",
        "",
        "## Objective",
        "",
        "Determine pilot readiness and the minimum viable governance control set for the "
        "operator's AI-enabled vendor systems.",
        "",
        "## Artifacts",
        "",
        "- evidence.json: evidence items per system type",
        "- risk-register.csv: risks derived from evidence and policy",
        "- recommendation.md: pilot readiness verdict",
        "- pilot-runbook.md: operational pilot plan",
    ]) + "\n"


def scaffold(ctx: RunContext) -> List[Path]:
    """Create TRG-<slug>/ with memo.md and, if absent, the initial register."""
    written = []
    if write_text_if_changed(ctx.memo_path, render_memo(ctx)):
        written.append(ctx.memo_path)
    if ctx.risk_register_path.exists():
        logger.info("Risk register exists, keeping it: %s", ctx.relative(ctx.risk_register_path))
    elif write_text_if_changed(ctx.risk_register_path, serialize_risk_register(initial_register())):
        written.append(ctx.risk_register_path)
    return written


def seed(ctx: RunContext, now: Optional[str] = None) -> bool:
    existing = load_evidence(ctx) if ctx.evidence_path.exists() else None
    doc = seed_evidence(ctx.operator, existing, now)
    assert_no_regression(existing, doc)
    return write_json_if_changed(ctx.evidence_path, doc.to_dict(), volatile=())


def intake_template(ctx: RunContext, now: Optional[str] = None) -> bool:
    """Write a blank intake response; an existing response is never overwritten."""
    path = ctx.default_intake_path
    if path.exists():
        logger.info("Intake response exists, not overwriting: %s", ctx.relative(path))
        return False
    return write_text_if_changed(path, dump_json(build_intake_template(ctx.operator, now)))


def apply_intake(ctx: RunContext, intake_path: Optional[Path] = None, now: Optional[str] = None) -> bool:
    path = resolve(ctx.root, str(intake_path)) if intake_path else ctx.default_intake_path
    intake = read_json(path, label="intake response")

    intake_slug = ((intake.get("operator") or {}).get("slug") if isinstance(intake, dict) else None)
    if intake_slug and intake_slug != ctx.slug:
        raise InvalidIdentity(f"intake response is for '{intake_slug}', not '{ctx.slug}'")

    evidence = load_evidence(ctx)
    updated = apply_intake_response(evidence, intake, ctx.relative(path), now)
    assert_no_regression(evidence, updated)
    return write_json_if_changed(ctx.evidence_path, updated.to_dict(), volatile=())


def derive(ctx: RunContext) -> bool:
    derived = derive_risk_register(load_evidence(ctx), load_register(ctx))
    return write_text_if_changed(ctx.risk_register_path, serialize_risk_register(derived))


def apply_policy(ctx: RunContext) -> int:
    """Returns the number of rows the policy changed."""
    policy = load_policy(policy_path(ctx))
    updated, changed = apply_threshold_policy(policy, load_evidence(ctx), load_register(ctx))
    write_text_if_changed(ctx.risk_register_path, serialize_risk_register(updated))
    return changed


def recommend(ctx: RunContext) -> Dict[str, int]:
    register = load_register(ctx)
    text = generate_recommendation(ctx.operator, register, load_evidence(ctx))
    write_text_if_changed(ctx.recommendation_path, text)
    return summarize(register)


def runbook(ctx: RunContext) -> bool:
    register = load_register(ctx) if ctx.risk_register_path.is_file() else None
    evidence = load_evidence(ctx) if ctx.evidence_path.is_file() else None
    text = generate_runbook(
        ctx.operator,
        recommendation_exists=ctx.recommendation_path.is_file(),
        risk_register_exists=register is not None,
        locations=resolve_locations(ctx),
        register=register,
        evidence_updated_at=evidence.meta.get("updatedAt") if evidence else None,
    )
    return write_text_if_changed(ctx.runbook_path, text)


def closure(ctx: RunContext, intake_path: Optional[Path] = None, now: Optional[str] = None) -> Dict[str, int]:
    """Apply an intake response and regenerate every downstream triage artifact."""
    apply_intake(ctx, intake_path, now)
    derive(ctx)
    apply_policy(ctx)
    summary = recommend(ctx)
    runbook(ctx)
    logger.info("Closure loop complete for %s", ctx.slug)
    return summary


# =============================================================================
# Manifest and golden path
# =============================================================================

def manifest(
    ctx: RunContext,
    tier1: Optional[Path] = None,
    intake: Optional[Path] = None,
    now: Optional[str] = None,
) -> RunManifest:
    built = build_manifest(ctx, tier1=tier1, intake=intake, now=now)
    write_manifest(ctx, built)
    return built


def validate(ctx: RunContext, verify_hashes: bool = False) -> Dict[str, Any]:
    return validate_manifest(ctx, verify_hashes=verify_hashes)


def assert_runbook_locations(ctx: RunContext) -> Any:
    """
    Raises:
        UnresolvedReference: If the runbook's Locations line is absent or not numeric
    """
    text = read_text(require_file(ctx.runbook_path, "pilot runbook", hint="run runbook first"))
    match = LOCATIONS_LINE.search(text)
    if not match:
        raise UnresolvedReference("Locations line not found in runbook")
    raw = match.group(1).strip()
    n = as_number(raw)
    if n is None:
        raise UnresolvedReference(f"Invalid Locations value (must be numeric): {raw!r}")
    return n


def assert_clean_tree(root: Path) -> None:
    """
    Raises:
        DirtyWorkingTree: If `git status --porcelain` reports anything
        TriageError: If git itself fails
    """
    result = subprocess.run(
        ["git", "status", "--porcelain"],
        capture_output=True,
        text=True,
        cwd=str(root),
    )
    if result.returncode != 0:
        raise TriageError(f"git status failed: {result.stderr.strip()}")
    dirty = [line for line in result.stdout.splitlines() if line.strip()]
    if dirty:
        raise DirtyWorkingTree(dirty)


def golden_path(
    root: Path,
    config: TriageConfig,
    tier1: Path,
    slug: str,
    intake: Path,
    require_clean: bool = False,
    now: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Run the whole funnel and triage chain for one operator, then check it.

    Returns:
        Manifest validation result plus the runbook's numeric locations
    """
    ctx = select_operator(root, config, tier1, slug)
    sales(ctx, now)
    scaffold(ctx)
    seed(ctx, now)
    closure(ctx, intake, now)
    manifest(ctx, tier1=tier1, intake=intake, now=now)

    locations = assert_runbook_locations(ctx)
    result = validate(ctx)
    if require_clean:
        assert_clean_tree(ctx.root)

    result["locations"] = locations
    logger.info("Golden Path PASS: %s (locations=%s)", ctx.slug, locations)
    return result
