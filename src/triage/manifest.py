"""
Run manifest generation and validation.

The manifest records a SHA256 hash for every pipeline artifact that exists
at build time:

    {
      "slug": "...",
      "generatedAt": "...",
      "artifacts": [{"kind": "...", "path": "...", "sha256": "<hex>"}]
    }

Building never fails on a missing artifact (it is omitted). Validation is
fail-closed: every required kind must be listed and every listed path must
still exist.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .artifacts import compute_file_hash, read_json, write_json_if_changed
from .context import RunContext
from .errors import Drift, InvalidIdentity, SchemaViolation
from .evidence import utc_now
from .schemas import MANIFEST_SCHEMA, validate_document

logger = logging.getLogger(__name__)

REQUIRED_KINDS = (
    "input:tier1",
    "input:intake",
    "reach:prequal",
    "reach:letter",
    "sales:source",
    "sales:outreach_letter",
    "sales:pipeline_state",
    "triage:evidence",
    "triage:risk_register",
    "triage:recommendation",
    "triage:pilot_runbook",
)


@dataclass
class ManifestArtifact:
    kind: str
    path: str
    sha256: str

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind, "path": self.path, "sha256": self.sha256}


@dataclass
class RunManifest:
    """Hash-indexed inventory of one operator's run."""
    slug: str
    generated_at: str = field(default_factory=utc_now)
    artifacts: List[ManifestArtifact] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slug": self.slug,
            "generatedAt": self.generated_at,
            "artifacts": [a.to_dict() for a in self.artifacts],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunManifest":
        validate_document(data, MANIFEST_SCHEMA, label="run manifest")
        return cls(
            slug=data["slug"],
            generated_at=data.get("generatedAt", ""),
            artifacts=[
                ManifestArtifact(kind=a["kind"], path=a["path"], sha256=a["sha256"])
                for a in data["artifacts"]
            ],
        )

    def kinds(self) -> List[str]:
        return [a.kind for a in self.artifacts]


def candidate_artifacts(
    ctx: RunContext,
    tier1: Optional[Path] = None,
    intake: Optional[Path] = None,
) -> List[Tuple[str, Path]]:
    """Ordered (kind, path) candidates; optional inputs only when given."""
    candidates: List[Tuple[str, Path]] = []
    if tier1:
        candidates.append(("input:tier1", ctx.path(str(tier1))))
    if intake:
        candidates.append(("input:intake", ctx.path(str(intake))))
    candidates += [
        ("reach:prequal", ctx.prequal_path),
        ("reach:letter", ctx.letter_path),
        ("sales:source", ctx.sales_source_path),
        ("sales:outreach_letter", ctx.outreach_letter_path),
        ("sales:pipeline_state", ctx.pipeline_state_path),
        ("triage:evidence", ctx.evidence_path),
        ("triage:risk_register", ctx.risk_register_path),
        ("triage:recommendation", ctx.recommendation_path),
        ("triage:pilot_runbook", ctx.runbook_path),
    ]
    return candidates


def build_manifest(
    ctx: RunContext,
    tier1: Optional[Path] = None,
    intake: Optional[Path] = None,
    now: Optional[str] = None,
) -> RunManifest:
    """
    Hash every candidate artifact that currently exists.

    Args:
        ctx: Run context
        tier1: Optional tier1 leads file used as input
        intake: Optional intake response file used as input
        now: generatedAt override

    Returns:
        RunManifest (missing candidates omitted)
    """
    manifest = RunManifest(slug=ctx.slug, generated_at=now or utc_now())
    for kind, path in candidate_artifacts(ctx, tier1, intake):
        if not path.is_file():
            logger.debug("Manifest candidate absent: %s (%s)", kind, path)
            continue
        manifest.artifacts.append(
            ManifestArtifact(kind=kind, path=ctx.relative(path), sha256=compute_file_hash(path))
        )
    logger.info("Manifest for %s: %d artifact(s) hashed", ctx.slug, len(manifest.artifacts))
    return manifest


def write_manifest(ctx: RunContext, manifest: RunManifest) -> bool:
    """Write the manifest; a rebuild with identical hashes keeps the file untouched."""
    return write_json_if_changed(ctx.manifest_path, manifest.to_dict())


def load_manifest(ctx: RunContext) -> RunManifest:
    """
    Raises:
        MissingInput: If the manifest doesn't exist
        SchemaViolation: If it is malformed
        InvalidIdentity: If it belongs to another operator
    """
    manifest = RunManifest.from_dict(
        read_json(ctx.manifest_path, label="run manifest (run manifest first)")
    )
    if manifest.slug != ctx.slug:
        raise InvalidIdentity(
            f"Manifest slug {manifest.slug!r} does not match operator {ctx.slug!r}"
        )
    return manifest


def verify_manifest_hashes(ctx: RunContext, manifest: RunManifest) -> None:
    """
    Re-hash every listed artifact.

    Raises:
        Drift: If any file no longer matches its recorded sha256
    """
    changed = [
        a.path for a in manifest.artifacts
        if ctx.path(a.path).is_file() and compute_file_hash(ctx.path(a.path)) != a.sha256
    ]
    if changed:
        raise Drift(changed, reason="hash mismatch")


def validate_manifest(ctx: RunContext, verify_hashes: bool = False) -> Dict[str, Any]:
    """
    Validate the manifest for ctx.slug.

    Args:
        ctx: Run context
        verify_hashes: Also re-hash each artifact

    Returns:
        {"ok": True, "count": <artifact count>, ...}

    Raises:
        SchemaViolation: If required kinds are missing
        Drift: If a listed path no longer exists (or, with verify_hashes,
            its content changed)
    """
    manifest = load_manifest(ctx)

    present = set(manifest.kinds())
    missing_kinds = [k for k in REQUIRED_KINDS if k not in present]
    if missing_kinds:
        raise SchemaViolation("Manifest missing required kinds: " + ", ".join(missing_kinds))

    missing_paths = [a.path for a in manifest.artifacts if not ctx.path(a.path).exists()]
    if missing_paths:
        raise Drift(missing_paths)

    if verify_hashes:
        verify_manifest_hashes(ctx, manifest)

    result = {
        "ok": True,
        "slug": ctx.slug,
        "manifest": ctx.relative(ctx.manifest_path),
        "count": len(manifest.artifacts),
    }
    logger.info("Manifest validator PASS: %s (%d artifacts)", ctx.slug, result["count"])
    return result
