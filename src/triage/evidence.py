"""
Evidence store: structured claims about an operator's systems and vendors.

Seeding inserts one placeholder per catalog entry, keyed by a content-derived
id, so re-seeding never duplicates an item and never touches one that intake
has already filled in. Intake application only ever strengthens status.
"""

from __future__ import annotations

import copy
import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .context import OperatorSelection, as_number
from .errors import InvalidIdentity, SchemaViolation
from .schemas import EVIDENCE_SCHEMA, INTAKE_SCHEMA, validate_document

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "evidence.v1"

STATUS_MISSING = "missing"
STATUS_PARTIAL = "partial"
STATUS_OBSERVED = "observed"
STATUS_RANK = {STATUS_MISSING: 0, STATUS_PARTIAL: 1, STATUS_OBSERVED: 2}

# Order and separator are part of the id contract; changing either re-keys
# every evidence document already on disk.
EVIDENCE_ID_FIELDS = ("slug", "category", "systemType", "vendor", "product", "claim")
EVIDENCE_ID_SEPARATOR = "|"

GENERATOR = "src.triage.evidence.seed_evidence"

# (category, systemType, claim, notes, tags)
PLACEHOLDER_CATALOG = [
    ("core_systems", "PMS", "PMS vendor/product not yet evidenced",
     "Fill with authoritative vendor evidence (contract, vendor portal, or operator confirmation).",
     ["tier1", "system"]),
    ("core_systems", "POS", "POS vendor/product not yet evidenced",
     "If hotels: confirm POS presence; if limited-service may be minimal.",
     ["tier1", "system"]),
    ("core_systems", "HRIS", "HRIS vendor/product not yet evidenced",
     "Capture HRIS and payroll adjacency.",
     ["workforce", "system"]),
    ("core_systems", "WFM", "Workforce/WFM vendor not yet evidenced",
     "Scheduling/labor optimization is a primary AI surface in hospitality.",
     ["workforce", "system"]),
    ("core_systems", "Scheduling", "Scheduling tool not yet evidenced",
     "Often overlaps with WFM; confirm toolchain.",
     ["workforce", "system"]),
    ("core_systems", "Payments", "Payment processor not yet evidenced",
     "PCI adjacency; confirm processor + gateway + PMS integration.",
     ["pci", "system"]),
    ("ai_exposure", "Other", "AI-enabled vendor features not yet enumerated",
     "Examples: fraud detection, dynamic pricing, resume screening, forecasting.",
     ["ai", "exposure"]),
    ("compliance_surface", "Payments", "PCI scope/adjacency not yet mapped",
     "Determine card data environment boundaries and service providers.",
     ["pci", "compliance"]),
    ("data_categories", "HRIS", "PII categories processed not yet enumerated",
     "Payroll, SSN, contact info, scheduling data, performance notes.",
     ["pii", "data"]),
]

# Systems offered in the intake response template.
INTAKE_SYSTEMS = ["PMS", "POS", "HRIS", "WFM", "Scheduling", "Payments", "Other"]


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def compute_evidence_id(
    slug: str,
    category: Optional[str],
    system_type: Optional[str],
    vendor: Optional[str],
    product: Optional[str],
    claim: Optional[str],
) -> str:
    """
    Stable content-derived evidence id.

    SHA-1 hex of the EVIDENCE_ID_FIELDS values joined by '|', with None
    rendered as the empty string.
    """
    parts = [slug, category, system_type, vendor, product, claim]
    joined = EVIDENCE_ID_SEPARATOR.join("" if p is None else str(p) for p in parts)
    return hashlib.sha1(joined.encode("utf-8")).hexdigest()


@dataclass
class EvidenceSource:
    url: Optional[str] = None
    ref: Optional[str] = None
    captured_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EvidenceSource":
        data = data or {}
        return cls(url=data.get("url"), ref=data.get("ref"), captured_at=data.get("capturedAt"))

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "ref": self.ref, "capturedAt": self.captured_at}


@dataclass
class EvidenceItem:
    id: str
    category: str
    system_type: str
    vendor: Optional[str] = None
    product: Optional[str] = None
    claim: Optional[str] = None
    evidence_type: Optional[str] = "unknown"
    source: EvidenceSource = field(default_factory=EvidenceSource)
    confidence: float = 0
    status: str = STATUS_MISSING
    notes: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    _KEYS = ("id", "category", "systemType", "vendor", "product", "claim",
             "evidenceType", "source", "confidence", "status", "notes", "tags")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EvidenceItem":
        return cls(
            id=data["id"],
            category=data.get("category", ""),
            system_type=data["systemType"],
            vendor=data.get("vendor"),
            product=data.get("product"),
            claim=data.get("claim"),
            evidence_type=data.get("evidenceType"),
            source=EvidenceSource.from_dict(data.get("source")),
            confidence=data.get("confidence", 0),
            status=data.get("status", STATUS_MISSING),
            notes=data.get("notes"),
            tags=list(data.get("tags") or []),
            extra={k: v for k, v in data.items() if k not in cls._KEYS},
        )

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "id": self.id,
            "category": self.category,
            "systemType": self.system_type,
            "vendor": self.vendor,
            "product": self.product,
            "claim": self.claim,
            "evidenceType": self.evidence_type,
            "source": self.source.to_dict(),
            "confidence": self.confidence,
            "status": self.status,
            "notes": self.notes,
            "tags": list(self.tags),
        }
        d.update(self.extra)
        return d

    @property
    def status_rank(self) -> int:
        return STATUS_RANK.get(self.status, -1)


@dataclass
class EvidenceDocument:
    operator: Dict[str, Any]
    meta: Dict[str, Any] = field(default_factory=dict)
    items: List[EvidenceItem] = field(default_factory=list)
    schema_version: str = SCHEMA_VERSION

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EvidenceDocument":
        validate_document(data, EVIDENCE_SCHEMA, label="evidence.json")
        return cls(
            schema_version=data["schemaVersion"],
            operator=dict(data["operator"]),
            meta=copy.deepcopy(data.get("meta") or {}),
            items=[EvidenceItem.from_dict(it) for it in data["items"]],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schemaVersion": self.schema_version,
            "operator": dict(self.operator),
            "meta": copy.deepcopy(self.meta),
            "items": [it.to_dict() for it in self.items],
        }

    @property
    def slug(self) -> str:
        return str(self.operator.get("slug", ""))

    def ids(self) -> List[str]:
        return [it.id for it in self.items]

    def items_for(self, system_type: str) -> List[EvidenceItem]:
        return [it for it in self.items if it.system_type == system_type]

    def system_types(self) -> List[str]:
        """Distinct system types in first-seen order."""
        seen: Dict[str, None] = {}
        for it in self.items:
            st = (it.system_type or "").strip()
            if st:
                seen.setdefault(st, None)
        return list(seen)


def _operator_block(operator: OperatorSelection) -> Dict[str, Any]:
    return {
        "name": operator.name,
        "slug": operator.slug,
        "locations": as_number(operator.locations),
    }


def placeholder_items(slug: str, now: str) -> List[EvidenceItem]:
    """One missing-status, zero-confidence item per catalog entry."""
    items = []
    for category, system_type, claim, notes, tags in PLACEHOLDER_CATALOG:
        items.append(EvidenceItem(
            id=compute_evidence_id(slug, category, system_type, None, None, claim),
            category=category,
            system_type=system_type,
            claim=claim,
            evidence_type="unknown",
            source=EvidenceSource(captured_at=now),
            confidence=0,
            status=STATUS_MISSING,
            notes=notes,
            tags=list(tags),
        ))
    return items


def seed_evidence(
    operator: OperatorSelection,
    existing: Optional[EvidenceDocument] = None,
    now: Optional[str] = None,
) -> EvidenceDocument:
    """
    Seed or re-seed the evidence document for an operator.

    Placeholders whose id is already present are left untouched, so intake
    data survives a re-seed. When nothing changes the existing document is
    returned as-is, timestamps included.

    Args:
        operator: The Operator Selection Record
        existing: Evidence document currently on disk, if any
        now: Timestamp for new items and meta.updatedAt

    Raises:
        InvalidIdentity: If existing belongs to a different operator
    """
    if not operator.slug:
        raise InvalidIdentity("Cannot seed evidence without an operator slug")
    if existing is not None and existing.slug != operator.slug:
        raise InvalidIdentity(
            f"evidence.json belongs to operator '{existing.slug}', not '{operator.slug}'"
        )

    now = now or utc_now()
    operator_block = _operator_block(operator)

    if existing is None:
        return EvidenceDocument(
            operator=operator_block,
            meta={
                "createdAt": now,
                "updatedAt": now,
                "provenance": {"generator": GENERATOR},
            },
            items=placeholder_items(operator.slug, now),
        )

    doc = copy.deepcopy(existing)
    known = set(doc.ids())
    added = [it for it in placeholder_items(operator.slug, now) if it.id not in known]
    doc.items.extend(added)

    operator_changed = {k: doc.operator.get(k) for k in operator_block} != operator_block
    doc.operator.update(operator_block)

    if not added and not operator_changed:
        return existing

    doc.meta.setdefault("createdAt", now)
    doc.meta["updatedAt"] = now
    doc.meta.setdefault("provenance", {"generator": GENERATOR})
    logger.info("Seeded %d new evidence item(s) for %s", len(added), operator.slug)
    return doc


def assert_no_regression(previous: Optional[EvidenceDocument], current: EvidenceDocument) -> None:
    """
    Refuse any evidence item whose status weakened or that disappeared.

    Raises:
        SchemaViolation: Naming the first offending item
    """
    if previous is None:
        return
    current_by_id = {it.id: it for it in current.items}
    for before in previous.items:
        after = current_by_id.get(before.id)
        if after is None:
            raise SchemaViolation(f"evidence item {before.id} would be dropped")
        if after.status_rank < before.status_rank:
            raise SchemaViolation(
                f"evidence item {before.id} status would regress: {before.status} -> {after.status}"
            )


# Timestamps refreshed on every intake application; ignored when deciding
# whether the application changed anything.
_INTAKE_STAMPS = ("updatedAt", "intakeAppliedAt")


def _stable_view(document: EvidenceDocument) -> Dict[str, Any]:
    data = document.to_dict()
    for key in _INTAKE_STAMPS:
        data["meta"].pop(key, None)
    for item in data["items"]:
        item["source"].pop("capturedAt", None)
    return data


def apply_intake_response(
    document: EvidenceDocument,
    intake: Dict[str, Any],
    intake_source: str,
    now: Optional[str] = None,
) -> EvidenceDocument:
    """
    Merge an intake response into the evidence document.

    For each system key in intake["systems"], every evidence item with that
    systemType gets the non-null vendor/product/notes/confidence/evidenceUrl
    values, status 'observed' and a fresh source.capturedAt.

    Args:
        document: Seeded evidence document (not mutated)
        intake: Parsed intake response
        intake_source: Where the intake came from, for meta.intakeSource
        now: Timestamp to stamp

    Returns:
        Updated copy of the document

    Raises:
        SchemaViolation: If the intake response fails validation
    """
    validate_document(intake, INTAKE_SCHEMA, label="intake response")
    now = now or utc_now()
    doc = copy.deepcopy(document)

    touched = 0
    unmatched = []
    systems = intake.get("systems") or {}
    for system_type, patch in systems.items():
        if patch is None:
            continue
        items = doc.items_for(system_type)
        if not items:
            unmatched.append(system_type)
            continue
        for it in items:
            if patch.get("vendor") is not None:
                it.vendor = patch["vendor"]
            if patch.get("product") is not None:
                it.product = patch["product"]
            if patch.get("evidenceUrl") is not None:
                it.source.url = patch["evidenceUrl"]
            if patch.get("notes") is not None:
                it.notes = patch["notes"]
            if patch.get("confidence") is not None:
                it.confidence = patch["confidence"]
            it.status = STATUS_OBSERVED
            it.source.captured_at = now
            touched += 1

    if unmatched:
        logger.warning("Intake systems with no evidence items: %s", ", ".join(unmatched))

    payments = systems.get("Payments") or {}
    pci_scope = payments.get("pciScope", payments.get("pci"))

    doc.meta["intakeAppliedAt"] = now
    doc.meta["intakeSource"] = intake_source
    doc.meta["aiInventory"] = intake.get("aiInventory")
    if pci_scope is not None:
        doc.meta["pciScope"] = pci_scope
    doc.meta["updatedAt"] = now

    if _stable_view(doc) == _stable_view(document):
        logger.info("Intake for %s already applied; evidence unchanged", doc.slug)
        return document

    logger.info("Intake applied to %s: %d item(s) touched", doc.slug, touched)
    return doc


def build_intake_template(operator: OperatorSelection, now: Optional[str] = None) -> Dict[str, Any]:
    """Blank intake response for the operator to fill in."""
    def system(**extra: Any) -> Dict[str, Any]:
        block = {"vendor": None, "product": None, "evidenceUrl": None, "notes": None, "confidence": 7}
        block.update(extra)
        return block

    systems: Dict[str, Any] = {name: system() for name in INTAKE_SYSTEMS}
    systems["Payments"] = system(pci={"saq": None, "tokenization": None, "scopeNotes": None})
    systems["Other"] = system(aiEnabledFeatures=[])

    return {
        "operator": {
            "name": operator.name,
            "slug": operator.slug,
            "locations": as_number(operator.locations),
        },
        "capturedAt": now or utc_now(),
        "systems": systems,
        "aiInventory": {
            "blocker_R001_closed": False,
            "aiEnabledTools": [],
            "shadowAI": [],
            "dataClasses": {"PII": [], "PCI": [], "Workforce": [], "Other": []},
            "owner": None,
            "notes": None,
            "confidence": 7,
        },
    }
