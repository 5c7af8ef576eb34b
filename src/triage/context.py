"""
Operator identity and the explicit run context.

The operator being processed is carried as a RunContext value through every
step instead of being re-read from a well-known file inside each step.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .artifacts import read_json
from .config import TriageConfig
from .errors import InvalidIdentity, SchemaViolation
from .schemas import OPERATOR_SCHEMA, validate_document

SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


def normalize_slug(value: Any) -> str:
    """Lowercase, trim and hyphenate whitespace."""
    if value is None:
        return ""
    return re.sub(r"\s+", "-", str(value).strip().lower())


def require_slug(value: Any) -> str:
    """
    Normalize a slug and reject anything that is not a canonical identity.

    Raises:
        InvalidIdentity: If the slug is empty or not path-safe
    """
    slug = normalize_slug(value)
    if not slug:
        raise InvalidIdentity("Operator slug missing (expected 'slug' or 'operator_slug')")
    if not SLUG_PATTERN.match(slug):
        raise InvalidIdentity(f"Operator slug is not canonical: {value!r}")
    return slug


def as_number(value: Any) -> Optional[float]:
    """Return value as a finite number, or None. Booleans are not numbers."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        if not math.isfinite(parsed):
            return None
        return int(parsed) if parsed.is_integer() else parsed
    return None


def display_value(value: Any, default: str = "") -> str:
    """Render operator metadata for documents; never emits 'None' or 'null'."""
    if value is None or isinstance(value, (dict, list)):
        return default
    number = as_number(value) if not isinstance(value, str) else None
    if number is not None:
        return str(int(number)) if float(number).is_integer() else str(number)
    text = str(value).strip()
    if text.lower() in ("", "none", "null", "undefined"):
        return default
    return text


def _first(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


@dataclass(frozen=True)
class OperatorSelection:
    """Subject of a pipeline run. Read-only for every core component."""
    name: str
    slug: str
    locations: Any = None
    confidence_score: Any = None
    priority: Any = None
    outreach_status: Any = None
    provenance: Any = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OperatorSelection":
        if not isinstance(data, dict):
            raise SchemaViolation("operator selection must be a JSON object")
        validate_document(data, OPERATOR_SCHEMA, label="operator selection")

        slug = require_slug(_first(data, "slug", "operator_slug"))
        name = _first(data, "name", "operator_name") or slug
        return cls(
            name=str(name),
            slug=slug,
            locations=data.get("locations"),
            confidence_score=_first(data, "confidenceScore", "confidence_score"),
            priority=data.get("priority"),
            outreach_status=_first(data, "outreachStatus", "outreach_status"),
            provenance=data.get("provenance"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "slug": self.slug,
            "locations": self.locations,
            "confidenceScore": self.confidence_score,
            "priority": self.priority,
            "outreachStatus": self.outreach_status,
            "provenance": self.provenance,
        }


def load_operator_selection(path: Path) -> OperatorSelection:
    """
    Load the Operator Selection Record.

    Raises:
        MissingInput: If the record doesn't exist
        InvalidIdentity: If it carries no usable slug
    """
    return OperatorSelection.from_dict(
        read_json(path, label="operator selection (run selection first)")
    )


@dataclass
class RunContext:
    """Everything a step needs to locate its inputs and outputs."""
    root: Path
    operator: OperatorSelection
    config: TriageConfig = field(default_factory=TriageConfig)

    @classmethod
    def load(cls, root: Path, config: Optional[TriageConfig] = None) -> "RunContext":
        config = config or TriageConfig()
        root = Path(root)
        operator = load_operator_selection(resolve(root, config.operator_selection))
        return cls(root=root, operator=operator, config=config)

    @property
    def slug(self) -> str:
        return self.operator.slug

    def path(self, relative: str) -> Path:
        return resolve(self.root, relative)

    def relative(self, path: Path) -> str:
        return relative_to_root(self.root, path)

    # Triage artifacts
    @property
    def triage_dir(self) -> Path:
        return self.path(self.config.triage_root) / f"{self.config.triage_dir_prefix}{self.slug}"

    @property
    def memo_path(self) -> Path:
        return self.triage_dir / "memo.md"

    @property
    def evidence_path(self) -> Path:
        return self.triage_dir / "evidence.json"

    @property
    def risk_register_path(self) -> Path:
        return self.triage_dir / "risk-register.csv"

    @property
    def recommendation_path(self) -> Path:
        return self.triage_dir / "recommendation.md"

    @property
    def runbook_path(self) -> Path:
        return self.triage_dir / "pilot-runbook.md"

    # Funnel artifacts
    @property
    def reach_dir(self) -> Path:
        return self.path(self.config.reach_root) / self.slug

    @property
    def prequal_path(self) -> Path:
        return self.reach_dir / "prequal.json"

    @property
    def letter_path(self) -> Path:
        return self.reach_dir / "letter.md"

    @property
    def sales_dir(self) -> Path:
        return self.path(self.config.sales_root) / self.slug

    @property
    def sales_source_path(self) -> Path:
        return self.sales_dir / "00_source.json"

    @property
    def outreach_letter_path(self) -> Path:
        return self.sales_dir / "01_outreach_letter.md"

    @property
    def pipeline_state_path(self) -> Path:
        return self.sales_dir / "02_pipeline_state.json"

    # Inputs and outputs outside the operator directories
    @property
    def operator_selection_path(self) -> Path:
        return self.path(self.config.operator_selection)

    @property
    def policy_path(self) -> Path:
        return self.path(self.config.policy_path)

    @property
    def default_intake_path(self) -> Path:
        return self.path(self.config.intake_root) / f"{self.slug}.intake-response.json"

    @property
    def manifest_path(self) -> Path:
        return self.path(self.config.manifests_root) / f"{self.slug}.run.json"


def resolve(root: Path, relative: str) -> Path:
    p = Path(relative)
    return p if p.is_absolute() else Path(root) / p


def relative_to_root(root: Path, path: Path) -> str:
    """Root-relative posix path when inside the root, else absolute."""
    path = Path(path)
    absolute = path if path.is_absolute() else Path(root) / path
    try:
        return absolute.resolve().relative_to(Path(root).resolve()).as_posix()
    except ValueError:
        return str(absolute)
