"""
Risk register: typed rows over a versioned CSV column schema.

The CSV uses RFC 4180 style quoting (fields containing a comma, quote or
newline are quoted, embedded quotes doubled) and '\\n' line endings, so a
register written here parses and re-serializes byte-for-byte.
"""

from __future__ import annotations

import csv
import io
import json
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Sequence

from .errors import SchemaViolation

SCHEMA_VERSION = "risk-register.v1"

RISK_REGISTER_COLUMNS = (
    "risk_id",
    "title",
    "system_type",
    "category",
    "severity",
    "likelihood",
    "status",
    "owner",
    "evidence_refs",
    "notes",
)

# Columns a step mutates or keys on; checked in this order.
MUTABLE_COLUMNS = ("system_type", "status", "likelihood", "notes", "evidence_refs")

SEVERITIES = ("Critical", "High", "Medium", "Low")
LIKELIHOODS = ("High", "Medium", "Low")
STATUS_OPEN = "Open"
STATUS_MITIGATED = "Mitigated"

EMPTY_REFS = "[]"


def severity_rank(severity: str) -> int:
    """Critical=0, High=1, Medium=2, Low=3, anything else 9."""
    v = (severity or "").strip().lower()
    return {"critical": 0, "high": 1, "medium": 2, "low": 3}.get(v, 9)


def is_mitigated(status: str) -> bool:
    return (status or "").strip().lower() == STATUS_MITIGATED.lower()


@dataclass
class RiskRow:
    risk_id: str = ""
    title: str = ""
    system_type: str = ""
    category: str = ""
    severity: str = ""
    likelihood: str = ""
    status: str = ""
    owner: str = ""
    evidence_refs: str = ""
    notes: str = ""
    extra: Dict[str, str] = field(default_factory=dict)

    def get(self, column: str) -> str:
        if column in RISK_REGISTER_COLUMNS:
            return getattr(self, column)
        return self.extra.get(column, "")

    def set(self, column: str, value: str) -> None:
        if column in RISK_REGISTER_COLUMNS:
            setattr(self, column, value)
        else:
            self.extra[column] = value


@dataclass
class RiskRegister:
    """Header as found on disk plus one typed row per data line."""
    header: List[str] = field(default_factory=lambda: list(RISK_REGISTER_COLUMNS))
    rows: List[RiskRow] = field(default_factory=list)

    def column_names(self) -> List[str]:
        return [h.strip().lower() for h in self.header]

    def has_column(self, column: str) -> bool:
        return column in self.column_names()

    def require_columns(self, columns: Iterable[str]) -> None:
        """
        Raises:
            SchemaViolation: "missing required column: <name>" for the first absent column
        """
        present = set(self.column_names())
        for column in columns:
            if column not in present:
                raise SchemaViolation(f"missing required column: {column}")

    def copy(self) -> "RiskRegister":
        return RiskRegister(
            header=list(self.header),
            rows=[replace(r, extra=dict(r.extra)) for r in self.rows],
        )

    def system_types(self) -> List[str]:
        return [r.system_type.strip() for r in self.rows if r.system_type.strip()]


def parse_risk_register(text: str) -> RiskRegister:
    """
    Parse CSV text into a RiskRegister.

    Columns are matched case-insensitively; columns outside the schema are
    carried in RiskRow.extra. Blank lines are skipped. Missing columns are not
    an error here; steps call require_columns() for what they need.

    Raises:
        SchemaViolation: If the text has no header line, or a row has more
            fields than the header
    """
    records = [r for r in csv.reader(io.StringIO(text)) if r and any(c.strip() for c in r)]
    if not records:
        raise SchemaViolation("risk register is empty (no header)")

    header = records[0]
    names = [h.strip().lower() for h in header]
    rows = []
    for n, record in enumerate(records[1:], start=1):
        if len(record) > len(names):
            raise SchemaViolation(
                f"risk register row {n}: {len(record)} fields, header has {len(names)}"
            )
        row = RiskRow()
        for i, name in enumerate(names):
            row.set(name, record[i] if i < len(record) else "")
        rows.append(row)
    return RiskRegister(header=header, rows=rows)


def serialize_risk_register(register: RiskRegister) -> str:
    """Serialize using the register's own header; never adds columns."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    writer.writerow(register.header)
    names = register.column_names()
    for row in register.rows:
        writer.writerow([row.get(name) for name in names])
    return buf.getvalue()


def new_register(rows: Optional[Sequence[RiskRow]] = None) -> RiskRegister:
    return RiskRegister(header=list(RISK_REGISTER_COLUMNS), rows=list(rows or []))


def parse_evidence_refs(value: str) -> Optional[List[str]]:
    """
    Parse a bracketed evidence_refs cell like ["a","b"].

    Returns:
        List of ids, [] for an empty cell, or None when the format is unknown
    """
    s = (value or "").strip()
    if not s:
        return []
    if not (s.startswith("[") and s.endswith("]")):
        return None
    try:
        parsed = json.loads(s)
    except ValueError:
        return None
    if not isinstance(parsed, list):
        return None
    return [str(x) for x in parsed]


def format_evidence_refs(ids: Sequence[str]) -> str:
    return "[" + ",".join(json.dumps(str(i)) for i in ids) + "]"


def append_evidence_ref(value: str, evidence_id: str) -> str:
    """
    Append an id to an evidence_refs cell if absent.

    Unknown formats are returned unchanged rather than rewritten.
    """
    evidence_id = (evidence_id or "").strip()
    s = (value or "").strip()
    if not evidence_id:
        return s or EMPTY_REFS
    refs = parse_evidence_refs(s)
    if refs is None:
        return value
    if evidence_id in refs:
        return value
    return format_evidence_refs(refs + [evidence_id])
