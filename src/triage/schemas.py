"""
JSON Schema validation for pipeline documents.

Schemas live in config/schemas/<name>.schema.json at the repository root.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

import jsonschema

from .errors import MissingInput, SchemaViolation

SCHEMA_DIR = Path(__file__).resolve().parents[2] / "config" / "schemas"

POLICY_SCHEMA = "governance_policy"
EVIDENCE_SCHEMA = "evidence"
INTAKE_SCHEMA = "intake_response"
OPERATOR_SCHEMA = "operator_selected"
MANIFEST_SCHEMA = "run_manifest"


@lru_cache(maxsize=None)
def load_schema(name: str) -> Dict[str, Any]:
    path = SCHEMA_DIR / f"{name}.schema.json"
    if not path.exists():
        raise MissingInput(
            "JSON schema", str(path), hint="install from a repository checkout: pip install -e ."
        )
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def validate_document(document: Any, name: str, label: str = "") -> None:
    """
    Validate a document against a named schema.

    Args:
        document: Parsed JSON document
        name: Schema name (file stem without .schema.json)
        label: What the document is, for the error message

    Raises:
        SchemaViolation: With the failing JSON path and reason
    """
    schema = load_schema(name)
    try:
        jsonschema.validate(document, schema)
    except jsonschema.ValidationError as e:
        path = ".".join(str(p) for p in e.absolute_path) if e.absolute_path else ""
        where = f" at '{path}'" if path else ""
        what = label or name
        if "is a required property" in e.message:
            prop = e.message.split("'")[1] if "'" in e.message else "unknown"
            raise SchemaViolation(f"{what}: missing required key{where}: {prop}")
        raise SchemaViolation(f"{what}: schema validation failed{where}: {e.message}")
