"""
Error taxonomy for the triage pipeline.

Every step is fail-closed: any of these aborts the step before a write.
"""

from typing import Iterable, Optional


class TriageError(Exception):
    """Base class for all fail-closed pipeline conditions."""
    pass


class MissingInput(TriageError):
    """A required upstream file or record is absent."""

    def __init__(self, label: str, path: Optional[str] = None, hint: str = ""):
        self.label = label
        self.path = path
        message = f"Missing {label}"
        if path:
            message += f": {path}"
        if hint:
            message += f" ({hint})"
        super().__init__(message)


class MissingEvidenceDocument(MissingInput):
    """Evidence must be seeded before it can be updated or derived from."""

    def __init__(self, path: Optional[str] = None):
        super().__init__("evidence.json", path, hint="run seed first")


class InvalidIdentity(TriageError):
    """Operator slug is unresolved, empty or not canonical."""
    pass


InvalidOperatorIdentity = InvalidIdentity


class SchemaViolation(TriageError):
    """A CSV column or JSON key required by the step is missing or malformed."""
    pass


class UnresolvedReference(TriageError):
    """A manifest path or evidence id could not be resolved."""
    pass


class Drift(TriageError):
    """Manifest-recorded artifacts changed or vanished after hashing."""

    def __init__(self, paths: Iterable[str], reason: str = "references missing paths"):
        self.paths = list(paths)
        super().__init__(f"Manifest {reason}: {', '.join(self.paths)}")


class DirtyWorkingTree(TriageError):
    """Working tree has uncommitted changes after a run that must leave it clean."""

    def __init__(self, status_lines: Iterable[str]):
        self.status_lines = list(status_lines)
        super().__init__("Repo dirty after golden path: " + "; ".join(self.status_lines))
