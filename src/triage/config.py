"""
Layout configuration for the triage pipeline.

Loads config/triage.yaml (working directory first, then repo root) and
falls back to the built-in layout when no file is present.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import MissingInput, SchemaViolation

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config/triage.yaml"
REPO_ROOT = Path(__file__).resolve().parents[2]


@dataclass
class LoggingSettings:
    level: str = "INFO"
    log_file: Optional[str] = None


@dataclass
class TriageConfig:
    """Paths are relative to the working root unless absolute."""
    operator_selection: str = ".ago/operator_selected.json"
    triage_root: str = "docs/triage"
    triage_dir_prefix: str = "TRG-"
    manifests_root: str = "out/manifests"
    reach_root: str = "out/reach"
    sales_root: str = "out/sales"
    intake_root: str = "fixtures/intake"
    policy_path: str = "docs/policy/governance_policy_v1.json"
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TriageConfig":
        if not isinstance(data, dict):
            raise SchemaViolation("triage config must be a mapping")

        kwargs: Dict[str, Any] = {}
        for f in fields(cls):
            if f.name == "logging" or f.name not in data:
                continue
            value = data[f.name]
            if not isinstance(value, str) or (not value and f.name != "triage_dir_prefix"):
                raise SchemaViolation(f"triage config: '{f.name}' must be a non-empty string")
            kwargs[f.name] = value

        log_block = data.get("logging") or {}
        if not isinstance(log_block, dict):
            raise SchemaViolation("triage config: 'logging' must be a mapping")
        kwargs["logging"] = LoggingSettings(
            level=str(log_block.get("level", "INFO")).upper(),
            log_file=log_block.get("log_file"),
        )
        return cls(**kwargs)


def _candidate_paths(path: Optional[Path]) -> list:
    if path is not None:
        return [Path(path)]
    return [Path(CONFIG_FILENAME), REPO_ROOT / CONFIG_FILENAME]


def load_config(path: Optional[Path] = None) -> TriageConfig:
    """
    Load the layout config.

    Args:
        path: Explicit config file. When given it must exist.

    Returns:
        TriageConfig with defaults for anything the file leaves out

    Raises:
        SchemaViolation: If the file is not valid YAML or has wrong types
    """
    for candidate in _candidate_paths(path):
        if not os.path.exists(candidate):
            continue
        try:
            with open(candidate, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise SchemaViolation(f"invalid YAML in {candidate}: {e}")
        logger.debug("Loaded triage config from %s", candidate)
        return TriageConfig.from_dict(data)

    if path is not None:
        raise MissingInput("triage config", str(path))

    return TriageConfig()
