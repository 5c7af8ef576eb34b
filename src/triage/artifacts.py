"""
Artifact I/O helpers.

Whole document in, whole document out: readers load a complete artifact,
writers replace it atomically and only when the content actually changed.
"""

import hashlib
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from .errors import MissingInput, SchemaViolation

logger = logging.getLogger(__name__)

# Top-level keys that only record when a document was produced.
VOLATILE_KEYS = ("generatedAt",)


def compute_file_hash(file_path: Path) -> str:
    """
    Compute SHA256 hash of a file.

    Args:
        file_path: Path to the file to hash

    Returns:
        Lowercase hex digest
    """
    hasher = hashlib.sha256()
    with open(file_path, 'rb') as f:
        for chunk in iter(lambda: f.read(8192), b''):
            hasher.update(chunk)
    return hasher.hexdigest()


def require_file(path: Path, label: str, hint: str = "") -> Path:
    """Raise MissingInput unless path is an existing file."""
    if not Path(path).is_file():
        raise MissingInput(label, str(path), hint=hint)
    return Path(path)


def read_text(path: Path) -> str:
    """
    Read a text artifact without newline translation.

    Raises:
        SchemaViolation: If the file is not valid UTF-8
    """
    try:
        with open(path, 'r', encoding='utf-8', newline='') as f:
            return f.read()
    except UnicodeDecodeError as e:
        raise SchemaViolation(f"{path} is not valid UTF-8: {e}")


def read_json(path: Path, label: Optional[str] = None) -> Any:
    """
    Read a JSON artifact.

    Raises:
        MissingInput: If the file doesn't exist
        SchemaViolation: If the file is not valid UTF-8 or not valid JSON
    """
    require_file(path, label or Path(path).name)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except UnicodeDecodeError as e:
        raise SchemaViolation(f"{path} is not valid UTF-8: {e}")
    except json.JSONDecodeError as e:
        raise SchemaViolation(f"invalid JSON in {path}: {e}")


def dump_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def write_text_if_changed(path: Path, content: str) -> bool:
    """
    Write content atomically unless the file already holds it.

    Returns:
        True if the file was written
    """
    path = Path(path)
    if path.exists() and path.read_bytes() == content.encode('utf-8'):
        logger.debug("Unchanged: %s", path)
        return False

    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(path.name + '.tmp')
    try:
        with open(temp_path, 'w', encoding='utf-8', newline='') as f:
            f.write(content)
        temp_path.replace(path)
    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise

    logger.info("Wrote %s", path)
    return True


def _strip_keys(data: Any, keys: Iterable[str]) -> Any:
    if not isinstance(data, dict):
        return data
    return {k: v for k, v in data.items() if k not in keys}


def write_json_if_changed(
    path: Path,
    data: Dict[str, Any],
    volatile: Iterable[str] = VOLATILE_KEYS,
) -> bool:
    """
    Write a JSON document unless only its volatile keys differ.

    When the stable content matches the file on disk the existing file is
    kept as-is, including its earlier timestamps.
    """
    path = Path(path)
    volatile = tuple(volatile)
    if path.exists():
        try:
            with open(path, 'r', encoding='utf-8') as f:
                previous = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError):
            previous = None
        if previous is not None and _strip_keys(previous, volatile) == _strip_keys(data, volatile):
            logger.debug("Unchanged (ignoring %s): %s", ", ".join(volatile), path)
            return False

    return write_text_if_changed(path, dump_json(data))
