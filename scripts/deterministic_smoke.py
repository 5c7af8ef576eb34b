#!/usr/bin/env python3
"""
Deterministic smoke test - verify golden path reproducibility.

Runs the golden path twice against the same working root and compares the
SHA256 of every file it produced. The second run must leave every byte
unchanged, including the run manifest.

Uses the shipped sample inputs:
- fixtures/sourcing/tier1.sample.json
- fixtures/intake/cole-hospitality.intake-response.json

Usage:
    python3 scripts/deterministic_smoke.py

Exit codes:
    0 - Golden path is idempotent (all hashes match)
    1 - Golden path failed or outputs differ between runs
"""

import os
import shutil
import subprocess
import sys
import tempfile
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.triage.artifacts import compute_file_hash  # noqa: E402

SLUG = "cole-hospitality"
TIER1 = Path("fixtures") / "sourcing" / "tier1.sample.json"
INTAKE = Path("fixtures") / "intake" / f"{SLUG}.intake-response.json"


def hash_tree(root: Path) -> dict:
    """Relative path -> sha256 for every file under root."""
    return {
        p.relative_to(root).as_posix(): compute_file_hash(p)
        for p in sorted(root.rglob("*")) if p.is_file()
    }


def run_golden_path(work_root: Path, run_name: str) -> dict:
    print(f"\n[{run_name}] Running golden path for {SLUG}...")
    result = subprocess.run(
        [
            sys.executable, "-m", "src.triage.cli",
            "--root", str(work_root),
            "--config", str(PROJECT_ROOT / "config" / "triage.yaml"),
            "golden-path",
            "--tier1", str(TIER1),
            "--slug", SLUG,
            "--intake", str(INTAKE),
        ],
        capture_output=True,
        text=True,
        cwd=str(PROJECT_ROOT)
    )
    if result.returncode != 0:
        print(f"[{run_name}] Golden path failed: {result.stderr}")
        sys.exit(1)
    print(f"[{run_name}] {result.stdout.strip()}")
    return hash_tree(work_root)


def main():
    print("=" * 60)
    print("Deterministic Smoke Test")
    print("=" * 60)

    temp_base = tempfile.mkdtemp(prefix="triage_smoke_")
    print(f"\nWorking root: {temp_base}")
    work_root = Path(temp_base)

    try:
        for rel in (TIER1, INTAKE):
            dest = work_root / rel
            os.makedirs(dest.parent, exist_ok=True)
            shutil.copyfile(PROJECT_ROOT / rel, dest)

        hashes_run1 = run_golden_path(work_root, "run1")
        hashes_run2 = run_golden_path(work_root, "run2")

        print("\n" + "=" * 60)
        print("Hash Comparison")
        print("=" * 60)

        all_match = set(hashes_run1) == set(hashes_run2)
        for rel in sorted(set(hashes_run1) | set(hashes_run2)):
            hash1 = hashes_run1.get(rel)
            hash2 = hashes_run2.get(rel)
            if hash1 == hash2:
                print(f"  {rel}: MATCH (sha256:{hash1[:16]}...)")
            else:
                print(f"  {rel}: MISMATCH")
                print(f"    Run 1: sha256:{hash1}")
                print(f"    Run 2: sha256:{hash2}")
                all_match = False

        print("\n" + "=" * 60)
        if all_match:
            print(f"PASS: Golden path is idempotent ({len(hashes_run1)} files)")
            print("=" * 60)
            return 0
        print("FAIL: Second run changed outputs")
        print("=" * 60)
        return 1
    finally:
        shutil.rmtree(temp_base, ignore_errors=True)


if __name__ == "__main__":
    sys.exit(main())
