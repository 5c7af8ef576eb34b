"""
Command-line interface for the CIAG governance triage pipeline.

One subcommand per pipeline step, plus `closure` (intake through runbook)
and `golden-path` (funnel through manifest validation).
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from src.logging_config import configure_logging

from . import steps
from .config import load_config
from .context import RunContext
from .errors import TriageError

logger = logging.getLogger(__name__)


def _context(args: argparse.Namespace) -> RunContext:
    return RunContext.load(Path(args.root), args.config_obj)


def _written(flag: bool) -> str:
    return "written" if flag else "unchanged"


def cmd_scaffold(args: argparse.Namespace) -> int:
    """Create the triage directory for the selected operator."""
    ctx = _context(args)
    written = steps.scaffold(ctx)
    print(f"Triage scaffold ready: {ctx.relative(ctx.triage_dir)} ({len(written)} file(s) written)")
    return 0


def cmd_seed(args: argparse.Namespace) -> int:
    ctx = _context(args)
    print(f"Evidence seeded: {ctx.relative(ctx.evidence_path)} ({_written(steps.seed(ctx))})")
    return 0


def cmd_intake_template(args: argparse.Namespace) -> int:
    ctx = _context(args)
    wrote = steps.intake_template(ctx)
    print(f"Intake template: {ctx.relative(ctx.default_intake_path)} ({_written(wrote)})")
    return 0


def cmd_apply_intake(args: argparse.Namespace) -> int:
    ctx = _context(args)
    wrote = steps.apply_intake(ctx, Path(args.intake) if args.intake else None)
    print(f"Intake applied: {ctx.relative(ctx.evidence_path)} ({_written(wrote)})")
    return 0


def cmd_derive(args: argparse.Namespace) -> int:
    ctx = _context(args)
    print(f"Risk register derived: {ctx.relative(ctx.risk_register_path)} ({_written(steps.derive(ctx))})")
    return 0


def cmd_apply_policy(args: argparse.Namespace) -> int:
    ctx = _context(args)
    changed = steps.apply_policy(ctx)
    print(f"Policy applied: {ctx.relative(ctx.risk_register_path)} ({changed} row(s) changed)")
    return 0


def cmd_recommend(args: argparse.Namespace) -> int:
    ctx = _context(args)
    summary = steps.recommend(ctx)
    print(f"Recommendation generated: {ctx.relative(ctx.recommendation_path)}")
    if args.verbose:
        print(json.dumps(summary, indent=2))
    return 0


def cmd_runbook(args: argparse.Namespace) -> int:
    ctx = _context(args)
    print(f"Pilot runbook generated: {ctx.relative(ctx.runbook_path)} ({_written(steps.runbook(ctx))})")
    return 0


def cmd_closure(args: argparse.Namespace) -> int:
    """Intake through runbook in one go."""
    ctx = _context(args)
    summary = steps.closure(ctx, Path(args.intake) if args.intake else None)
    print(f"Closure complete for {ctx.slug}: "
          f"{summary['mitigated']}/{summary['total_risks']} mitigated, {summary['blockers']} blocker(s)")
    return 0


def cmd_manifest(args: argparse.Namespace) -> int:
    ctx = _context(args)
    built = steps.manifest(
        ctx,
        tier1=Path(args.tier1) if args.tier1 else None,
        intake=Path(args.intake) if args.intake else None,
    )
    print(f"Run manifest written: {ctx.relative(ctx.manifest_path)} ({len(built.artifacts)} artifact(s))")
    return 0


def cmd_validate_manifest(args: argparse.Namespace) -> int:
    ctx = _context(args)
    result = steps.validate(ctx, verify_hashes=args.verify_hashes)
    print(f"Manifest validator PASS: {result['slug']} ({result['count']} artifact(s))")
    return 0


def cmd_prequal(args: argparse.Namespace) -> int:
    """Select an operator from a Tier-1 file and write prequal artifacts."""
    ctx = steps.select_operator(Path(args.root), args.config_obj, Path(args.tier1), args.slug)
    print(f"Operator selected: {ctx.operator.name} ({ctx.slug})")
    return 0


def cmd_sales(args: argparse.Namespace) -> int:
    ctx = _context(args)
    steps.sales(ctx)
    print(f"Sales artifacts: {ctx.relative(ctx.sales_dir)}")
    return 0


def cmd_golden_path(args: argparse.Namespace) -> int:
    result = steps.golden_path(
        Path(args.root),
        args.config_obj,
        tier1=Path(args.tier1),
        slug=args.slug,
        intake=Path(args.intake),
        require_clean=args.require_clean,
    )
    print(f"Golden Path PASS: {result['slug']} (locations={result['locations']}, "
          f"{result['count']} artifact(s))")
    return 0


def main(argv: Optional[list] = None) -> int:
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        prog="ciag-triage",
        description="CIAG governance triage pipeline"
    )

    # Global options
    parser.add_argument(
        "--root",
        default=".",
        help="Working root that artifact paths resolve against"
    )
    parser.add_argument(
        "--config",
        help="Path to triage config (default: config/triage.yaml)"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    scaffold_parser = subparsers.add_parser("scaffold", help="Create triage directory, memo and initial register")
    scaffold_parser.set_defaults(func=cmd_scaffold)

    seed_parser = subparsers.add_parser("seed", help="Seed evidence.json with placeholder items")
    seed_parser.set_defaults(func=cmd_seed)

    template_parser = subparsers.add_parser("intake-template", help="Write a blank intake response")
    template_parser.set_defaults(func=cmd_intake_template)

    intake_parser = subparsers.add_parser("apply-intake", help="Apply an intake response to evidence")
    intake_parser.add_argument("intake", nargs="?", help="Intake response JSON (default: fixtures/intake/<slug>...)")
    intake_parser.set_defaults(func=cmd_apply_intake)

    derive_parser = subparsers.add_parser("derive", help="Derive risk register from evidence")
    derive_parser.set_defaults(func=cmd_derive)

    policy_parser = subparsers.add_parser("apply-policy", help="Apply governance threshold policy")
    policy_parser.set_defaults(func=cmd_apply_policy)

    recommend_parser = subparsers.add_parser("recommend", help="Generate recommendation.md")
    recommend_parser.set_defaults(func=cmd_recommend)

    runbook_parser = subparsers.add_parser("runbook", help="Generate pilot-runbook.md")
    runbook_parser.set_defaults(func=cmd_runbook)

    closure_parser = subparsers.add_parser("closure", help="apply-intake, derive, apply-policy, recommend, runbook")
    closure_parser.add_argument("intake", nargs="?", help="Intake response JSON")
    closure_parser.set_defaults(func=cmd_closure)

    manifest_parser = subparsers.add_parser("manifest", help="Write run manifest with artifact hashes")
    manifest_parser.add_argument("--tier1", help="Tier-1 leads file to record as input")
    manifest_parser.add_argument("--intake", help="Intake response to record as input")
    manifest_parser.set_defaults(func=cmd_manifest)

    validate_parser = subparsers.add_parser("validate-manifest", help="Validate run manifest")
    validate_parser.add_argument("--verify-hashes", action="store_true",
                                 help="Re-hash every artifact and fail on mismatch")
    validate_parser.set_defaults(func=cmd_validate_manifest)

    prequal_parser = subparsers.add_parser("prequal", help="Select operator from Tier-1 leads")
    prequal_parser.add_argument("--tier1", required=True, help="Tier-1 leads JSON")
    prequal_parser.add_argument("--slug", help="Operator slug (default: first lead)")
    prequal_parser.set_defaults(func=cmd_prequal)

    sales_parser = subparsers.add_parser("sales", help="Write sales source, letter and pipeline state")
    sales_parser.set_defaults(func=cmd_sales)

    golden_parser = subparsers.add_parser("golden-path", help="Run funnel through manifest validation")
    golden_parser.add_argument("--tier1", required=True, help="Tier-1 leads JSON")
    golden_parser.add_argument("--slug", required=True, help="Operator slug")
    golden_parser.add_argument("--intake", required=True, help="Intake response JSON")
    golden_parser.add_argument("--require-clean", action="store_true",
                               help="Fail if git working tree is dirty afterwards")
    golden_parser.set_defaults(func=cmd_golden_path)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    try:
        args.config_obj = load_config(Path(args.config) if args.config else None)
        settings = args.config_obj.logging
        level = logging.DEBUG if args.verbose else getattr(logging, settings.level, logging.INFO)
        configure_logging(level=level, log_file=settings.log_file)
        return args.func(args)
    except TriageError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        logger.debug("Unexpected failure in %s", args.command, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
