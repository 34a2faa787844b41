"""
Operations utilities - CLI tools for maintenance passes over the offer grid.
"""

import argparse
import sys
from pathlib import Path

import dotenv
dotenv.load_dotenv()

# Add repository root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from offer_grid.core import config
from offer_grid.core.errors import BundleCorrectionError
from offer_grid.core.processor import EditEventProcessor
from offer_grid.core.store import get_store
from offer_grid.util.logging import logger


def _build_processor() -> EditEventProcessor:
    return EditEventProcessor(get_store())


def _print_result(result) -> int:
    if result.outcome == "busy":
        print("❌ The grid is busy, try again in a moment")
        return 2
    if not result.success:
        print(f"❌ Failed: {result.error_message}")
        return 1

    print(f"✅ {result.outcome}: {len(result.rows_written)} row(s) written")
    for transition in result.transitions:
        print(f"   Row {transition['row']}: '{transition['from']}' -> '{transition['to']}'")
    for error in result.details.get("bundle_errors", []):
        print(f"   ⚠️  Bundle {error['bundle_id']}: {error['code']} {error['message']}")
    return 0


def recalculate_command(args) -> int:
    """Run a full recalculation pass."""
    print("🔄 Recalculating all rows...")
    return _print_result(_build_processor().recalculate_all(refresh_metadata=args.refresh_metadata))


def repair_command(args) -> int:
    """Run health check, recalculation and metadata rebuild."""
    print("🔄 Repairing grid...")
    return _print_result(_build_processor().repair())


def approve_all_command(args) -> int:
    """Bulk-approve Pending and Revised by AE rows."""
    if not args.force:
        response = input("Approve every pending row? (yes/no): ").strip().lower()
        if response != "yes":
            print("Bulk approval cancelled.")
            return 0
    return _print_result(_build_processor().approve_all_pending(args.approver))


def bundle_errors_command(args) -> int:
    """List every bundle violation."""
    errors = _build_processor().validator.find_all_bundle_errors()
    if not errors:
        print("✅ No bundle errors found")
        return 0
    for error in errors:
        print(f"⚠️  Bundle {error.bundle_id} ({error.code}) rows {error.rows}: {error.message}")
    return 1


def fix_gaps_command(args) -> int:
    """Move a split bundle's members back together."""
    try:
        return _print_result(_build_processor().fix_bundle_gaps(args.bundle_id))
    except BundleCorrectionError as e:
        print(f"❌ {e}")
        return 1


def dissolve_command(args) -> int:
    """Clear a bundle id from every member."""
    try:
        return _print_result(_build_processor().dissolve_bundle(args.bundle_id))
    except BundleCorrectionError as e:
        print(f"❌ {e}")
        return 1


def check_config_command(args) -> int:
    """Validate environment configuration."""
    issues = config.validate_config()
    if not issues:
        print("✅ Configuration OK")
        return 0
    for issue in issues:
        print(f"❌ {issue}")
    return 1


def main(argv=None) -> int:
    """Main CLI entry point for grid operations."""
    parser = argparse.ArgumentParser(
        description="Offer Grid Operations CLI",
        prog="python scripts/grid_ops.py"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    recalc_parser = subparsers.add_parser("recalculate", help="Recalculate every row")
    recalc_parser.add_argument("--refresh-metadata", action="store_true",
                               help="Rebuild the bundle metadata index afterwards")
    recalc_parser.set_defaults(func=recalculate_command)

    repair_parser = subparsers.add_parser("repair", help="Health check, recalculation and index rebuild")
    repair_parser.set_defaults(func=repair_command)

    approve_parser = subparsers.add_parser("approve-all", help="Approve every pending row")
    approve_parser.add_argument("--approver", default=None, help="Approver identity recorded on each row")
    approve_parser.add_argument("--force", action="store_true", help="Skip the confirmation prompt")
    approve_parser.set_defaults(func=approve_all_command)

    bundles_parser = subparsers.add_parser("bundle-errors", help="List bundle violations")
    bundles_parser.set_defaults(func=bundle_errors_command)

    fix_gaps_parser = subparsers.add_parser("fix-gaps", help="Regroup a split bundle under its first member")
    fix_gaps_parser.add_argument("bundle_id", help="Bundle id to regroup")
    fix_gaps_parser.set_defaults(func=fix_gaps_command)

    dissolve_parser = subparsers.add_parser("dissolve", help="Clear a bundle id from all of its rows")
    dissolve_parser.add_argument("bundle_id", help="Bundle id to dissolve")
    dissolve_parser.set_defaults(func=dissolve_command)

    config_parser = subparsers.add_parser("check-config", help="Validate configuration")
    config_parser.set_defaults(func=check_config_command)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    logger.log_operation(f"cli.{args.command}", "started")
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
