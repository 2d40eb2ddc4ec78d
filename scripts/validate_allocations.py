#!/usr/bin/env python3
"""
Validate FIFO Allocations

Verifies ledger conservation and lists allocation exceptions.

Usage:
    # Verify the whole ledger
    python -m scripts.validate_allocations

    # Verify one quarter and list exceptions
    python -m scripts.validate_allocations --from 2025-01-01 --to 2025-03-31 --exceptions

    # Exit non-zero unless balanced (for cron / CI)
    python -m scripts.validate_allocations --strict
"""

import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

# Ensure project root is in path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from scripts.ledger_context import init_dependencies, parse_day, print_banner  # noqa: E402


async def validate_allocations(args) -> int:
    """Main validation logic. Returns the process exit code."""
    from fifo_engine import ConsistencyVerifier, DateWindow, ExceptionDetector, RecoveryOrchestrator

    print_banner("FIFO LEDGER VALIDATION")
    print(f"Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    window = None
    if args.date_from or args.date_to:
        window = DateWindow(parse_day(args.date_from), parse_day(args.date_to))
        print(f"Window: {window}")

    config, logger_manager, precision_utils, db, store = await init_dependencies(args.log_level, args.database_url)

    try:
        verifier = ConsistencyVerifier(store, logger_manager, config, precision_utils)
        result = await verifier.verify(window)

        print_banner("BALANCE VERIFICATION")
        print(f"{'✅ BALANCED' if result.is_balanced else '❌ UNBALANCED'}")
        print(f"  Integrity score: {result.integrity_score} ({result.grade})")
        print(f"  Purchases:   {result.total_purchase_quantity:>16,.3f} L  ${result.total_purchase_value_usd:,.2f}")
        print(f"  Consumption: {result.total_consumption_quantity:>16,.3f} L")
        print(f"  Allocated:   {result.total_allocated_quantity:>16,.3f} L  ${result.total_allocated_value_usd:,.2f}")
        print(f"  Remaining:   {result.total_remaining_quantity:>16,.3f} L")
        print(f"  Quantity variance:       {result.quantity_variance:,.3f} L")
        print(f"  Value variance:          ${result.value_variance:,.2f}")
        print(f"  Unallocated consumption: {result.unallocated_consumption:,.3f} L")
        if result.issues:
            print(f"\n⚠️  Issues ({len(result.issues)}):")
            for issue in result.issues:
                print(f"  - {issue}")

        findings = []
        if args.exceptions:
            detector = ExceptionDetector(store, logger_manager, config)
            findings = await detector.detect(window)
            print_banner(f"ALLOCATION EXCEPTIONS ({len(findings)})")
            for finding in findings[:args.limit]:
                print(f"  [{finding.severity.value.upper():8}] {finding.finding_type.value}: {finding.description}")
                print(f"             → {finding.recommended_action}")
            if len(findings) > args.limit:
                print(f"  ... and {len(findings) - args.limit} more")

        if not result.is_balanced:
            recovery = RecoveryOrchestrator(store, logger_manager, precision_utils, config)
            print("\n📋 Lot inconsistencies:")
            for line in await recovery.inconsistency_report():
                print(f"  - {line}")
            print("\n  Fix with: python -m scripts.compute_allocations --repair  (or --rebuild)")
    finally:
        await db.disconnect()

    print(f"\nFinished: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    if args.strict and (not result.is_balanced or any(f.is_critical for f in findings)):
        return 1
    return 0


def main():
    """Parse arguments and run validation."""
    parser = argparse.ArgumentParser(
        description="Verify the FIFO fuel ledger",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('--from', dest='date_from', type=str, help='Window start date (inclusive)')
    parser.add_argument('--to', dest='date_to', type=str, help='Window end date (inclusive)')
    parser.add_argument('--exceptions', action='store_true', help='Also list allocation exceptions')
    parser.add_argument('--limit', type=int, default=50, help='Maximum exceptions to print (default: 50)')
    parser.add_argument('--strict', action='store_true',
                        help='Exit 1 when unbalanced or when any critical exception is found')
    parser.add_argument('--database-url', type=str, help='Override DATABASE_URL')
    parser.add_argument('--log-level', type=str, default='WARNING', help='Console log level (default: WARNING)')

    args = parser.parse_args()
    sys.exit(asyncio.run(validate_allocations(args)))


if __name__ == "__main__":
    main()
