#!/usr/bin/env python3
"""
Compute FIFO Allocations

Allocates unresolved fuel consumption to purchase lots, or rebuilds/repairs
the allocation ledger.

Usage:
    # Incremental run (only consumption with no allocations yet)
    python -m scripts.compute_allocations

    # Wipe and rebuild every allocation from purchases and consumption
    python -m scripts.compute_allocations --rebuild

    # Remove newest allocations from over-allocated lots
    python -m scripts.compute_allocations --repair
"""

import argparse
import asyncio
import signal
import sys
from datetime import datetime
from pathlib import Path

# Ensure project root is in path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from scripts.ledger_context import init_dependencies, print_banner  # noqa: E402


def _install_cancel_handler(cancel_event: asyncio.Event):
    """First Ctrl+C stops after the current vessel-month group."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except NotImplementedError:
        pass  # Windows event loops have no signal handlers


def _print_shortfalls(shortfalls, limit=20):
    if not shortfalls:
        return
    print(f"\n⚠️  Shortfalls ({len(shortfalls)}):")
    for shortfall in shortfalls[:limit]:
        print(f"  - {shortfall}")
    if len(shortfalls) > limit:
        print(f"  ... and {len(shortfalls) - limit} more")


async def compute_allocations(args):
    """Main computation logic."""
    from fifo_engine import FifoAllocationEngine, PersistenceError, RecoveryOrchestrator

    print_banner("FIFO FUEL ALLOCATION")
    print(f"Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    print("\n🔧 Initializing dependencies...")
    config, logger_manager, precision_utils, db, store = await init_dependencies(
        "DEBUG" if args.verbose else None, args.database_url
    )

    cancel_event = asyncio.Event()
    _install_cancel_handler(cancel_event)
    exit_code = 0

    try:
        if args.rebuild:
            print("\n🔄 Rebuilding allocation ledger from scratch...")
            recovery = RecoveryOrchestrator(store, logger_manager, precision_utils, config)
            result = await recovery.rebuild_from_scratch(cancel_event)
            print_banner("REBUILD RESULTS")
            print(f"{'✅' if result.success else '❌'} {result.message}")
            print(f"  - Lots reset: {result.fixed_lots:,}")
            print(f"  - Allocations removed: {result.removed_allocations:,}")
            print(f"  - Allocations created: {result.created_allocations:,}")
            _print_shortfalls(result.shortfalls)

        elif args.repair:
            print("\n🩹 Repairing over-allocated lots...")
            recovery = RecoveryOrchestrator(store, logger_manager, precision_utils, config)
            result = await recovery.repair_over_allocated_lots()
            print_banner("REPAIR RESULTS")
            print(f"{'✅' if result.success else '❌'} {result.message}")
            for line in result.details:
                print(f"  {line}")

        else:
            print("\n🚀 Allocating unresolved consumption...")
            engine = FifoAllocationEngine(store, logger_manager, precision_utils, config)
            result = await engine.run_allocation(cancel_event)
            print_banner("ALLOCATION RESULTS")
            print(f"{'✅' if result.success else '❌'} {result.message}")
            print(f"  - Batch ID: {result.batch_id}")
            print(f"  - Consumption records processed: {result.processed_consumptions:,}")
            print(f"  - Allocations created: {result.allocations_created:,}")
            print(f"  - Quantity allocated: {result.total_allocated_quantity:,} L")
            print(f"  - Value allocated: ${result.total_allocated_value:,.2f}")
            if result.duration_ms:
                print(f"  - Duration: {result.duration_ms / 1000:.2f}s ({result.duration_ms:,}ms)")
            if result.has_shortfalls:
                print(f"  - Unallocated quantity: {result.total_shortfall_quantity:,} L")
            _print_shortfalls(result.shortfalls)
            if args.verbose:
                print("\nAllocation log:")
                for line in result.details:
                    print(f"  {line}")

        if result.cancelled and args.rebuild:
            print("\n⏹️  Rebuild was cancelled; nothing was saved.")
        elif result.cancelled:
            print("\n⏹️  Run was cancelled; skipped groups remain unallocated.")

        print("\n📋 Next Steps:")
        print("  1. Validate allocations:")
        print("     python -m scripts.validate_allocations --exceptions")
        print("  2. Generate reports:")
        print("     python -m scripts.allocation_reports --summary")

    except PersistenceError as e:
        print(f"\n❌ {e.operation} failed, nothing was saved:")
        print(f"  {e.cause}")
        exit_code = 2
    finally:
        await db.disconnect()

    print(f"\nFinished: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    return exit_code


def main():
    """Parse arguments and run computation."""
    parser = argparse.ArgumentParser(
        description="Allocate fuel consumption to purchase lots (FIFO per vessel)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m scripts.compute_allocations
  python -m scripts.compute_allocations --rebuild
  python -m scripts.compute_allocations --repair
        """
    )

    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        '--rebuild',
        action='store_true',
        help='Delete every allocation, reset lot balances and reallocate all consumption'
    )
    group.add_argument(
        '--repair',
        action='store_true',
        help='Remove the newest allocations from lots allocated beyond their quantity'
    )

    parser.add_argument(
        '--database-url',
        type=str,
        help='Override DATABASE_URL (e.g. sqlite+aiosqlite:///ledger.db)'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Console DEBUG logging and the full per-allocation log'
    )

    args = parser.parse_args()
    sys.exit(asyncio.run(compute_allocations(args)))


if __name__ == "__main__":
    main()
