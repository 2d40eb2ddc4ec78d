#!/usr/bin/env python3
"""
FIFO Allocation Reports

Tabulates the allocation ledger with pandas.

Usage:
    # Allocated value per month
    python -m scripts.allocation_reports --summary

    # Per-vessel totals
    python -m scripts.allocation_reports --by-vessel

    # Full ledger for one month, written to CSV
    python -m scripts.allocation_reports --ledger --month 2025-01 --csv ledger_2025_01.csv
"""

import argparse
import asyncio
import sys
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Optional

import pandas as pd

# Ensure project root is in path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from Shared_Utils.precision import PrecisionUtils  # noqa: E402
from fifo_engine.models import LedgerSnapshot, allocated_tons, is_cross_vessel, price_per_liter_usd  # noqa: E402
from scripts.ledger_context import init_dependencies, print_banner  # noqa: E402

LEDGER_COLUMNS = [
    'allocation_id', 'month', 'vessel_id', 'lot_id', 'invoice_reference', 'purchase_date',
    'consumption_id', 'consumption_date', 'allocated_quantity', 'allocated_tons',
    'price_per_liter_usd', 'allocated_value', 'allocated_value_usd', 'lot_balance_after', 'cross_vessel',
]


def _decimal_sum(series: pd.Series) -> Decimal:
    return sum(series, Decimal("0"))


def build_ledger_frame(snapshot: LedgerSnapshot, month: Optional[str] = None,
                       precision_utils: Optional[PrecisionUtils] = None) -> pd.DataFrame:
    """One row per allocation, joined to its lot and consumption record. Decimals are kept as objects."""
    precision = precision_utils or PrecisionUtils()
    lots = {lot.id: lot for lot in snapshot.lots}
    consumptions = {c.id: c for c in snapshot.consumptions}

    rows = []
    for allocation in snapshot.allocations:
        if month is not None and allocation.month != month:
            continue
        lot = lots.get(allocation.lot_id)
        consumption = consumptions.get(allocation.consumption_id)
        rows.append({
            'allocation_id': allocation.id,
            'month': allocation.month,
            'vessel_id': consumption.vessel_id if consumption else None,
            'lot_id': allocation.lot_id,
            'invoice_reference': lot.invoice_reference if lot else '',
            'purchase_date': lot.purchase_date if lot else None,
            'consumption_id': allocation.consumption_id,
            'consumption_date': consumption.consumption_date if consumption else None,
            'allocated_quantity': allocation.allocated_quantity,
            'allocated_tons': allocated_tons(allocation, lot).quantize(Decimal("0.001")) if lot else Decimal("0"),
            'price_per_liter_usd': precision.price(price_per_liter_usd(lot)) if lot else Decimal("0"),
            'allocated_value': allocation.allocated_value,
            'allocated_value_usd': allocation.allocated_value_usd,
            'lot_balance_after': allocation.lot_balance_after,
            'cross_vessel': is_cross_vessel(lot, consumption) if lot and consumption else False,
        })
    return pd.DataFrame(rows, columns=LEDGER_COLUMNS)


def monthly_summary_frame(ledger: pd.DataFrame) -> pd.DataFrame:
    """Allocated liters, USD value and allocation count per month, oldest first."""
    if ledger.empty:
        return pd.DataFrame(columns=['month', 'allocations', 'allocated_quantity', 'allocated_value_usd'])
    grouped = ledger.groupby('month', sort=True)
    return pd.DataFrame({
        'allocations': grouped['allocation_id'].count(),
        'allocated_quantity': grouped['allocated_quantity'].apply(_decimal_sum),
        'allocated_value_usd': grouped['allocated_value_usd'].apply(_decimal_sum),
    }).reset_index()


def vessel_summary_frame(ledger: pd.DataFrame) -> pd.DataFrame:
    """Allocated liters and USD value per vessel with the average cost per liter."""
    if ledger.empty:
        return pd.DataFrame(columns=['vessel_id', 'allocated_quantity', 'allocated_value_usd', 'avg_cost_per_liter'])
    grouped = ledger.groupby('vessel_id', sort=True)
    frame = pd.DataFrame({
        'allocated_quantity': grouped['allocated_quantity'].apply(_decimal_sum),
        'allocated_value_usd': grouped['allocated_value_usd'].apply(_decimal_sum),
    }).reset_index()
    frame['avg_cost_per_liter'] = [
        (value / quantity).quantize(Decimal("0.000001")) if quantity else Decimal("0")
        for quantity, value in zip(frame['allocated_quantity'], frame['allocated_value_usd'])
    ]
    return frame


async def run_reports(args):
    config, logger_manager, precision_utils, db, store = await init_dependencies("WARNING", args.database_url)
    try:
        snapshot = await store.snapshot()
    finally:
        await db.disconnect()

    ledger = build_ledger_frame(snapshot, args.month, precision_utils)

    with pd.option_context('display.max_rows', None, 'display.width', 200):
        if args.summary or args.all:
            print_banner("ALLOCATED VALUE BY MONTH")
            print(monthly_summary_frame(ledger).to_string(index=False))
            print()
        if args.by_vessel or args.all:
            print_banner("ALLOCATIONS BY VESSEL")
            print(vessel_summary_frame(ledger).to_string(index=False))
            print()
        if args.ledger or args.all:
            print_banner(f"ALLOCATION LEDGER{' - ' + args.month if args.month else ''}")
            print(ledger.to_string(index=False) if not ledger.empty else "No allocations found")
            print()

    if args.csv:
        ledger.to_csv(args.csv, index=False)
        print(f"💾 Ledger written to {args.csv} ({len(ledger)} rows)")

    print(f"Finished: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")


def main():
    parser = argparse.ArgumentParser(description="Reports over the FIFO fuel allocation ledger")
    parser.add_argument('--summary', action='store_true', help='Allocated value per month')
    parser.add_argument('--by-vessel', action='store_true', help='Allocated quantity and value per vessel')
    parser.add_argument('--ledger', action='store_true', help='Every allocation row')
    parser.add_argument('--all', action='store_true', help='All reports')
    parser.add_argument('--month', type=str, help='Restrict to one month key (YYYY-MM)')
    parser.add_argument('--csv', type=str, help='Write the ledger rows to this CSV file')
    parser.add_argument('--database-url', type=str, help='Override DATABASE_URL')

    args = parser.parse_args()
    if not any([args.summary, args.by_vessel, args.ledger, args.all, args.csv]):
        args.summary = True

    asyncio.run(run_reports(args))


if __name__ == "__main__":
    main()
