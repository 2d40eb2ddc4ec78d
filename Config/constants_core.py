"""
Core ledger constants shared across all modules.

These define fundamental allocation behavior and rarely change.
Changes to these values affect every allocation run and every verification.
"""
from decimal import Decimal

# ============================================================================
# Precision & Tolerances
# ============================================================================

LITERS_PLACES = 3
"""Liters are stored with 3 fractional digits"""

MONEY_PLACES = 2
"""Totals and allocated values are stored with 2 fractional digits"""

PRICE_PLACES = 6
"""Per-liter prices are stored with 6 fractional digits"""

VOLUME_TOLERANCE = Decimal('0.001')
"""Quantity comparisons (liters) treat differences up to 0.001 as equal"""

MONEY_TOLERANCE = Decimal('0.01')
"""Per-allocation value check used by the consistency verifier"""

VALUE_DRIFT_TOLERANCE = Decimal('0.10')
"""Per-allocation value check used by the exception detector"""

# ============================================================================
# Integrity Scoring
# ============================================================================

INTEGRITY_ISSUE_PENALTY = Decimal('5')
"""Points deducted from the integrity score per balance issue"""

INTEGRITY_INCONSISTENCY_PENALTY = Decimal('0.1')
"""Points deducted per allocation with a value inconsistency"""

INTEGRITY_GRADES = (
    (Decimal('98'), 'Excellent'),
    (Decimal('95'), 'Good'),
    (Decimal('90'), 'Fair'),
)
"""Lower bound → grade label; anything below the last bound is 'Poor'"""

# ============================================================================
# Units
# ============================================================================

LITERS_PER_CUBIC_METER = Decimal('1000')
"""Density is expressed as tons per 1000 liters"""

MONTH_KEY_FORMAT = '%Y-%m'
