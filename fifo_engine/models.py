"""
Data models for the FIFO fuel ledger.

Records (purchase lots, consumption, allocations) are frozen dataclasses that
carry only data and explicit id references. Every derived figure is a plain
function at the bottom of this module taking the owning record by value.
"""

import calendar
import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, localcontext
from enum import Enum
from typing import Optional, List, FrozenSet

from Config import constants_core as core

_MONTH_KEY_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

ZERO = Decimal("0")


def _require_decimal(name: str, value) -> Decimal:
    if isinstance(value, float):
        raise ValueError(f"{name} must be Decimal, int or str, not float")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    if not value.is_finite():
        raise ValueError(f"{name} must be finite, got {value}")
    return value


def validate_month_key(value: str) -> str:
    if not isinstance(value, str) or not _MONTH_KEY_RE.match(value):
        raise ValueError(f"Malformed month key {value!r}, expected YYYY-MM")
    return value


# =========================================================================
# RECORDS
# =========================================================================

@dataclass(frozen=True)
class PurchaseLot:
    """
    A single fuel purchase, tracked with its own remaining balance.

    ``remaining_quantity`` defaults to the original quantity and is only ever
    lowered by the allocation engine (or restored by recovery).
    """

    id: int
    vessel_id: int
    purchase_date: date
    quantity_liters: Decimal
    total_value: Decimal
    total_value_usd: Decimal
    remaining_quantity: Optional[Decimal] = None
    supplier_id: Optional[int] = None
    quantity_tons: Decimal = ZERO
    invoice_reference: str = ""
    currency: str = "USD"
    created_at: Optional[datetime] = None

    def __post_init__(self):
        quantity = _require_decimal("quantity_liters", self.quantity_liters)
        if quantity < 0:
            raise ValueError(f"Lot {self.id}: quantity_liters cannot be negative ({quantity})")
        object.__setattr__(self, "quantity_liters", quantity)
        object.__setattr__(self, "total_value", _require_decimal("total_value", self.total_value))
        object.__setattr__(self, "total_value_usd", _require_decimal("total_value_usd", self.total_value_usd))
        tons = _require_decimal("quantity_tons", self.quantity_tons)
        if tons < 0:
            raise ValueError(f"Lot {self.id}: quantity_tons cannot be negative ({tons})")
        object.__setattr__(self, "quantity_tons", tons)
        # Stored remaining may be corrupt (negative); recovery needs to load it as-is
        if self.remaining_quantity is None:
            object.__setattr__(self, "remaining_quantity", quantity)
        else:
            object.__setattr__(self, "remaining_quantity",
                               _require_decimal("remaining_quantity", self.remaining_quantity))

    def __str__(self) -> str:
        return (
            f"PurchaseLot(#{self.id} vessel {self.vessel_id} {self.purchase_date}: "
            f"{self.remaining_quantity}/{self.quantity_liters} L)"
        )


@dataclass(frozen=True)
class ConsumptionRecord:
    """Fuel burned by one vessel on one date. ``month`` defaults to the date's month key."""

    id: int
    vessel_id: int
    consumption_date: date
    consumption_liters: Decimal
    month: Optional[str] = None
    legs_completed: Optional[int] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        liters = _require_decimal("consumption_liters", self.consumption_liters)
        if liters < 0:
            raise ValueError(f"Consumption {self.id}: consumption_liters cannot be negative ({liters})")
        object.__setattr__(self, "consumption_liters", liters)
        if self.month is None:
            object.__setattr__(self, "month", month_key(self.consumption_date))
        else:
            validate_month_key(self.month)
        if self.legs_completed is not None and self.legs_completed < 0:
            raise ValueError(f"Consumption {self.id}: legs_completed cannot be negative")

    def __str__(self) -> str:
        return (
            f"Consumption(#{self.id} vessel {self.vessel_id} {self.consumption_date}: "
            f"{self.consumption_liters} L)"
        )


@dataclass(frozen=True)
class Allocation:
    """
    How much of one lot was matched to one consumption record.

    Append-only: corrections delete and regenerate rows. ``id`` is assigned by
    the record store when the row is persisted.
    """

    lot_id: int
    consumption_id: int
    allocated_quantity: Decimal
    allocated_value: Decimal
    allocated_value_usd: Decimal
    lot_balance_after: Decimal
    month: str
    created_at: Optional[datetime] = None
    id: Optional[int] = None
    batch_id: Optional[uuid.UUID] = None

    def __post_init__(self):
        quantity = _require_decimal("allocated_quantity", self.allocated_quantity)
        if quantity <= 0:
            raise ValueError(f"Allocation quantity must be positive, got {quantity}")
        object.__setattr__(self, "allocated_quantity", quantity)
        object.__setattr__(self, "allocated_value", _require_decimal("allocated_value", self.allocated_value))
        object.__setattr__(self, "allocated_value_usd",
                           _require_decimal("allocated_value_usd", self.allocated_value_usd))
        object.__setattr__(self, "lot_balance_after",
                           _require_decimal("lot_balance_after", self.lot_balance_after))
        validate_month_key(self.month)

    def __str__(self) -> str:
        return (
            f"Allocation(lot {self.lot_id} → consumption {self.consumption_id}: "
            f"{self.allocated_quantity} L, ${self.allocated_value_usd}, balance {self.lot_balance_after})"
        )


# =========================================================================
# QUERY HELPERS
# =========================================================================

@dataclass(frozen=True)
class DateWindow:
    """Inclusive date range; either bound may be open."""

    start: Optional[date] = None
    end: Optional[date] = None

    def __post_init__(self):
        if self.start and self.end and self.start > self.end:
            raise ValueError(f"Window start {self.start} is after end {self.end}")

    def contains(self, day: date) -> bool:
        if self.start and day < self.start:
            return False
        if self.end and day > self.end:
            return False
        return True

    def __str__(self) -> str:
        return f"{self.start or '…'} → {self.end or '…'}"


@dataclass(frozen=True)
class AllocationFilter:
    """
    Selects allocations touching any of the given lots or consumption records.

    ``None`` for both id sets means no id restriction. ``month`` narrows further.
    """

    lot_ids: Optional[FrozenSet[int]] = None
    consumption_ids: Optional[FrozenSet[int]] = None
    month: Optional[str] = None

    def __post_init__(self):
        if self.month is not None:
            validate_month_key(self.month)

    def matches(self, allocation: Allocation) -> bool:
        if self.month is not None and allocation.month != self.month:
            return False
        if self.lot_ids is None and self.consumption_ids is None:
            return True
        return (
            (self.lot_ids is not None and allocation.lot_id in self.lot_ids) or
            (self.consumption_ids is not None and allocation.consumption_id in self.consumption_ids)
        )


@dataclass
class LedgerSnapshot:
    """A consistent copy of every record in a store at one point in time."""

    lots: List[PurchaseLot]
    consumptions: List[ConsumptionRecord]
    allocations: List[Allocation]


# =========================================================================
# RESULTS
# =========================================================================

@dataclass
class Shortfall:
    """Portion of a consumption record no eligible lot could cover."""

    consumption_id: int
    vessel_id: int
    month: str
    consumption_date: date
    required_quantity: Decimal
    allocated_quantity: Decimal
    missing_quantity: Decimal

    def __str__(self) -> str:
        return (
            f"Shortfall(vessel {self.vessel_id} consumption #{self.consumption_id} "
            f"{self.consumption_date}: missing {self.missing_quantity} L of {self.required_quantity} L)"
        )


@dataclass
class AllocationResult:
    """
    Outcome of one allocation run.

    ``allocations`` and ``updated_lots`` hold the rows the run wrote (or would
    have written, when persistence failed).
    """

    success: bool
    message: str = ""
    batch_id: Optional[uuid.UUID] = None

    # Statistics
    processed_consumptions: int = 0
    allocations_created: int = 0
    total_allocated_quantity: Decimal = ZERO
    total_allocated_value: Decimal = ZERO
    groups_processed: int = 0

    shortfalls: List[Shortfall] = field(default_factory=list)
    details: List[str] = field(default_factory=list)
    allocations: List[Allocation] = field(default_factory=list)
    updated_lots: List[PurchaseLot] = field(default_factory=list)

    cancelled: bool = False
    duration_ms: Optional[int] = None
    error_message: Optional[str] = None

    @property
    def has_shortfalls(self) -> bool:
        return len(self.shortfalls) > 0

    @property
    def total_shortfall_quantity(self) -> Decimal:
        return sum((s.missing_quantity for s in self.shortfalls), ZERO)

    def log(self, line: str):
        self.details.append(line)

    def __str__(self) -> str:
        if self.success:
            return (
                f"AllocationResult(✅ {self.allocations_created} allocations, "
                f"{self.total_allocated_quantity} L, ${self.total_allocated_value:,.2f}, "
                f"{len(self.shortfalls)} shortfalls, {self.duration_ms or 0}ms)"
            )
        return f"AllocationResult(❌ FAILED - {self.error_message or self.message})"


@dataclass
class RecoveryResult:
    """Outcome of a full rebuild or a targeted repair."""

    success: bool
    mode: str  # 'rebuild' or 'repair'
    message: str = ""

    fixed_lots: int = 0
    removed_allocations: int = 0
    created_allocations: int = 0
    shortfalls: List[Shortfall] = field(default_factory=list)
    details: List[str] = field(default_factory=list)

    cancelled: bool = False
    duration_ms: Optional[int] = None
    error_message: Optional[str] = None

    @property
    def changed_anything(self) -> bool:
        return self.fixed_lots > 0 or self.removed_allocations > 0 or self.created_allocations > 0

    def log(self, line: str):
        self.details.append(line)

    def __str__(self) -> str:
        status = "✅" if self.success else "❌"
        return (
            f"RecoveryResult({status} {self.mode}: {self.fixed_lots} lots fixed, "
            f"{self.removed_allocations} removed, {self.created_allocations} created)"
        )


@dataclass
class BalanceVerificationResult:
    """
    Global totals recomputed from source records and the allocation ledger.

    ``unallocated_consumption`` is informational; it may just be pending work.
    """

    window: Optional[DateWindow] = None

    total_purchase_quantity: Decimal = ZERO
    total_consumption_quantity: Decimal = ZERO
    total_allocated_quantity: Decimal = ZERO
    total_remaining_quantity: Decimal = ZERO
    total_purchase_value_usd: Decimal = ZERO
    total_allocated_value_usd: Decimal = ZERO

    quantity_variance: Decimal = ZERO
    value_variance: Decimal = ZERO
    unallocated_consumption: Decimal = ZERO

    inconsistent_allocations: int = 0
    issues: List[str] = field(default_factory=list)
    integrity_score: Decimal = Decimal("100")

    @property
    def is_balanced(self) -> bool:
        return len(self.issues) == 0

    @property
    def grade(self) -> str:
        for threshold, label in core.INTEGRITY_GRADES:
            if self.integrity_score >= threshold:
                return label
        return "Poor"

    def add_issue(self, message: str):
        self.issues.append(message)

    def __str__(self) -> str:
        status = "✅ BALANCED" if self.is_balanced else "❌ UNBALANCED"
        parts = [
            f"BalanceVerificationResult({status}, score {self.integrity_score} [{self.grade}])",
            f"  Purchases: {self.total_purchase_quantity} L  Consumption: {self.total_consumption_quantity} L",
            f"  Allocated: {self.total_allocated_quantity} L  Unallocated: {self.unallocated_consumption} L",
        ]
        for issue in self.issues:
            parts.append(f"    - {issue}")
        return "\n".join(parts)


class Severity(Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        return {"critical": 0, "warning": 1, "info": 2}[self.value]


class FindingType(Enum):
    FIFO_VIOLATION = "FIFO Chronology Violation"
    NEGATIVE_BALANCE = "Negative Balance"
    VALUE_ERROR = "Value Calculation Error"


@dataclass
class AllocationFinding:
    """A ledger anomaly, with enough context to drive manual remediation."""

    finding_type: FindingType
    severity: Severity
    description: str
    lot_id: int
    consumption_id: int
    allocation_id: Optional[int]
    vessel_id: Optional[int]
    transaction_date: Optional[date]
    quantity_affected: Decimal = ZERO
    value_affected: Decimal = ZERO
    invoice_reference: str = ""
    expected_value: Optional[Decimal] = None
    actual_value: Optional[Decimal] = None
    recommended_action: str = ""
    resolved: bool = False

    @property
    def is_critical(self) -> bool:
        return self.severity is Severity.CRITICAL

    def sort_key(self):
        return (self.severity.rank, self.transaction_date or date.min, self.allocation_id or 0)

    def __str__(self) -> str:
        emoji = {Severity.CRITICAL: '🚨', Severity.WARNING: '⚠️', Severity.INFO: 'ℹ️'}[self.severity]
        return (
            f"AllocationFinding({emoji} {self.finding_type.value}: allocation "
            f"{self.allocation_id} lot {self.lot_id} [{self.transaction_date}])"
        )


# =========================================================================
# DERIVED VALUES
# =========================================================================

def _div(numerator: Decimal, denominator: Decimal) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = 38
        return numerator / denominator


def price_per_liter(lot: PurchaseLot) -> Decimal:
    return _div(lot.total_value, lot.quantity_liters) if lot.quantity_liters > 0 else ZERO


def price_per_liter_usd(lot: PurchaseLot) -> Decimal:
    return _div(lot.total_value_usd, lot.quantity_liters) if lot.quantity_liters > 0 else ZERO


def price_per_ton(lot: PurchaseLot) -> Decimal:
    return _div(lot.total_value, lot.quantity_tons) if lot.quantity_tons > 0 else ZERO


def price_per_ton_usd(lot: PurchaseLot) -> Decimal:
    return _div(lot.total_value_usd, lot.quantity_tons) if lot.quantity_tons > 0 else ZERO


def density(lot: PurchaseLot) -> Decimal:
    """Tons per cubic meter (kg/L) from the lot's liters/tons pair."""
    if lot.quantity_liters <= 0:
        return ZERO
    return _div(lot.quantity_tons, _div(lot.quantity_liters, Decimal(core.LITERS_PER_CUBIC_METER)))


def remaining_tons(lot: PurchaseLot) -> Decimal:
    if lot.remaining_quantity <= 0 or lot.quantity_liters <= 0:
        return ZERO
    return _div(lot.remaining_quantity, Decimal(core.LITERS_PER_CUBIC_METER)) * density(lot)


def allocated_tons(allocation: Allocation, lot: PurchaseLot) -> Decimal:
    if lot.quantity_liters <= 0:
        return ZERO
    return _div(allocation.allocated_quantity, Decimal(core.LITERS_PER_CUBIC_METER)) * density(lot)


def consumption_per_leg(consumption: ConsumptionRecord) -> Decimal:
    """Liters per completed leg; zero for idle consumption."""
    if not consumption.legs_completed:
        return ZERO
    return _div(consumption.consumption_liters, Decimal(consumption.legs_completed))


def expected_value_usd(lot: PurchaseLot, quantity: Decimal) -> Decimal:
    """``quantity × price_per_liter_usd`` without rounding the intermediate price."""
    if lot.quantity_liters <= 0:
        return ZERO
    return _div(quantity * lot.total_value_usd, lot.quantity_liters)


def month_key(day: date) -> str:
    return day.strftime(core.MONTH_KEY_FORMAT)


def month_end(key: str) -> date:
    """Last calendar day of a ``YYYY-MM`` month key."""
    validate_month_key(key)
    year, month = (int(part) for part in key.split("-"))
    return date(year, month, calendar.monthrange(year, month)[1])


def is_cross_vessel(lot: PurchaseLot, consumption: ConsumptionRecord) -> bool:
    """True when the lot and the consumption it fed belong to different vessels."""
    return lot.vessel_id != consumption.vessel_id
