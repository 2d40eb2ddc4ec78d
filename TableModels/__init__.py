from .base import Base
from .purchase_lot import PurchaseRow
from .consumption_record import ConsumptionRow
from .fuel_allocation import AllocationRow
