from sqlalchemy import Column, Integer, String, Date, DateTime, Index, CheckConstraint, func
from sqlalchemy.types import DECIMAL
from TableModels.base import Base


class PurchaseRow(Base):
    """One fuel purchase lot. ``remaining_quantity`` is written only by the allocation engine."""
    __tablename__ = 'fuel_purchases'

    id = Column(Integer, primary_key=True, autoincrement=True)
    vessel_id = Column(Integer, nullable=False, index=True)
    supplier_id = Column(Integer, nullable=True)
    purchase_date = Column(Date, nullable=False)
    invoice_reference = Column(String(100), nullable=False, default='')
    currency = Column(String(3), nullable=False, default='USD')
    quantity_liters = Column(DECIMAL(18, 3), nullable=False)
    quantity_tons = Column(DECIMAL(18, 3), nullable=False, default=0)
    total_value = Column(DECIMAL(18, 2), nullable=False)
    total_value_usd = Column(DECIMAL(18, 2), nullable=False)
    remaining_quantity = Column(DECIMAL(18, 3), nullable=False)  # not constrained; repair must load corrupt rows
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint('quantity_liters >= 0', name='valid_purchase_quantity'),
        Index('idx_fuel_purchases_vessel_date', 'vessel_id', 'purchase_date', 'id'),
    )
