from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, CheckConstraint, Uuid
from sqlalchemy.types import DECIMAL
from TableModels.base import Base


class AllocationRow(Base):
    """Append-only FIFO match of one purchase lot to one consumption record."""
    __tablename__ = 'fuel_allocations'

    id = Column(Integer, primary_key=True, autoincrement=True)
    lot_id = Column(Integer, ForeignKey('fuel_purchases.id'), nullable=False, index=True)
    consumption_id = Column(Integer, ForeignKey('fuel_consumptions.id'), nullable=False, index=True)
    allocated_quantity = Column(DECIMAL(18, 3), nullable=False)
    allocated_value = Column(DECIMAL(18, 2), nullable=False)  # purchase currency
    allocated_value_usd = Column(DECIMAL(18, 2), nullable=False)
    lot_balance_after = Column(DECIMAL(18, 3), nullable=False)
    month = Column(String(7), nullable=False)
    batch_id = Column(Uuid, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint('allocated_quantity > 0', name='valid_allocated_quantity'),
        Index('idx_fuel_allocations_lot_created', 'lot_id', 'created_at', 'id'),
    )
