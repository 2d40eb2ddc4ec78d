from sqlalchemy import Column, Integer, String, Date, DateTime, Index, CheckConstraint, func
from sqlalchemy.types import DECIMAL
from TableModels.base import Base


class ConsumptionRow(Base):
    """Fuel burned by one vessel on one date."""
    __tablename__ = 'fuel_consumptions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    vessel_id = Column(Integer, nullable=False, index=True)
    consumption_date = Column(Date, nullable=False)
    month = Column(String(7), nullable=False)  # YYYY-MM
    consumption_liters = Column(DECIMAL(18, 3), nullable=False)
    legs_completed = Column(Integer, nullable=True)  # NULL = idle consumption
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint('consumption_liters >= 0', name='valid_consumption_quantity'),
        Index('idx_fuel_consumptions_month_vessel', 'month', 'vessel_id', 'consumption_date'),
    )
