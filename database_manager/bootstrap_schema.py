from sqlalchemy import text

# Importing the package registers every ledger table on Base.metadata
from TableModels import Base


async def ensure_ledger_schema(async_engine) -> None:
    """
    Idempotent: safe to run on every startup.
    Creates the purchase, consumption and allocation tables if missing, plus
    the lookup index used by the unresolved-consumption query.
    """
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.execute(text(
            "CREATE INDEX IF NOT EXISTS ix_fuel_allocations_consumption_lot "
            "ON fuel_allocations (consumption_id, lot_id)"
        ))
