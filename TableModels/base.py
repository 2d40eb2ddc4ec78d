from sqlalchemy import MetaData
from sqlalchemy.orm import declarative_base

# Metadata object shared by every ledger table
metadata = MetaData()

Base = declarative_base(metadata=metadata)
