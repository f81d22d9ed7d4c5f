import uuid

from sqlalchemy import Column, DateTime, String, Text, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def warehouse_key(name: str) -> str:
    """Canonical case-insensitive lookup key for a warehouse name."""
    return (name or "").strip().lower()


class Warehouse(Base):
    __tablename__ = "warehouses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    name_key = Column(String, nullable=False, unique=True, index=True)  # lower(trim(name))
    location = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    stock_records = relationship("StockRecord", back_populates="warehouse", passive_deletes=True)

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "created_at": self.created_at,
        }
