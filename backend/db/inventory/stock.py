import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base


def item_key(name: str) -> str:
    """Case-insensitive identity component of an item name."""
    return (name or "").strip().lower()


class StockRecord(Base):
    __tablename__ = "stock_records"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    name_key = Column(String, nullable=False, index=True)  # lower(trim(name))

    warehouse_id = Column(
        Uuid,
        ForeignKey("warehouses.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    quantity = Column(Integer, nullable=False, default=0)
    low_stock_threshold = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    warehouse = relationship("Warehouse", back_populates="stock_records", lazy="joined")

    __table_args__ = (
        UniqueConstraint("name_key", "warehouse_id", name="ux_stock_records_name_warehouse"),
        CheckConstraint("quantity >= 0", name="ck_stock_records_quantity_non_negative"),
        CheckConstraint("low_stock_threshold >= 0", name="ck_stock_records_threshold_non_negative"),
    )

    @property
    def is_low_stock(self) -> bool:
        return int(self.quantity) <= int(self.low_stock_threshold)

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "name": self.name,
            "warehouse": self.warehouse.name if self.warehouse else None,
            "quantity": int(self.quantity),
            "low_stock_threshold": int(self.low_stock_threshold),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
