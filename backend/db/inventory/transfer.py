import uuid

from sqlalchemy import Column, DateTime, Integer, String, Uuid
from sqlalchemy.sql import func

from ..database import Base


class TransferReceipt(Base):
    """
    Stored outcome of a transfer submitted with an idempotency key.

    Written in the same transaction as the ledger mutation, so a receipt
    exists if and only if the transfer committed.
    """
    __tablename__ = "transfer_receipts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    idempotency_key = Column(String(200), nullable=False, unique=True, index=True)

    item_name = Column(String, nullable=False)
    from_warehouse = Column(String, nullable=False)
    to_warehouse = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
    new_source_quantity = Column(Integer, nullable=False)
    new_dest_quantity = Column(Integer, nullable=False)

    created_by_user_id = Column(Uuid, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
