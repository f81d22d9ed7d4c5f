import uuid

from sqlalchemy import Column, DateTime, Integer, String, Text, Uuid
from sqlalchemy.sql import func

from .database import Base


class ActionLog(Base):
    """Append-only audit trail of mutating stock actions"""
    __tablename__ = "action_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    action_type = Column(Text, nullable=False, index=True)  # 'add' | 'update' | 'delete' | 'transfer' | 'reduce'

    # No FK: entries must outlive deleted stock records
    item_id = Column(Uuid, nullable=True, index=True)
    item_name = Column(String, nullable=True)
    quantity = Column(Integer, nullable=True)
    from_warehouse = Column(String, nullable=True)
    to_warehouse = Column(String, nullable=True)
    user_id = Column(Uuid, nullable=True)

    timestamp = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
