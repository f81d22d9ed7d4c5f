from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

ActionType = Literal["add", "update", "delete", "transfer", "reduce"]


class AuditEntryCreate(BaseModel):
    action_type: ActionType
    item_id: Optional[UUID] = None
    item_name: Optional[str] = None
    quantity: Optional[int] = None
    from_warehouse: Optional[str] = None
    to_warehouse: Optional[str] = None
    user_id: Optional[UUID] = None


class AuditEntryRead(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: UUID
    action_type: ActionType
    item_id: Optional[UUID] = None
    item_name: Optional[str] = None
    quantity: Optional[int] = None
    from_warehouse: Optional[str] = None
    to_warehouse: Optional[str] = None
    user_id: Optional[UUID] = None
    timestamp: datetime
