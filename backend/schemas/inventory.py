from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic.alias_generators import to_camel


SortField = Literal["name", "quantity", "warehouse", "createdAt", "updatedAt"]
SortOrder = Literal["asc", "desc"]


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys (itemId, fromWarehouse, ...)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StockRecordCreate(CamelModel):
    name: str
    warehouse: str
    quantity: int = 0
    low_stock_threshold: Optional[int] = None

    @field_validator("name", "warehouse")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return v

    @field_validator("quantity")
    @classmethod
    def _quantity_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("quantity must be >= 0")
        return v

    @field_validator("low_stock_threshold")
    @classmethod
    def _threshold_non_negative(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("lowStockThreshold must be >= 0")
        return v


class StockRecordUpdate(CamelModel):
    name: Optional[str] = None
    warehouse: Optional[str] = None
    quantity: Optional[int] = None
    low_stock_threshold: Optional[int] = None

    @field_validator("name", "warehouse")
    @classmethod
    def _strip_optional(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        if not v:
            raise ValueError("cannot be empty")
        return v

    @field_validator("quantity", "low_stock_threshold")
    @classmethod
    def _non_negative(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("must be >= 0")
        return v


class StockReduceRequest(CamelModel):
    quantity: int


class StockRecordOut(CamelModel):
    id: UUID
    name: str
    warehouse: str
    quantity: int
    low_stock_threshold: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class StockRecordPage(CamelModel):
    items: List[StockRecordOut]
    total_items: int
    current_page: int
    total_pages: int


class TransferCreate(CamelModel):
    """
    Either item_id (resolved to its name) or item_name must be given.
    Quantity and warehouse checks are left to the transfer coordinator so
    they surface as InvalidArgument rather than a validation error.
    """

    item_id: Optional[UUID] = None
    item_name: Optional[str] = None
    from_warehouse: str
    to_warehouse: str
    quantity: int
    idempotency_key: Optional[str] = None

    @field_validator("idempotency_key")
    @classmethod
    def _strip_key(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        if len(v) > 200:
            raise ValueError("idempotencyKey must be at most 200 characters")
        return v or None

    @model_validator(mode="after")
    def _item_reference(self):
        if self.item_id is None and not (self.item_name or "").strip():
            raise ValueError("itemId or itemName is required")
        return self


class TransferOut(CamelModel):
    item_name: str
    from_warehouse: str
    to_warehouse: str
    quantity: int
    new_source_quantity: int
    new_dest_quantity: int
    replayed: bool = False


class LowStockAlertOut(CamelModel):
    id: UUID
    name: str
    warehouse: str
    quantity: int
    low_stock_threshold: int


class WarehouseQuantityOut(CamelModel):
    warehouse: str
    total_quantity: int


class WarehouseTotalOut(CamelModel):
    total_quantity: int


class StockStatusCountsOut(CamelModel):
    low_stock: int
    in_stock: int
