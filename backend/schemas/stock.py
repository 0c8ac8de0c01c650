from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from services.units import normalize_unit_label, quantize_qty


MovementDirection = Literal["IN", "OUT"]
MovementType = Literal["ADJUSTMENT", "TRANSFER"]


class _MovementFields(BaseModel):
    product_id: UUID
    unit_label: str = Field(min_length=1, max_length=30)
    qty_delta: Decimal
    reason: str = Field("adjustment", min_length=1, max_length=60)
    source: str = Field("api", min_length=1, max_length=60)

    @field_validator("unit_label", mode="before")
    @classmethod
    def _unit(cls, v):
        if v is None:
            return v
        return normalize_unit_label(str(v))

    @field_validator("qty_delta", mode="before")
    @classmethod
    def _decimal_comma(cls, v):
        if isinstance(v, str):
            return v.strip().replace(",", ".")
        return v

    @field_validator("qty_delta")
    @classmethod
    def _qty_nonzero(cls, v: Decimal) -> Decimal:
        if not v.is_finite():
            raise ValueError("qty_delta must be a finite number")
        v = quantize_qty(v)
        if v == 0:
            raise ValueError("qty_delta cannot be 0")
        return v

    @field_validator("reason", "source", mode="before")
    @classmethod
    def _strip_defaulted(cls, v, info: ValidationInfo):
        v = str(v).strip() if v is not None else ""
        return v or cls.model_fields[info.field_name].default


class StockMovementCreate(_MovementFields):
    """Movement descriptor with an explicit location."""

    location_id: UUID


class CurrentLocationMovementCreate(_MovementFields):
    """Movement descriptor for the caller's active location."""

    source: str = Field("server_action", min_length=1, max_length=60)


class StockMovementOut(BaseModel):
    id: Optional[UUID] = None
    location_id: UUID
    product_id: UUID
    unit_label: str
    qty_delta: float
    direction: MovementDirection
    movement_type: MovementType
    reason: str
    source: str
    correlation_id: Optional[UUID] = None
    created_at: Optional[datetime] = None
    created_by_user_id: Optional[UUID] = None


class StockBalanceOut(BaseModel):
    location_id: UUID
    product_id: UUID
    unit_label: str
    qty_balance: float


class MovementResult(BaseModel):
    ok: bool = True
    # None when the ledger table is missing or the write was tolerated.
    movement: Optional[StockMovementOut] = None
    stock_balance: StockBalanceOut


class CurrentStockRow(BaseModel):
    location_id: UUID
    product_id: UUID
    product_name: Optional[str] = None
    category: Optional[str] = None
    unit_label: str
    qty_balance: float
