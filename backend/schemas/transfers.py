from datetime import datetime
from typing import Any, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, field_validator


TransferDirection = Literal["IN", "OUT"]
TransferStatus = Literal["PENDING", "COMMITTED", "ROLLED_BACK"]


class TransferItemIn(BaseModel):
    # Lines are normalized by the service; invalid ones are dropped, not rejected.
    product_id: Optional[Any] = None
    unit_label: Optional[Any] = None
    qty: Optional[Any] = None


class TransferCreate(BaseModel):
    to_location_id: Optional[str] = None
    notes: Optional[str] = None
    reason: Optional[str] = None
    items: List[TransferItemIn] = []

    @field_validator("to_location_id", mode="before")
    @classmethod
    def _id_as_str(cls, v):
        if v is None:
            return None
        return str(v)

    @field_validator("notes", "reason")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class TransferCreated(BaseModel):
    ok: bool = True
    transfer_id: UUID


class TransferListItem(BaseModel):
    transfer_id: UUID
    created_at: Optional[datetime] = None
    product_id: UUID
    product_name: Optional[str] = None
    unit_label: str
    qty: float
    direction: TransferDirection
    counterparty_location_id: Optional[UUID] = None
    reason: Optional[str] = None
    movement_id: UUID
    row_count: int
    details: Optional[dict] = None


class TransferRow(BaseModel):
    id: UUID
    created_at: Optional[datetime] = None
    location_id: UUID
    product_id: UUID
    product_name: Optional[str] = None
    unit_label: str
    qty: float
    direction: TransferDirection
    reason: Optional[str] = None
    details: Optional[dict] = None


class TransferDetails(BaseModel):
    transfer_id: UUID
    status: Optional[TransferStatus] = None
    from_location_id: Optional[UUID] = None
    to_location_id: Optional[UUID] = None
    notes: Optional[str] = None
    rows: List[TransferRow]


class LocationOption(BaseModel):
    id: UUID
    name: str


class TransferOptions(BaseModel):
    location_id: UUID
    locations: List[LocationOption]


class ProductOption(BaseModel):
    id: UUID
    name: str
    default_unit_label: Optional[str] = None


class CompensationResult(BaseModel):
    ok: bool = True
    transfer_id: UUID
    status: TransferStatus
    removed_rows: int
