from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel


Role = Literal["cliente", "operacao", "producao", "estoque", "fiscal", "admin", "entrega"]


class MembershipRead(BaseModel):
    id: UUID
    user_id: UUID
    location_id: UUID
    role: Role
    is_active: bool
    created_at: Optional[datetime] = None


class MembershipCreate(BaseModel):
    user_id: UUID
    location_id: UUID
    role: Role = "operacao"


class MembershipUpdate(BaseModel):
    role: Optional[Role] = None
    is_active: Optional[bool] = None
