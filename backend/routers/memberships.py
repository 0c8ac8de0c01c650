import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from core.auth import current_active_superuser, current_membership
from db.users import User
from schemas.memberships import MembershipCreate, MembershipRead, MembershipUpdate
from services.store import SqlStockStore, get_stock_store

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/me", response_model=MembershipRead)
async def get_my_membership(membership: dict = Depends(current_membership)):
    return membership


@router.get("", response_model=List[MembershipRead])
async def list_memberships(
    location_id: Optional[UUID] = None,
    user: User = Depends(current_active_superuser),
    store: SqlStockStore = Depends(get_stock_store),
):
    return await store.list_memberships(location_id)


@router.post("", response_model=MembershipRead, status_code=status.HTTP_201_CREATED)
async def create_membership(
    payload: MembershipCreate,
    user: User = Depends(current_active_superuser),
    store: SqlStockStore = Depends(get_stock_store),
):
    if await store.has_active_membership(payload.user_id, payload.location_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="User already has an active membership at this location.",
        )
    membership = await store.create_membership(
        user_id=payload.user_id, location_id=payload.location_id, role=payload.role
    )
    await store.commit()
    logger.info(
        "membership granted user=%s location=%s role=%s by=%s",
        payload.user_id,
        payload.location_id,
        payload.role,
        user.id,
    )
    return membership


@router.patch("/{membership_id}", response_model=MembershipRead)
async def update_membership(
    membership_id: UUID,
    payload: MembershipUpdate,
    user: User = Depends(current_active_superuser),
    store: SqlStockStore = Depends(get_stock_store),
):
    membership = await store.update_membership(membership_id, **payload.model_dump(exclude_unset=True))
    if not membership:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Membership not found")
    await store.commit()
    return membership
