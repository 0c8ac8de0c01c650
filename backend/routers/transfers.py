from datetime import date
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from core.auth import current_active_superuser, current_active_user, current_membership
from db.users import User
from schemas.transfers import (
    CompensationResult,
    ProductOption,
    TransferCreate,
    TransferCreated,
    TransferDetails,
    TransferListItem,
    TransferOptions,
)
from services import transfers as transfer_service
from services.errors import StockError
from services.store import SqlStockStore, get_stock_store

router = APIRouter()


def _http_error(e: StockError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/options", response_model=TransferOptions)
async def get_transfer_options(
    user: User = Depends(current_active_user),
    membership: dict = Depends(current_membership),
    store: SqlStockStore = Depends(get_stock_store),
):
    return await transfer_service.get_transfer_options(store, user_id=user.id, location_id=membership["location_id"])


@router.get("/products", response_model=List[ProductOption])
async def search_transfer_products(
    q: Optional[str] = None,
    limit: int = Query(20),
    user: User = Depends(current_active_user),
    store: SqlStockStore = Depends(get_stock_store),
):
    return await transfer_service.search_products(store, q=q, limit=limit)


@router.post("", response_model=TransferCreated, status_code=status.HTTP_201_CREATED)
async def create_transfer(
    payload: TransferCreate,
    user: User = Depends(current_active_user),
    membership: dict = Depends(current_membership),
    store: SqlStockStore = Depends(get_stock_store),
):
    """Move a list of items from the caller's active location to another location."""
    try:
        return await transfer_service.create_transfer(
            store,
            user_id=user.id,
            from_location_id=membership["location_id"],
            payload=payload,
        )
    except StockError as e:
        raise _http_error(e)


@router.get("", response_model=List[TransferListItem])
async def list_transfers(
    q: Optional[str] = None,
    direction: Literal["ALL", "IN", "OUT"] = "ALL",
    date_from: Optional[date] = Query(None, alias="from"),
    date_to: Optional[date] = Query(None, alias="to"),
    limit: int = Query(200),
    user: User = Depends(current_active_user),
    membership: dict = Depends(current_membership),
    store: SqlStockStore = Depends(get_stock_store),
):
    return await transfer_service.list_transfers(
        store,
        user_id=user.id,
        location_id=membership["location_id"],
        q=q,
        direction=direction,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
    )


@router.get("/{transfer_id}", response_model=TransferDetails)
async def get_transfer(
    transfer_id: UUID,
    user: User = Depends(current_active_user),
    store: SqlStockStore = Depends(get_stock_store),
):
    try:
        return await transfer_service.get_transfer_details(store, user_id=user.id, transfer_id=transfer_id)
    except StockError as e:
        raise _http_error(e)


@router.post("/{transfer_id}/compensate", response_model=CompensationResult)
async def compensate_transfer(
    transfer_id: UUID,
    user: User = Depends(current_active_superuser),
    store: SqlStockStore = Depends(get_stock_store),
):
    """Finish a rollback that was left PENDING. Safe to repeat."""
    try:
        return await transfer_service.compensate_transfer(store, transfer_id)
    except StockError as e:
        raise _http_error(e)
