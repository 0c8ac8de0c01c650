import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from core.auth import current_active_user, current_membership
from db.users import User
from schemas.stock import CurrentLocationMovementCreate, CurrentStockRow, MovementResult, StockMovementCreate
from services.errors import StockError
from services.stock import get_balance, list_current_stock, move_stock
from services.store import SqlStockStore, get_stock_store
from services.units import normalize_unit_label

router = APIRouter()
logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"ok": False, "error": message}, status_code=status_code)


def validation_message(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(x) for x in err.get("loc", ()) if x != "body")
        msg = str(err.get("msg", "invalid"))
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts) or "Invalid movement"


async def _read_json(request: Request):
    try:
        return await request.json()
    except ValueError:
        return None


async def _move(store: SqlStockStore, payload: StockMovementCreate, user: User) -> JSONResponse:
    try:
        result = await move_stock(store, payload, user_id=user.id)
    except StockError as e:
        if e.status_code >= 500:
            logger.error("stock movement failed: %s", e.message)
        return _error(e.status_code, e.message)
    return JSONResponse(MovementResult(**result).model_dump(mode="json"), status_code=status.HTTP_200_OK)


@router.post("/movements", response_model=MovementResult)
async def create_movement(
    request: Request,
    user: User = Depends(current_active_user),
    store: SqlStockStore = Depends(get_stock_store),
):
    """Apply a movement at an explicit location the caller is a member of."""
    body = await _read_json(request)
    logger.debug("POST /stock/movements body=%s", body)
    if not isinstance(body, dict):
        return _error(status.HTTP_400_BAD_REQUEST, "Request body must be a JSON object")
    try:
        payload = StockMovementCreate.model_validate(body)
    except ValidationError as e:
        return _error(status.HTTP_400_BAD_REQUEST, validation_message(e))

    if not await store.has_active_membership(user.id, payload.location_id):
        return _error(status.HTTP_403_FORBIDDEN, "You do not have access to this location.")
    return await _move(store, payload, user)


@router.post("/movements/current", response_model=MovementResult)
async def create_movement_for_current_location(
    request: Request,
    user: User = Depends(current_active_user),
    membership: dict = Depends(current_membership),
    store: SqlStockStore = Depends(get_stock_store),
):
    """Apply a movement at the caller's active location; any location in the body is ignored."""
    body = await _read_json(request)
    if not isinstance(body, dict):
        return _error(status.HTTP_400_BAD_REQUEST, "Request body must be a JSON object")
    try:
        fields = CurrentLocationMovementCreate.model_validate(body)
    except ValidationError as e:
        return _error(status.HTTP_400_BAD_REQUEST, validation_message(e))

    payload = StockMovementCreate(location_id=membership["location_id"], **fields.model_dump())
    logger.info(
        "movement for current location user=%s location=%s product=%s unit=%s delta=%s",
        user.id,
        payload.location_id,
        payload.product_id,
        payload.unit_label,
        payload.qty_delta,
    )
    return await _move(store, payload, user)


@router.get("/balance")
async def get_stock_balance(
    product_id: UUID,
    unit_label: str,
    location_id: Optional[UUID] = None,
    user: User = Depends(current_active_user),
    membership: dict = Depends(current_membership),
    store: SqlStockStore = Depends(get_stock_store),
):
    unit = normalize_unit_label(unit_label)
    if not unit:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="unit_label is required")

    loc = location_id or membership["location_id"]
    if loc != membership["location_id"] and not await store.has_active_membership(user.id, loc):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You do not have access to this location.")

    available = await get_balance(store, loc, product_id, unit)
    return {"ok": True, "location_id": loc, "product_id": product_id, "unit_label": unit, "available": float(available)}


@router.get("/current", response_model=List[CurrentStockRow])
async def get_current_stock(
    membership: dict = Depends(current_membership),
    store: SqlStockStore = Depends(get_stock_store),
):
    rows = await list_current_stock(store, membership["location_id"])
    return [CurrentStockRow(**{**r, "qty_balance": float(r["qty_balance"])}) for r in rows]
