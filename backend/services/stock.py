"""
Single-location stock movements.

move_stock is the one entry point that changes a balance outside of a
transfer: it records the ledger row, then applies the delta through the
store's atomic balance update, and commits both together.
"""

import logging
import uuid
from decimal import Decimal
from typing import Optional
from uuid import UUID

from core.config import settings
from schemas.stock import StockMovementCreate
from services.errors import (
    InsufficientBalanceError,
    LedgerUnavailableError,
    StockStorageError,
)
from services.units import normalize_unit_label

logger = logging.getLogger(__name__)


async def get_balance(store, location_id: UUID, product_id: UUID, unit_label: str) -> Decimal:
    """Quantity on hand for the key, 0 when the balance row does not exist."""
    return await store.get_balance(location_id, product_id, normalize_unit_label(unit_label))


def build_movement_row(
    *,
    location_id: UUID,
    product_id: UUID,
    unit_label: str,
    qty_delta: Decimal,
    reason: str,
    source: str,
    movement_type: str = "ADJUSTMENT",
    correlation_id: Optional[UUID] = None,
    details: Optional[dict] = None,
    created_by_user_id: Optional[UUID] = None,
) -> dict:
    return {
        "id": uuid.uuid4(),
        "location_id": location_id,
        "product_id": product_id,
        "unit_label": normalize_unit_label(unit_label),
        "qty_delta": qty_delta,
        "direction": "IN" if qty_delta > 0 else "OUT",
        "movement_type": movement_type,
        "reason": reason,
        "source": source,
        "correlation_id": correlation_id,
        "details": details,
        "created_by_user_id": created_by_user_id,
    }


async def record_movement(store, row: dict, *, strict: bool) -> Optional[dict]:
    """
    Append one ledger row.

    Returns None when the ledger could not be written and the failure is
    tolerated: a missing ledger table always is, other storage failures only
    when strict is False.
    """
    try:
        return await store.insert_movement(row)
    except LedgerUnavailableError as e:
        logger.warning("stock ledger unavailable, continuing with balance update: %s", e)
        return None
    except StockStorageError as e:
        if strict:
            raise
        logger.warning(
            "ledger write failed for location=%s product=%s unit=%s, balance update continues: %s",
            row["location_id"],
            row["product_id"],
            row["unit_label"],
            e,
        )
        return None


async def move_stock(
    store,
    movement: StockMovementCreate,
    *,
    user_id: Optional[UUID] = None,
    strict: Optional[bool] = None,
) -> dict:
    strict = settings.stock_ledger_strict if strict is None else strict
    unit_label = normalize_unit_label(movement.unit_label)
    delta = movement.qty_delta

    if delta < 0:
        available = await store.get_balance(movement.location_id, movement.product_id, unit_label)
        if available + delta < 0:
            raise InsufficientBalanceError(
                product_id=movement.product_id,
                unit_label=unit_label,
                available=available,
                requested=-delta,
            )

    row = build_movement_row(
        location_id=movement.location_id,
        product_id=movement.product_id,
        unit_label=unit_label,
        qty_delta=delta,
        reason=movement.reason,
        source=movement.source,
        created_by_user_id=user_id,
    )

    try:
        recorded = await record_movement(store, row, strict=strict)
        balance = await store.apply_balance_delta(movement.location_id, movement.product_id, unit_label, delta)
        await store.commit()
    except InsufficientBalanceError:
        await store.rollback()
        raise
    except StockStorageError:
        await store.rollback()
        logger.exception(
            "move_stock failed location=%s product=%s unit=%s delta=%s",
            movement.location_id,
            movement.product_id,
            unit_label,
            delta,
        )
        raise

    logger.info(
        "stock moved location=%s product=%s unit=%s delta=%s balance=%s",
        movement.location_id,
        movement.product_id,
        unit_label,
        delta,
        balance["qty_balance"],
    )
    return {"ok": True, "movement": recorded, "stock_balance": balance}


async def list_current_stock(store, location_id: UUID):
    return await store.list_current_stock(location_id)
