"""
Stock transfers between two locations.

A transfer is two sets of ledger rows under one correlation id: OUT rows at
the origin and IN rows at the destination, one pair per line item. The
stock_transfers header shares that id and tracks PENDING -> COMMITTED or
PENDING -> ROLLED_BACK. A header left PENDING means compensation did not
finish; compensate_transfer() resolves it.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from schemas.transfers import TransferCreate
from services.errors import (
    AuthenticationError,
    InsufficientBalanceError,
    MembershipError,
    StockError,
    StockStorageError,
    StockValidationError,
    TransferNotFoundError,
)
from services.stock import build_movement_row
from services.units import normalize_id, normalize_unit_label, parse_qty

logger = logging.getLogger(__name__)

TRANSFER_TYPE = "TRANSFER"
DEFAULT_REASON = "transferencia"
DEFAULT_SOURCE = "transfer"


@dataclass(frozen=True)
class TransferLine:
    product_id: UUID
    unit_label: str
    qty: Decimal


def _field(item, name: str):
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


def normalize_transfer_items(items: Iterable) -> List[TransferLine]:
    """
    Uppercase units, coerce qty to a positive Decimal, drop lines that do not
    survive. Lines for the same (product, unit) are merged into one, so the
    balance check sees the full quantity leaving the origin.
    """
    totals: Dict[tuple, Decimal] = {}
    for it in items or []:
        product_id = normalize_id(_field(it, "product_id"))
        unit = _field(it, "unit_label")
        unit_label = normalize_unit_label(None if unit is None else str(unit))
        qty = parse_qty(_field(it, "qty"))
        if not product_id or not unit_label or qty is None or qty <= 0:
            continue
        key = (product_id, unit_label)
        totals[key] = totals.get(key, Decimal("0")) + qty
    return [TransferLine(product_id=p, unit_label=u, qty=q) for (p, u), q in totals.items()]


def transfer_key(row: dict) -> str:
    """Correlation id of a ledger row; legacy rows without one are their own transfer."""
    details = row.get("details") or {}
    for candidate in (row.get("correlation_id"), details.get("transfer_id"), details.get("transferId")):
        if candidate:
            return str(candidate).strip()
    return str(row["id"])


def group_transfer_rows(rows: Iterable[dict]) -> Dict[str, List[dict]]:
    groups: Dict[str, List[dict]] = {}
    for r in rows:
        groups.setdefault(transfer_key(r), []).append(r)
    return groups


def build_transfer_rows(
    *,
    transfer_id: UUID,
    from_location_id: UUID,
    to_location_id: UUID,
    lines: List[TransferLine],
    reason: str,
    notes: Optional[str],
    user_id: UUID,
):
    out_rows: List[dict] = []
    in_rows: List[dict] = []
    for line in lines:
        details = {
            "transfer_id": str(transfer_id),
            "from_location_id": str(from_location_id),
            "to_location_id": str(to_location_id),
            "qty": str(line.qty),
            "notes": notes,
        }
        common = dict(
            product_id=line.product_id,
            unit_label=line.unit_label,
            reason=reason,
            source=DEFAULT_SOURCE,
            movement_type=TRANSFER_TYPE,
            correlation_id=transfer_id,
            details=details,
            created_by_user_id=user_id,
        )
        out_rows.append(build_movement_row(location_id=from_location_id, qty_delta=-line.qty, **common))
        in_rows.append(build_movement_row(location_id=to_location_id, qty_delta=line.qty, **common))
    return out_rows, in_rows


async def _check_balances(store, location_id: UUID, lines: List[TransferLine]) -> None:
    # One balance read per line; the first shortfall aborts before any write.
    for line in lines:
        available = await store.get_balance(location_id, line.product_id, line.unit_label)
        if line.qty > available:
            product = await store.get_product(line.product_id)
            raise InsufficientBalanceError(
                product_id=line.product_id,
                product_name=(product or {}).get("name"),
                unit_label=line.unit_label,
                available=available,
                requested=line.qty,
            )


async def _compensate(store, transfer_id: UUID, applied: List[dict]) -> bool:
    """
    Undo a partially written transfer: reverse applied balance deltas, delete
    every ledger row carrying the correlation id, mark the header ROLLED_BACK.
    Returns False (header stays PENDING) when compensation itself fails.
    """
    try:
        for row in reversed(applied):
            await store.apply_balance_delta(
                row["location_id"], row["product_id"], row["unit_label"], -row["qty_delta"], allow_negative=True
            )
        removed = await store.delete_movements(transfer_id)
        await store.set_transfer_status(transfer_id, "ROLLED_BACK")
        await store.commit()
    except StockError:
        logger.exception("transfer %s: compensation failed, left PENDING for retry", transfer_id)
        try:
            await store.rollback()
        except Exception:
            logger.exception("transfer %s: rollback after failed compensation also failed", transfer_id)
        return False
    logger.warning("transfer %s rolled back, %d ledger rows removed", transfer_id, removed)
    return True


async def create_transfer(
    store,
    *,
    user_id: Optional[UUID],
    from_location_id: Optional[UUID],
    payload: TransferCreate,
) -> dict:
    if not user_id:
        raise AuthenticationError("User is not authenticated.")
    if not from_location_id:
        raise MembershipError("Origin location not found for the current user.")

    to_location_id = normalize_id(payload.to_location_id)
    if not to_location_id:
        raise StockValidationError("Select the destination location.")
    if to_location_id == from_location_id:
        raise StockValidationError("Destination cannot be the same as the origin.")

    if not await store.has_active_membership(user_id, from_location_id):
        raise MembershipError("You do not have an active membership at the origin location.")
    if not await store.has_active_membership(user_id, to_location_id):
        raise MembershipError("You do not have access to the destination location.")

    lines = normalize_transfer_items(payload.items)
    if not lines:
        raise StockValidationError("No valid items to transfer.")

    await _check_balances(store, from_location_id, lines)

    transfer_id = uuid.uuid4()
    reason = payload.reason or DEFAULT_REASON
    out_rows, in_rows = build_transfer_rows(
        transfer_id=transfer_id,
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        lines=lines,
        reason=reason,
        notes=payload.notes,
        user_id=user_id,
    )

    await store.create_transfer(
        transfer_id=transfer_id,
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        notes=payload.notes,
        item_count=len(lines),
        created_by_user_id=user_id,
    )
    await store.commit()

    try:
        await store.insert_movements(out_rows)
    except StockStorageError as e:
        logger.error("transfer %s: origin leg insert failed: %s", transfer_id, e)
        await store.rollback()
        try:
            await store.set_transfer_status(transfer_id, "ROLLED_BACK")
            await store.commit()
        except StockStorageError:
            logger.exception("transfer %s: could not mark ROLLED_BACK, left PENDING", transfer_id)
        raise StockStorageError("Failed to record the outgoing movement at the origin.") from e

    try:
        await store.insert_movements(in_rows)
    except StockStorageError as e:
        logger.error("transfer %s: destination leg insert failed: %s", transfer_id, e)
        await _compensate(store, transfer_id, [])
        raise StockStorageError("Failed to record the incoming movement at the destination.") from e

    applied: List[dict] = []
    try:
        for row in out_rows + in_rows:
            await store.apply_balance_delta(row["location_id"], row["product_id"], row["unit_label"], row["qty_delta"])
            applied.append(row)
    except InsufficientBalanceError:
        # Origin drained between the pre-check and the guarded debit.
        await _compensate(store, transfer_id, applied)
        raise
    except StockStorageError as e:
        logger.error("transfer %s: balance update failed: %s", transfer_id, e)
        await _compensate(store, transfer_id, applied)
        raise StockStorageError("Failed to update stock balances for the transfer.") from e

    await store.set_transfer_status(transfer_id, "COMMITTED")
    await store.commit()

    logger.info(
        "transfer %s committed from=%s to=%s items=%d",
        transfer_id,
        from_location_id,
        to_location_id,
        len(lines),
    )
    return {"ok": True, "transfer_id": transfer_id}


async def compensate_transfer(store, transfer_id: UUID) -> dict:
    """Idempotent retry for a transfer whose compensation did not finish."""
    header = await store.get_transfer(transfer_id)
    if not header:
        raise TransferNotFoundError("Transfer not found.")
    if header["status"] == "COMMITTED":
        raise StockValidationError("Transfer is committed; nothing to compensate.")
    if header["status"] == "ROLLED_BACK":
        return {"ok": True, "transfer_id": transfer_id, "status": "ROLLED_BACK", "removed_rows": 0}

    try:
        removed = await store.delete_movements(transfer_id)
        await store.set_transfer_status(transfer_id, "ROLLED_BACK")
        await store.commit()
    except StockStorageError:
        await store.rollback()
        logger.exception("transfer %s: compensation retry failed", transfer_id)
        raise
    logger.warning("transfer %s: compensation retry removed %d ledger rows", transfer_id, removed)
    return {"ok": True, "transfer_id": transfer_id, "status": "ROLLED_BACK", "removed_rows": removed}


async def retry_pending_transfers(store, older_than: datetime) -> List[dict]:
    results = []
    for header in await store.list_pending_transfers(older_than):
        try:
            results.append(await compensate_transfer(store, header["id"]))
        except StockError as e:
            logger.error("transfer %s: still unresolved: %s", header["id"], e)
    return results


def _row_out(r: dict) -> dict:
    return {
        "id": r["id"],
        "created_at": r.get("created_at"),
        "location_id": r["location_id"],
        "product_id": r["product_id"],
        "product_name": r.get("product_name") or (r.get("details") or {}).get("product_name"),
        "unit_label": r["unit_label"],
        "qty": float(abs(Decimal(r["qty_delta"]))),
        "direction": r["direction"],
        "reason": r.get("reason"),
        "details": r.get("details"),
    }


async def list_transfers(
    store,
    *,
    user_id: UUID,
    location_id: UUID,
    q: Optional[str] = None,
    direction: str = "ALL",
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    limit: int = 200,
) -> List[dict]:
    limit = min(max(int(limit or 200), 1), 500)
    direction = (direction or "ALL").upper()
    # The page is chosen from rows at the active location only; the other
    # legs of those transfers are loaded afterwards.
    keys = await store.list_transfer_keys(
        location_id,
        direction=None if direction == "ALL" else direction,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
    )
    if not keys:
        return []
    member_ids = set(await store.list_member_location_ids(user_id))
    member_ids.add(location_id)
    rows = await store.list_transfer_rows_by_keys(keys, sorted(member_ids, key=str))
    groups = group_transfer_rows(rows)
    needle = (q or "").strip().lower()

    items = []
    for transfer_id in keys:
        group = groups.get(transfer_id) or []
        local = [r for r in group if r["location_id"] == location_id]
        if not local:
            continue
        r = local[0]
        if direction != "ALL" and r["direction"] != direction:
            continue

        details = r.get("details") or {}
        counterparty = details.get("to_location_id") if r["direction"] == "OUT" else details.get("from_location_id")
        out = _row_out(r)
        if needle:
            hay = " ".join(
                str(x or "")
                for x in (transfer_id, out["product_name"], r["unit_label"], r["direction"], r.get("reason"), counterparty)
            ).lower()
            if needle not in hay:
                continue

        items.append(
            {
                "transfer_id": transfer_id,
                "created_at": r.get("created_at"),
                "product_id": r["product_id"],
                "product_name": out["product_name"],
                "unit_label": r["unit_label"],
                "qty": out["qty"],
                "direction": r["direction"],
                "counterparty_location_id": normalize_id(counterparty),
                "reason": r.get("reason"),
                "movement_id": r["id"],
                "row_count": len(group),
                "details": r.get("details"),
            }
        )
    return items


async def get_transfer_details(store, *, user_id: UUID, transfer_id: UUID) -> dict:
    member_ids = set(await store.list_member_location_ids(user_id))
    rows = [r for r in await store.list_transfer_rows(transfer_id) if r["location_id"] in member_ids]
    if not rows:
        raise TransferNotFoundError("Transfer not found.")

    rows.sort(key=lambda r: (r.get("created_at") is None, r.get("created_at") or datetime.min))
    header = await store.get_transfer(transfer_id)
    details = rows[0].get("details") or {}
    return {
        "transfer_id": transfer_id,
        "status": header["status"] if header else None,
        "from_location_id": header["from_location_id"] if header else normalize_id(details.get("from_location_id")),
        "to_location_id": header["to_location_id"] if header else normalize_id(details.get("to_location_id")),
        "notes": header["notes"] if header else details.get("notes"),
        "rows": [_row_out(r) for r in rows],
    }


async def get_transfer_options(store, *, user_id: UUID, location_id: UUID) -> dict:
    ids = list(dict.fromkeys(await store.list_member_location_ids(user_id)))
    if not ids:
        ids = [location_id]
    return {"location_id": location_id, "locations": await store.list_locations(ids)}


async def search_products(store, *, q: Optional[str] = None, limit: int = 20) -> List[dict]:
    limit = min(max(int(limit or 20), 1), 50)
    return await store.search_products((q or "").strip(), limit)
