"""
PostgreSQL-backed stock store.

Every database call made by the stock services goes through one SqlStockStore
bound to the request's AsyncSession. Services never commit on their own: they
call store.commit() / store.rollback() at the points where the ledger, the
balances and the transfer header must agree.
"""

import logging
import uuid
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import List, Optional, Sequence
from uuid import UUID

from fastapi import Depends
from sqlalchemy import Text, and_, cast, delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import get_async_session
from db.location import Location as LocationModel, Membership as MembershipModel
from db.product import Product as ProductModel
from db.stock.balance import StockBalance as StockBalanceModel
from db.stock.movement import StockMovement as StockMovementModel
from db.stock.transfer import StockTransfer as StockTransferModel
from services.errors import (
    InsufficientBalanceError,
    LedgerUnavailableError,
    StockStorageError,
)

logger = logging.getLogger(__name__)

UNDEFINED_TABLE = "42P01"


def is_missing_table_error(exc: BaseException) -> bool:
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code == UNDEFINED_TABLE:
        return True
    return "does not exist" in str(exc).lower() and "relation" in str(exc).lower()


def _movement_to_dict(mv) -> dict:
    return {
        "id": mv.id,
        "location_id": mv.location_id,
        "product_id": mv.product_id,
        "unit_label": mv.unit_label,
        "qty_delta": Decimal(mv.qty_delta),
        "direction": mv.direction,
        "movement_type": mv.movement_type,
        "reason": mv.reason,
        "source": mv.source,
        "correlation_id": mv.correlation_id,
        "details": mv.details,
        "created_at": mv.created_at,
        "created_by_user_id": mv.created_by_user_id,
    }


def _transfer_to_dict(t) -> dict:
    return {
        "id": t.id,
        "from_location_id": t.from_location_id,
        "to_location_id": t.to_location_id,
        "status": t.status,
        "notes": t.notes,
        "item_count": int(t.item_count or 0),
        "created_by_user_id": t.created_by_user_id,
        "created_at": t.created_at,
        "updated_at": t.updated_at,
    }


def _day_bounds(date_from: Optional[date], date_to: Optional[date]):
    start = datetime.combine(date_from, time.min) if date_from else None
    end_excl = datetime.combine(date_to, time.min) + timedelta(days=1) if date_to else None
    return start, end_excl


def transfer_key_expr():
    """SQL twin of services.transfers.transfer_key: correlation id, then details, then the row id."""
    details = StockMovementModel.details
    return func.coalesce(
        func.nullif(func.trim(cast(StockMovementModel.correlation_id, Text)), ""),
        func.nullif(func.trim(details["transfer_id"].astext), ""),
        func.nullif(func.trim(details["transferId"].astext), ""),
        cast(StockMovementModel.id, Text),
    )


def product_name_contains(q: str):
    return func.lower(ProductModel.name).contains(q.lower(), autoescape=True)


class SqlStockStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    # -- transaction control -------------------------------------------------

    async def commit(self) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            raise StockStorageError(f"Commit failed: {e}") from e

    async def rollback(self) -> None:
        await self.session.rollback()

    # -- balances --------------------------------------------------------------

    async def get_balance(self, location_id: UUID, product_id: UUID, unit_label: str) -> Decimal:
        res = await self.session.execute(
            select(StockBalanceModel.qty_balance).where(
                StockBalanceModel.location_id == location_id,
                StockBalanceModel.product_id == product_id,
                StockBalanceModel.unit_label == unit_label,
            )
        )
        value = res.scalar_one_or_none()
        return Decimal(value) if value is not None else Decimal("0")

    async def apply_balance_delta(
        self,
        location_id: UUID,
        product_id: UUID,
        unit_label: str,
        delta: Decimal,
        *,
        allow_negative: bool = False,
    ) -> dict:
        """
        Add delta to the running balance and return the new snapshot.

        Credits upsert the row. Debits only succeed when the row holds enough
        quantity, checked in the same UPDATE statement.
        """
        tbl = StockBalanceModel.__table__
        key = and_(
            tbl.c.location_id == location_id,
            tbl.c.product_id == product_id,
            tbl.c.unit_label == unit_label,
        )
        returning = (tbl.c.location_id, tbl.c.product_id, tbl.c.unit_label, tbl.c.qty_balance)
        try:
            async with self.session.begin_nested():
                if delta < 0 and not allow_negative:
                    stmt = (
                        update(tbl)
                        .where(key)
                        .where(tbl.c.qty_balance + delta >= 0)
                        .values(qty_balance=tbl.c.qty_balance + delta, updated_at=func.now())
                        .returning(*returning)
                    )
                else:
                    stmt = (
                        insert(tbl)
                        .values(
                            id=uuid.uuid4(),
                            location_id=location_id,
                            product_id=product_id,
                            unit_label=unit_label,
                            qty_balance=delta,
                        )
                        .on_conflict_do_update(
                            constraint="ux_stock_balances_key",
                            set_={"qty_balance": tbl.c.qty_balance + delta, "updated_at": func.now()},
                        )
                        .returning(*returning)
                    )
                row = (await self.session.execute(stmt)).first()
        except SQLAlchemyError as e:
            raise StockStorageError(f"Failed to update stock balance: {e}") from e

        if row is None:
            available = await self.get_balance(location_id, product_id, unit_label)
            raise InsufficientBalanceError(
                product_id=product_id,
                unit_label=unit_label,
                available=available,
                requested=-delta,
            )
        return {
            "location_id": row.location_id,
            "product_id": row.product_id,
            "unit_label": row.unit_label,
            "qty_balance": Decimal(row.qty_balance),
        }

    async def list_current_stock(self, location_id: UUID) -> List[dict]:
        res = await self.session.execute(
            select(StockBalanceModel, ProductModel)
            .outerjoin(ProductModel, StockBalanceModel.product_id == ProductModel.id)
            .where(StockBalanceModel.location_id == location_id)
            .order_by(StockBalanceModel.qty_balance.desc(), func.lower(ProductModel.name).asc())
        )
        out = []
        for (bal, prod) in res.all():
            out.append(
                {
                    "location_id": bal.location_id,
                    "product_id": bal.product_id,
                    "product_name": prod.name if prod else None,
                    "category": prod.category if prod else None,
                    "unit_label": bal.unit_label,
                    "qty_balance": Decimal(bal.qty_balance),
                }
            )
        return out

    # -- ledger ----------------------------------------------------------------

    async def insert_movements(self, rows: Sequence[dict]) -> List[dict]:
        """Insert ledger rows as one statement; all or nothing."""
        if not rows:
            return []
        tbl = StockMovementModel.__table__
        try:
            async with self.session.begin_nested():
                res = await self.session.execute(
                    insert(tbl).values(list(rows)).returning(tbl.c.id, tbl.c.created_at)
                )
                created = {r.id: r.created_at for r in res.all()}
        except DBAPIError as e:
            if is_missing_table_error(e):
                raise LedgerUnavailableError(f"Stock ledger table is missing: {e.orig}") from e
            raise StockStorageError(f"Failed to record stock movements: {e.orig}") from e
        except SQLAlchemyError as e:
            raise StockStorageError(f"Failed to record stock movements: {e}") from e
        return [{**r, "created_at": created.get(r["id"])} for r in rows]

    async def insert_movement(self, row: dict) -> dict:
        return (await self.insert_movements([row]))[0]

    async def delete_movements(self, correlation_id: UUID) -> int:
        try:
            async with self.session.begin_nested():
                res = await self.session.execute(
                    delete(StockMovementModel).where(StockMovementModel.correlation_id == correlation_id)
                )
        except SQLAlchemyError as e:
            raise StockStorageError(f"Failed to delete movements for {correlation_id}: {e}") from e
        removed = int(getattr(res, "rowcount", 0) or 0)
        logger.info("deleted %d ledger rows for correlation_id=%s", removed, correlation_id)
        return removed

    async def list_movements(
        self,
        location_id: UUID,
        *,
        movement_type: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: int = 1000,
    ) -> List[dict]:
        stmt = (
            select(StockMovementModel, ProductModel.name)
            .outerjoin(ProductModel, StockMovementModel.product_id == ProductModel.id)
            .where(StockMovementModel.location_id == location_id)
        )
        if movement_type:
            stmt = stmt.where(StockMovementModel.movement_type == movement_type)
        start, end_excl = _day_bounds(date_from, date_to)
        if start:
            stmt = stmt.where(StockMovementModel.created_at >= start)
        if end_excl:
            stmt = stmt.where(StockMovementModel.created_at < end_excl)
        stmt = stmt.order_by(StockMovementModel.created_at.desc()).limit(limit)
        res = await self.session.execute(stmt)
        return [{**_movement_to_dict(mv), "product_name": name} for (mv, name) in res.all()]

    async def list_transfer_keys(
        self,
        location_id: UUID,
        *,
        direction: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: int = 200,
    ) -> List[str]:
        """Newest-first page of transfer keys that have a row at location_id."""
        key = transfer_key_expr()
        latest = func.max(StockMovementModel.created_at)
        stmt = (
            select(key.label("transfer_key"), latest.label("latest"))
            .where(StockMovementModel.location_id == location_id)
            .where(StockMovementModel.movement_type == "TRANSFER")
        )
        if direction:
            stmt = stmt.where(StockMovementModel.direction == direction)
        start, end_excl = _day_bounds(date_from, date_to)
        if start:
            stmt = stmt.where(StockMovementModel.created_at >= start)
        if end_excl:
            stmt = stmt.where(StockMovementModel.created_at < end_excl)
        stmt = stmt.group_by(key).order_by(latest.desc()).limit(limit)
        res = await self.session.execute(stmt)
        return [k for (k, _) in res.all()]

    async def list_transfer_rows_by_keys(self, keys: Sequence[str], location_ids: Sequence[UUID]) -> List[dict]:
        if not keys or not location_ids:
            return []
        stmt = (
            select(StockMovementModel, ProductModel.name)
            .outerjoin(ProductModel, StockMovementModel.product_id == ProductModel.id)
            .where(StockMovementModel.movement_type == "TRANSFER")
            .where(StockMovementModel.location_id.in_(list(location_ids)))
            .where(transfer_key_expr().in_(list(keys)))
            .order_by(StockMovementModel.created_at.desc())
        )
        res = await self.session.execute(stmt)
        return [{**_movement_to_dict(mv), "product_name": name} for (mv, name) in res.all()]

    async def list_transfer_rows(self, transfer_id: UUID) -> List[dict]:
        """Rows of one transfer, including legacy rows keyed only by details or by their own id."""
        details_tid = StockMovementModel.details["transfer_id"].astext
        details_tid_legacy = StockMovementModel.details["transferId"].astext
        res = await self.session.execute(
            select(StockMovementModel, ProductModel.name)
            .outerjoin(ProductModel, StockMovementModel.product_id == ProductModel.id)
            .where(StockMovementModel.movement_type == "TRANSFER")
            .where(
                or_(
                    StockMovementModel.correlation_id == transfer_id,
                    details_tid == str(transfer_id),
                    details_tid_legacy == str(transfer_id),
                    StockMovementModel.id == transfer_id,
                )
            )
            .order_by(StockMovementModel.created_at.asc())
        )
        return [{**_movement_to_dict(mv), "product_name": name} for (mv, name) in res.all()]

    # -- transfer headers ------------------------------------------------------

    async def create_transfer(
        self,
        *,
        transfer_id: UUID,
        from_location_id: UUID,
        to_location_id: UUID,
        notes: Optional[str],
        item_count: int,
        created_by_user_id: Optional[UUID],
    ) -> dict:
        m = StockTransferModel(
            id=transfer_id,
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            status="PENDING",
            notes=notes,
            item_count=item_count,
            created_by_user_id=created_by_user_id,
        )
        try:
            self.session.add(m)
            await self.session.flush()
        except SQLAlchemyError as e:
            raise StockStorageError(f"Failed to create transfer: {e}") from e
        return _transfer_to_dict(m)

    async def set_transfer_status(self, transfer_id: UUID, status: str) -> None:
        try:
            await self.session.execute(
                update(StockTransferModel)
                .where(StockTransferModel.id == transfer_id)
                .values(status=status, updated_at=func.now())
            )
        except SQLAlchemyError as e:
            raise StockStorageError(f"Failed to update transfer {transfer_id}: {e}") from e

    async def get_transfer(self, transfer_id: UUID) -> Optional[dict]:
        res = await self.session.execute(select(StockTransferModel).where(StockTransferModel.id == transfer_id))
        t = res.scalar_one_or_none()
        return _transfer_to_dict(t) if t else None

    async def list_pending_transfers(self, older_than: datetime) -> List[dict]:
        res = await self.session.execute(
            select(StockTransferModel)
            .where(StockTransferModel.status == "PENDING")
            .where(StockTransferModel.created_at < older_than)
            .order_by(StockTransferModel.created_at.asc())
        )
        return [_transfer_to_dict(t) for t in res.scalars().all()]

    # -- memberships & locations -----------------------------------------------

    async def get_active_membership(self, user_id: UUID) -> Optional[dict]:
        res = await self.session.execute(
            select(MembershipModel)
            .where(MembershipModel.user_id == user_id)
            .where(MembershipModel.is_active == True)  # noqa: E712
            .order_by(MembershipModel.created_at.desc())
            .limit(1)
        )
        m = res.scalar_one_or_none()
        return m.to_schema if m else None

    async def has_active_membership(self, user_id: UUID, location_id: UUID) -> bool:
        res = await self.session.execute(
            select(func.count(MembershipModel.id))
            .where(MembershipModel.user_id == user_id)
            .where(MembershipModel.location_id == location_id)
            .where(MembershipModel.is_active == True)  # noqa: E712
        )
        return int(res.scalar_one() or 0) > 0

    async def list_member_location_ids(self, user_id: UUID) -> List[UUID]:
        res = await self.session.execute(
            select(MembershipModel.location_id)
            .where(MembershipModel.user_id == user_id)
            .where(MembershipModel.is_active == True)  # noqa: E712
            .distinct()
        )
        return [r[0] for r in res.all()]

    async def list_locations(self, location_ids: Sequence[UUID]) -> List[dict]:
        if not location_ids:
            return []
        res = await self.session.execute(
            select(LocationModel)
            .where(LocationModel.id.in_(list(location_ids)))
            .order_by(func.lower(LocationModel.name).asc())
        )
        return [{"id": loc.id, "name": loc.name} for loc in res.scalars().all()]

    async def list_memberships(self, location_id: Optional[UUID] = None) -> List[dict]:
        stmt = select(MembershipModel).order_by(MembershipModel.created_at.desc())
        if location_id:
            stmt = stmt.where(MembershipModel.location_id == location_id)
        res = await self.session.execute(stmt)
        return [m.to_schema for m in res.scalars().all()]

    async def create_membership(self, *, user_id: UUID, location_id: UUID, role: str) -> dict:
        m = MembershipModel(user_id=user_id, location_id=location_id, role=role, is_active=True)
        self.session.add(m)
        await self.session.flush()
        await self.session.refresh(m)
        return m.to_schema

    async def update_membership(self, membership_id: UUID, **values) -> Optional[dict]:
        res = await self.session.execute(select(MembershipModel).where(MembershipModel.id == membership_id))
        m = res.scalar_one_or_none()
        if not m:
            return None
        if values.get("role") is not None:
            m.role = values["role"]
        if values.get("is_active") is not None:
            m.is_active = bool(values["is_active"])
        await self.session.flush()
        return m.to_schema

    # -- products ----------------------------------------------------------------

    async def get_product(self, product_id: UUID) -> Optional[dict]:
        res = await self.session.execute(select(ProductModel).where(ProductModel.id == product_id))
        p = res.scalar_one_or_none()
        if not p:
            return None
        return {
            "id": p.id,
            "name": p.name,
            "category": p.category,
            "default_unit_label": p.default_unit_label,
            "is_active": bool(p.is_active),
        }

    async def search_products(self, q: str, limit: int) -> List[dict]:
        stmt = (
            select(ProductModel)
            .where(ProductModel.is_active == True)  # noqa: E712
            .order_by(func.lower(ProductModel.name).asc())
            .limit(limit)
        )
        if q:
            stmt = stmt.where(product_name_contains(q))
        res = await self.session.execute(stmt)
        return [
            {"id": p.id, "name": p.name, "default_unit_label": p.default_unit_label}
            for p in res.scalars().all()
        ]


async def get_stock_store(db: AsyncSession = Depends(get_async_session)) -> SqlStockStore:
    return SqlStockStore(db)
