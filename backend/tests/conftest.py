import copy
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from services.errors import InsufficientBalanceError, LedgerUnavailableError, StockStorageError
from services.transfers import transfer_key


class FakeStockStore:
    """
    In-memory stand-in for SqlStockStore.

    Writes land immediately; commit() snapshots the state and rollback()
    restores the last snapshot. Failure switches:
      ledger_missing        every ledger insert raises LedgerUnavailableError
      ledger_error          every ledger insert raises StockStorageError
      fail_insert_call      the Nth insert_movements call raises StockStorageError
      fail_balance_call     the Nth apply_balance_delta call raises StockStorageError
      fail_delete           delete_movements raises StockStorageError
    """

    def __init__(self):
        self.balances = {}
        self.movements = []
        self.transfers = {}
        self.memberships = []
        self.locations = {}
        self.products = {}

        self.ledger_missing = False
        self.ledger_error = False
        self.fail_insert_call = None
        self.fail_balance_call = None
        self.fail_delete = False

        self.insert_calls = 0
        self.balance_calls = 0
        self.commits = 0
        self.rollbacks = 0
        self._clock = datetime(2026, 1, 1, 8, 0, 0)
        self._snapshot = self._state()

    # -- helpers used by tests ---------------------------------------------------

    def _state(self):
        return copy.deepcopy((self.balances, self.movements, self.transfers, self.memberships))

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def add_location(self, name: str) -> uuid.UUID:
        loc_id = uuid.uuid4()
        self.locations[loc_id] = {"id": loc_id, "name": name}
        return loc_id

    def add_product(self, name: str, unit: str = "KG") -> uuid.UUID:
        product_id = uuid.uuid4()
        self.products[product_id] = {
            "id": product_id,
            "name": name,
            "category": None,
            "default_unit_label": unit,
            "is_active": True,
        }
        return product_id

    def add_membership(self, user_id, location_id, role: str = "operacao", is_active: bool = True) -> dict:
        m = {
            "id": uuid.uuid4(),
            "user_id": user_id,
            "location_id": location_id,
            "role": role,
            "is_active": is_active,
            "created_at": self._tick(),
        }
        self.memberships.append(m)
        self._snapshot = self._state()
        return m

    def set_balance(self, location_id, product_id, unit_label: str, qty) -> None:
        self.balances[(location_id, product_id, unit_label)] = Decimal(str(qty))
        self._snapshot = self._state()

    def balance(self, location_id, product_id, unit_label: str) -> Decimal:
        return self.balances.get((location_id, product_id, unit_label), Decimal("0"))

    def _with_name(self, row: dict) -> dict:
        product = self.products.get(row["product_id"]) or {}
        return {**row, "product_name": product.get("name")}

    # -- transaction control -----------------------------------------------------

    async def commit(self):
        self.commits += 1
        self._snapshot = self._state()

    async def rollback(self):
        self.rollbacks += 1
        self.balances, self.movements, self.transfers, self.memberships = copy.deepcopy(self._snapshot)

    # -- balances ----------------------------------------------------------------

    async def get_balance(self, location_id, product_id, unit_label):
        return self.balance(location_id, product_id, unit_label)

    async def apply_balance_delta(self, location_id, product_id, unit_label, delta, *, allow_negative=False):
        self.balance_calls += 1
        if self.fail_balance_call is not None and self.balance_calls == self.fail_balance_call:
            raise StockStorageError("Failed to update stock balance: injected")
        key = (location_id, product_id, unit_label)
        current = self.balances.get(key, Decimal("0"))
        if delta < 0 and not allow_negative and current + delta < 0:
            raise InsufficientBalanceError(
                product_id=product_id, unit_label=unit_label, available=current, requested=-delta
            )
        self.balances[key] = current + delta
        return {
            "location_id": location_id,
            "product_id": product_id,
            "unit_label": unit_label,
            "qty_balance": self.balances[key],
        }

    async def list_current_stock(self, location_id):
        rows = []
        for (loc, prod, unit), qty in self.balances.items():
            if loc != location_id:
                continue
            product = self.products.get(prod) or {}
            rows.append(
                {
                    "location_id": loc,
                    "product_id": prod,
                    "product_name": product.get("name"),
                    "category": product.get("category"),
                    "unit_label": unit,
                    "qty_balance": qty,
                }
            )
        return sorted(rows, key=lambda r: r["qty_balance"], reverse=True)

    # -- ledger --------------------------------------------------------------------

    async def insert_movements(self, rows):
        self.insert_calls += 1
        if self.ledger_missing:
            raise LedgerUnavailableError("Stock ledger table is missing: injected")
        if self.ledger_error or self.insert_calls == self.fail_insert_call:
            raise StockStorageError("Failed to record stock movements: injected")
        out = []
        for r in rows:
            stored = {**copy.deepcopy(r), "created_at": self._tick()}
            self.movements.append(stored)
            out.append(dict(stored))
        return out

    async def insert_movement(self, row):
        return (await self.insert_movements([row]))[0]

    async def delete_movements(self, correlation_id):
        if self.fail_delete:
            raise StockStorageError("Failed to delete movements: injected")
        before = len(self.movements)
        self.movements = [m for m in self.movements if m.get("correlation_id") != correlation_id]
        return before - len(self.movements)

    async def list_movements(self, location_id, *, movement_type=None, date_from=None, date_to=None, limit=1000):
        rows = [
            self._with_name(m)
            for m in self.movements
            if m["location_id"] == location_id and (not movement_type or m["movement_type"] == movement_type)
        ]
        return sorted(rows, key=lambda r: r["created_at"], reverse=True)[:limit]

    async def list_transfer_keys(self, location_id, *, direction=None, date_from=None, date_to=None, limit=200):
        latest = {}
        for m in self.movements:
            if m["location_id"] != location_id or m["movement_type"] != "TRANSFER":
                continue
            if direction and m["direction"] != direction:
                continue
            key = transfer_key(m)
            latest[key] = max(latest.get(key, m["created_at"]), m["created_at"])
        return sorted(latest, key=lambda k: latest[k], reverse=True)[:limit]

    async def list_transfer_rows_by_keys(self, keys, location_ids):
        keys, ids = set(keys), set(location_ids)
        rows = [
            self._with_name(m)
            for m in self.movements
            if m["movement_type"] == "TRANSFER" and m["location_id"] in ids and transfer_key(m) in keys
        ]
        return sorted(rows, key=lambda r: r["created_at"], reverse=True)

    async def list_transfer_rows(self, transfer_id):
        tid = str(transfer_id)
        rows = []
        for m in self.movements:
            if m["movement_type"] != "TRANSFER":
                continue
            details = m.get("details") or {}
            if (
                m.get("correlation_id") == transfer_id
                or details.get("transfer_id") == tid
                or details.get("transferId") == tid
                or m["id"] == transfer_id
            ):
                rows.append(self._with_name(m))
        return sorted(rows, key=lambda r: r["created_at"])

    # -- transfer headers ------------------------------------------------------------

    async def create_transfer(self, *, transfer_id, from_location_id, to_location_id, notes, item_count, created_by_user_id):
        header = {
            "id": transfer_id,
            "from_location_id": from_location_id,
            "to_location_id": to_location_id,
            "status": "PENDING",
            "notes": notes,
            "item_count": item_count,
            "created_by_user_id": created_by_user_id,
            "created_at": self._tick(),
        }
        self.transfers[transfer_id] = header
        return dict(header)

    async def set_transfer_status(self, transfer_id, status):
        if transfer_id in self.transfers:
            self.transfers[transfer_id]["status"] = status

    async def get_transfer(self, transfer_id):
        header = self.transfers.get(transfer_id)
        return dict(header) if header else None

    async def list_pending_transfers(self, older_than):
        return [
            dict(t)
            for t in self.transfers.values()
            if t["status"] == "PENDING" and t["created_at"] < older_than
        ]

    # -- memberships & locations ---------------------------------------------------------

    async def get_active_membership(self, user_id):
        active = [m for m in self.memberships if m["user_id"] == user_id and m["is_active"]]
        if not active:
            return None
        return dict(max(active, key=lambda m: m["created_at"]))

    async def has_active_membership(self, user_id, location_id):
        return any(
            m["user_id"] == user_id and m["location_id"] == location_id and m["is_active"]
            for m in self.memberships
        )

    async def list_member_location_ids(self, user_id):
        return [m["location_id"] for m in self.memberships if m["user_id"] == user_id and m["is_active"]]

    async def list_locations(self, location_ids):
        rows = [dict(self.locations[i]) for i in location_ids if i in self.locations]
        return sorted(rows, key=lambda r: r["name"].lower())

    async def list_memberships(self, location_id=None):
        return [dict(m) for m in self.memberships if not location_id or m["location_id"] == location_id]

    async def create_membership(self, *, user_id, location_id, role):
        m = {
            "id": uuid.uuid4(),
            "user_id": user_id,
            "location_id": location_id,
            "role": role,
            "is_active": True,
            "created_at": self._tick(),
        }
        self.memberships.append(m)
        return dict(m)

    async def update_membership(self, membership_id, **values):
        for m in self.memberships:
            if m["id"] == membership_id:
                if values.get("role") is not None:
                    m["role"] = values["role"]
                if values.get("is_active") is not None:
                    m["is_active"] = bool(values["is_active"])
                return dict(m)
        return None

    # -- products ------------------------------------------------------------------

    async def get_product(self, product_id):
        product = self.products.get(product_id)
        return dict(product) if product else None

    async def search_products(self, q, limit):
        rows = [
            {"id": p["id"], "name": p["name"], "default_unit_label": p["default_unit_label"]}
            for p in self.products.values()
            if p["is_active"] and (not q or q.lower() in p["name"].lower())
        ]
        return sorted(rows, key=lambda r: r["name"].lower())[:limit]


@pytest.fixture
def store():
    return FakeStockStore()


@pytest.fixture
def user():
    return SimpleNamespace(id=uuid.uuid4(), email="estoque@example.com", is_active=True, is_superuser=False)


@pytest.fixture
def two_locations(store, user):
    """Origin A and destination B, the user is a member of both, A holds 10 KG of flour."""
    loc_a = store.add_location("Unidade A")
    loc_b = store.add_location("Unidade B")
    flour = store.add_product("Farinha")
    store.add_membership(user.id, loc_b)
    # A is joined last so it is the active membership.
    store.add_membership(user.id, loc_a)
    store.set_balance(loc_a, flour, "KG", "10")
    return SimpleNamespace(a=loc_a, b=loc_b, flour=flour)


@pytest.fixture
def client(store, user):
    from fastapi import HTTPException
    from fastapi.testclient import TestClient

    from core.auth import current_active_superuser, current_active_user
    from main import app
    from services.store import get_stock_store

    def _superuser():
        if not user.is_superuser:
            raise HTTPException(status_code=403, detail="Forbidden")
        return user

    app.dependency_overrides[get_stock_store] = lambda: store
    app.dependency_overrides[current_active_user] = lambda: user
    app.dependency_overrides[current_active_superuser] = _superuser
    # No context manager: the lifespan would try to reach the database.
    yield TestClient(app)
    app.dependency_overrides.clear()
