"""Single-location movements against the in-memory store."""
import uuid
from decimal import Decimal

import pytest
from pydantic import ValidationError

from schemas.stock import CurrentLocationMovementCreate, StockMovementCreate
from services.errors import InsufficientBalanceError, StockStorageError
from services.stock import get_balance, list_current_stock, move_stock


def _movement(location_id, product_id, qty, unit="KG", **extra):
    return StockMovementCreate(location_id=location_id, product_id=product_id, unit_label=unit, qty_delta=qty, **extra)


@pytest.fixture
def shelf(store):
    loc = store.add_location("Unidade A")
    product = store.add_product("Arroz")
    return loc, product


async def test_missing_balance_reads_as_zero(store, shelf):
    loc, product = shelf
    assert await get_balance(store, loc, product, "kg") == Decimal("0")


async def test_credit_then_read(store, shelf, user):
    loc, product = shelf
    result = await move_stock(store, _movement(loc, product, "5"), user_id=user.id, strict=False)

    assert result["ok"] is True
    assert result["stock_balance"]["qty_balance"] == Decimal("5.000")
    assert await get_balance(store, loc, product, "KG") == Decimal("5")
    assert store.commits == 1

    mv = result["movement"]
    assert mv["direction"] == "IN"
    assert mv["movement_type"] == "ADJUSTMENT"
    assert mv["reason"] == "adjustment"
    assert mv["source"] == "api"
    assert mv["created_by_user_id"] == user.id


@pytest.mark.parametrize("qty", ["0.001", "3", "12.75"])
async def test_credit_then_debit_returns_to_start(store, shelf, qty):
    loc, product = shelf
    store.set_balance(loc, product, "KG", "2")

    await move_stock(store, _movement(loc, product, qty), strict=False)
    result = await move_stock(store, _movement(loc, product, f"-{qty}"), strict=False)

    assert result["stock_balance"]["qty_balance"] == Decimal("2")
    assert len(store.movements) == 2


async def test_unit_case_variants_share_one_balance(store, shelf):
    loc, product = shelf
    await move_stock(store, _movement(loc, product, "2", unit="kg"), strict=False)
    await move_stock(store, _movement(loc, product, "3", unit="KG"), strict=False)
    await move_stock(store, _movement(loc, product, "-1", unit=" Kg "), strict=False)

    assert await get_balance(store, loc, product, "kg") == Decimal("4")
    assert list(store.balances) == [(loc, product, "KG")]


async def test_debit_records_out_direction(store, shelf):
    loc, product = shelf
    store.set_balance(loc, product, "KG", "3")
    result = await move_stock(store, _movement(loc, product, "-1.25"), strict=False)

    assert result["movement"]["direction"] == "OUT"
    assert result["movement"]["qty_delta"] == Decimal("-1.250")
    assert store.balance(loc, product, "KG") == Decimal("1.750")


async def test_debit_beyond_balance_is_rejected(store, shelf):
    loc, product = shelf
    store.set_balance(loc, product, "KG", "2")

    with pytest.raises(InsufficientBalanceError) as exc:
        await move_stock(store, _movement(loc, product, "-3"), strict=False)

    assert "Available=2 requested=3" in exc.value.message
    assert store.balance(loc, product, "KG") == Decimal("2")
    assert store.movements == []


async def test_missing_ledger_table_still_updates_balance(store, shelf):
    loc, product = shelf
    store.ledger_missing = True

    result = await move_stock(store, _movement(loc, product, "7"), strict=True)

    assert result["ok"] is True
    assert result["movement"] is None
    assert store.balance(loc, product, "KG") == Decimal("7")


async def test_ledger_error_tolerated_when_not_strict(store, shelf):
    loc, product = shelf
    store.ledger_error = True

    result = await move_stock(store, _movement(loc, product, "1"), strict=False)

    assert result["movement"] is None
    assert store.balance(loc, product, "KG") == Decimal("1")


async def test_ledger_error_fatal_when_strict(store, shelf):
    loc, product = shelf
    store.ledger_error = True

    with pytest.raises(StockStorageError):
        await move_stock(store, _movement(loc, product, "1"), strict=True)

    assert store.balance(loc, product, "KG") == Decimal("0")
    assert store.rollbacks == 1


async def test_balance_failure_rolls_back_ledger_row(store, shelf):
    loc, product = shelf
    store.fail_balance_call = 1

    with pytest.raises(StockStorageError):
        await move_stock(store, _movement(loc, product, "4"), strict=False)

    assert store.movements == []
    assert store.balance(loc, product, "KG") == Decimal("0")


async def test_current_stock_lists_location_rows(store, shelf):
    loc, product = shelf
    other = store.add_location("Unidade B")
    store.set_balance(loc, product, "KG", "3")
    store.set_balance(other, product, "KG", "9")

    rows = await list_current_stock(store, loc)

    assert len(rows) == 1
    assert rows[0]["product_name"] == "Arroz"
    assert rows[0]["qty_balance"] == Decimal("3")


def test_zero_quantity_is_invalid():
    with pytest.raises(ValidationError) as exc:
        _movement(uuid.uuid4(), uuid.uuid4(), "0")
    assert "qty_delta cannot be 0" in str(exc.value)


@pytest.mark.parametrize("qty", ["abc", "", "NaN"])
def test_non_numeric_quantity_is_invalid(qty):
    with pytest.raises(ValidationError):
        _movement(uuid.uuid4(), uuid.uuid4(), qty)


def test_descriptor_defaults_and_comma_decimal():
    m = _movement(uuid.uuid4(), uuid.uuid4(), "1,5", unit=" un ", reason="  ", source=None)
    assert m.qty_delta == Decimal("1.500")
    assert m.unit_label == "UN"
    assert m.reason == "adjustment"
    assert m.source == "api"


def test_current_location_descriptor_defaults_source():
    m = CurrentLocationMovementCreate(product_id=uuid.uuid4(), unit_label="kg", qty_delta=2)
    assert m.source == "server_action"
