import asyncio
import sys
from pathlib import Path
from decimal import Decimal

"""
Seed demo data (locations, products, memberships, opening stock) into the Postgres DB.

This script can be run from either:
- backend/: `uv run python scripts/seed_demo_data.py`
- repo root: `uv run python backend/scripts/seed_demo_data.py`
"""

# Allow running from repo root by ensuring `backend/` is on sys.path
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from sqlalchemy import func, select

from db.database import async_session_maker, create_db_and_tables
from db.users import User
from db.location import Location, Membership
from db.product import Product
from schemas.stock import StockMovementCreate
from services.stock import get_balance, move_stock
from services.store import SqlStockStore

from fastapi_users.password import PasswordHelper


password_helper = PasswordHelper()

LOCATIONS = ["Cozinha Central", "Unidade Centro", "Unidade Praia"]

PRODUCTS = [
    # name, category, unit, opening qty at the central kitchen
    ("Farinha de Trigo", "Secos", "KG", Decimal("50")),
    ("Açúcar Cristal", "Secos", "KG", Decimal("30")),
    ("Leite Integral", "Laticínios", "L", Decimal("24")),
    ("Ovos", "Proteínas", "UN", Decimal("180")),
    ("Manteiga", "Laticínios", "KG", Decimal("8.5")),
]


async def get_or_create_user(session, email: str, password: str) -> User:
    result = await session.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user:
        return user

    user = User(
        email=email,
        hashed_password=password_helper.hash(password),
        full_name="Administrador",
        is_active=True,
        is_superuser=True,
        is_verified=True,
    )
    session.add(user)
    await session.flush()
    return user


async def get_or_create_location(session, name: str) -> Location:
    result = await session.execute(
        select(Location).where(func.lower(Location.name) == name.strip().lower())
    )
    location = result.scalar_one_or_none()
    if location:
        return location

    location = Location(name=name.strip(), is_active=True)
    session.add(location)
    await session.flush()
    return location


async def get_or_create_product(session, name: str, category: str, unit: str) -> Product:
    result = await session.execute(
        select(Product).where(func.lower(Product.name) == name.strip().lower())
    )
    product = result.scalar_one_or_none()
    if product:
        product.category = category
        product.default_unit_label = unit
        await session.flush()
        return product

    product = Product(name=name.strip(), category=category, default_unit_label=unit, is_active=True)
    session.add(product)
    await session.flush()
    return product


async def ensure_membership(session, user_id, location_id, role: str) -> None:
    result = await session.execute(
        select(Membership).where(
            Membership.user_id == user_id,
            Membership.location_id == location_id,
            Membership.is_active == True,  # noqa: E712
        )
    )
    if result.scalar_one_or_none():
        return
    session.add(Membership(user_id=user_id, location_id=location_id, role=role, is_active=True))
    await session.flush()


async def main() -> None:
    await create_db_and_tables()

    async with async_session_maker() as session:
        user = await get_or_create_user(session, "admin@gestao.local", "admin123")

        locations = [await get_or_create_location(session, name) for name in LOCATIONS]
        for loc in locations:
            await ensure_membership(session, user.id, loc.id, "admin")

        products = []
        for name, category, unit, qty in PRODUCTS:
            products.append((await get_or_create_product(session, name, category, unit), unit, qty))
        await session.commit()

        store = SqlStockStore(session)
        central = locations[0]
        for product, unit, qty in products:
            # Top up to the opening quantity; re-running does not double it.
            current = await get_balance(store, central.id, product.id, unit)
            delta = qty - current
            if delta <= 0:
                continue
            await move_stock(
                store,
                StockMovementCreate(
                    location_id=central.id,
                    product_id=product.id,
                    unit_label=unit,
                    qty_delta=delta,
                    reason="saldo inicial",
                    source="seed",
                ),
                user_id=user.id,
            )

    print(f"Seeded {len(LOCATIONS)} locations and {len(PRODUCTS)} products for admin@gestao.local")


if __name__ == "__main__":
    asyncio.run(main())
