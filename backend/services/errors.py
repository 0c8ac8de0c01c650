"""Stock domain errors; routers translate them to HTTP responses."""

from decimal import Decimal
from typing import Optional
from uuid import UUID


class StockError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class StockValidationError(StockError):
    status_code = 400


class AuthenticationError(StockError):
    status_code = 401


class MembershipError(StockError):
    status_code = 403


class TransferNotFoundError(StockError):
    status_code = 404


class InsufficientBalanceError(StockError):
    status_code = 409

    def __init__(
        self,
        *,
        product_id: UUID,
        unit_label: str,
        available: Decimal,
        requested: Decimal,
        product_name: Optional[str] = None,
    ):
        self.product_id = product_id
        self.product_name = product_name
        self.unit_label = unit_label
        self.available = available
        self.requested = requested
        label = product_name or str(product_id)
        super().__init__(
            f"Insufficient balance for {label} ({unit_label}). "
            f"Available={_fmt(available)} requested={_fmt(requested)}"
        )


class StockStorageError(StockError):
    status_code = 500


class LedgerUnavailableError(StockStorageError):
    """The ledger table does not exist (PostgreSQL 42P01)."""


def _fmt(q: Decimal) -> str:
    # 10.000 -> "10", 2.500 -> "2.5"
    s = format(q.normalize(), "f")
    return s
