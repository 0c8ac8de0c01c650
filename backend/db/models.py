"""Import every model so Base.metadata knows all tables."""

from db.users import User  # noqa: F401
from db.location import Location, Membership  # noqa: F401
from db.product import Product  # noqa: F401
from db.stock.movement import StockMovement  # noqa: F401
from db.stock.balance import StockBalance  # noqa: F401
from db.stock.transfer import StockTransfer  # noqa: F401
