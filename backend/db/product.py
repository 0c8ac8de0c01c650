import uuid

from sqlalchemy import Boolean, Column, String, Text
from sqlalchemy.dialects.postgresql import UUID

from .database import Base


class Product(Base):
    """Catalog product shared by every location; balances are kept per location."""

    __tablename__ = "products"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    name = Column(String, nullable=False, unique=True, index=True)
    category = Column(Text, nullable=True)
    default_unit_label = Column(String(30), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
