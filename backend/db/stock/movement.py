import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base


class StockMovement(Base):
    __tablename__ = "stock_movements"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    location_id = Column(
        UUID(as_uuid=True),
        ForeignKey("locations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = Column(
        UUID(as_uuid=True),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    unit_label = Column(String(30), nullable=False)

    qty_delta = Column(Numeric(14, 3), nullable=False)
    direction = Column(Text, nullable=False)  # 'IN' | 'OUT'
    movement_type = Column(Text, nullable=False, default="ADJUSTMENT", index=True)  # 'ADJUSTMENT' | 'TRANSFER'
    reason = Column(String(60), nullable=False, default="adjustment")
    source = Column(String(60), nullable=False, default="api")

    correlation_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    details = Column(JSONB, nullable=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now(), index=True)
    created_by_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    location = relationship("Location")
    product = relationship("Product")
