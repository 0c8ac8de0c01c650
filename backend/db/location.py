import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class Location(Base):
    """An establishment (restaurant unit, central kitchen) with its own stock."""

    __tablename__ = "locations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)

    memberships = relationship("Membership", back_populates="location", cascade="all, delete-orphan")


class Membership(Base):
    __tablename__ = "memberships"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    location_id = Column(UUID(as_uuid=True), ForeignKey("locations.id", ondelete="CASCADE"), nullable=False, index=True)

    # cliente|operacao|producao|estoque|fiscal|admin|entrega
    role = Column(Text, nullable=False, default="operacao")
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now(), index=True)

    location = relationship("Location", back_populates="memberships")
    user = relationship("User", back_populates="memberships")

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "location_id": self.location_id,
            "role": self.role,
            "is_active": bool(self.is_active),
            "created_at": self.created_at,
        }
