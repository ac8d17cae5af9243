#freshbite_cart/data/models/cart_session.py
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, JSON

from freshbite_cart.data.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CartSessionModel(Base):
    __tablename__ = "cart_sessions"

    id = Column(String, primary_key=True)
    session_id = Column(String, nullable=False, unique=True, index=True)

    #line items as camelCase dicts, insertion order
    items = Column(JSON, nullable=False, default=list)

    #optimistic locking, bumped by every write
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
