"""User model with embedded point balance."""

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class User(Base):
    """User account. Point fields are only written by the ledger service."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_users_points_non_negative"),
        CheckConstraint("lifetime_points >= 0", name="ck_users_lifetime_points_non_negative"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, nullable=False, index=True)
    nickname = Column(String, nullable=True)
    role = Column(String, nullable=False, default="consumer", server_default="consumer")
    points = Column(Integer, nullable=False, default=0, server_default="0")
    lifetime_points = Column(Integer, nullable=False, default=0, server_default="0")
    level = Column(Integer, nullable=False, default=1, server_default="1")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    point_transactions = relationship("PointTransaction", back_populates="user")
