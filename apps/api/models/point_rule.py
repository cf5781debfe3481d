"""PointRule model: reward/charge reference data."""

import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, true
from sqlalchemy.sql import func

from database import Base


class PointRule(Base):
    """Maps an action tag to a point amount with optional eligibility and caps."""

    __tablename__ = "point_rules"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    rule_name = Column(String, unique=True, nullable=False)
    rule_type = Column(String, nullable=False)
    action = Column(String, nullable=False, index=True)
    points = Column(Integer, nullable=False)
    conditions = Column(JSON, nullable=True)
    # Caps are point sums per user for this action: per local day / lifetime.
    daily_limit = Column(Integer, nullable=True)
    total_limit = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "rule_name": self.rule_name,
            "rule_type": self.rule_type,
            "action": self.action,
            "points": self.points,
            "conditions": self.conditions or {},
            "daily_limit": self.daily_limit,
            "total_limit": self.total_limit,
        }
