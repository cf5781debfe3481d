"""PointTransaction model: append-only ledger of point movements."""

from datetime import datetime, timezone
import uuid

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PointTransaction(Base):
    """Immutable ledger entry. Never updated or deleted once written."""

    __tablename__ = "point_transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_point_transactions_amount_positive"),
        CheckConstraint("type IN ('EARN', 'SPEND')", name="ck_point_transactions_type"),
        Index("ix_point_transactions_user_created", "user_id", "created_at"),
        Index("ix_point_transactions_user_source_created", "user_id", "source", "created_at"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    source = Column(String, nullable=False)
    reference_id = Column(String, nullable=True)
    reference_type = Column(String, nullable=True)
    description = Column(String, nullable=True)
    metadata_json = Column(JSON, nullable=True)
    idempotency_key = Column(String, nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)

    user = relationship("User", back_populates="point_transactions")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "amount": self.amount,
            "balance_after": self.balance_after,
            "source": self.source,
            "reference_id": self.reference_id,
            "reference_type": self.reference_type,
            "description": self.description,
            "metadata": self.metadata_json,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
