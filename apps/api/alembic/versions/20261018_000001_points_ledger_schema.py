"""create points ledger schema

Revision ID: 20261018_000001
Revises:
Create Date: 2026-10-18 00:00:01.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261018_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("nickname", sa.String(), nullable=True),
        sa.Column("role", sa.String(), server_default="consumer", nullable=False),
        sa.Column("points", sa.Integer(), server_default="0", nullable=False),
        sa.Column("lifetime_points", sa.Integer(), server_default="0", nullable=False),
        sa.Column("level", sa.Integer(), server_default="1", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("points >= 0", name="ck_users_points_non_negative"),
        sa.CheckConstraint("lifetime_points >= 0", name="ck_users_lifetime_points_non_negative"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)

    op.create_table(
        "point_rules",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("rule_name", sa.String(), nullable=False),
        sa.Column("rule_type", sa.String(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("conditions", sa.JSON(), nullable=True),
        sa.Column("daily_limit", sa.Integer(), nullable=True),
        sa.Column("total_limit", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("rule_name"),
    )
    op.create_index(op.f("ix_point_rules_action"), "point_rules", ["action"], unique=False)

    op.create_table(
        "point_transactions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("reference_id", sa.String(), nullable=True),
        sa.Column("reference_type", sa.String(), nullable=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("idempotency_key", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_point_transactions_amount_positive"),
        sa.CheckConstraint("type IN ('EARN', 'SPEND')", name="ck_point_transactions_type"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key"),
    )
    op.create_index(op.f("ix_point_transactions_user_id"), "point_transactions", ["user_id"], unique=False)
    op.create_index(op.f("ix_point_transactions_created_at"), "point_transactions", ["created_at"], unique=False)
    op.create_index(
        "ix_point_transactions_user_created",
        "point_transactions",
        ["user_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_point_transactions_user_source_created",
        "point_transactions",
        ["user_id", "source", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_point_transactions_user_source_created", table_name="point_transactions")
    op.drop_index("ix_point_transactions_user_created", table_name="point_transactions")
    op.drop_index(op.f("ix_point_transactions_created_at"), table_name="point_transactions")
    op.drop_index(op.f("ix_point_transactions_user_id"), table_name="point_transactions")
    op.drop_table("point_transactions")
    op.drop_index(op.f("ix_point_rules_action"), table_name="point_rules")
    op.drop_table("point_rules")
    op.drop_index(op.f("ix_users_email"), table_name="users")
    op.drop_table("users")
