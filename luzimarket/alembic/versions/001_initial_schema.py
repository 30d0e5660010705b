"""initial_schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-17 00:00:00.000000 UTC

Creates the reference catalog (states, delivery_zones) and the identity
tables (users, sessions).
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "states",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("label", sa.String(100), nullable=False),
        sa.Column("value", sa.String(50), nullable=False, comment="Stable state code, e.g. 'nuevo-leon'"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("value"),
    )
    op.create_table(
        "delivery_zones",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("fee", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("state_code", sa.String(50), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["state_code"], ["states.value"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_delivery_zones_state_code", "delivery_zones", ["state_code"])

    op.create_table(
        "users",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, comment="Lowercased login e-mail"),
        sa.Column("password_hash", sa.String(100), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, comment="customer | employee | admin | vendor"),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column(
            "preferred_delivery_zone_id",
            sa.String(36),
            nullable=True,
            comment="Durable delivery preference; survives across sessions and devices",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["preferred_delivery_zone_id"], ["delivery_zones.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_table(
        "sessions",
        sa.Column("id", sa.String(36), nullable=False, comment="Session UUID; the sid claim of every access token"),
        sa.Column("user_id", sa.String(36), nullable=True),
        sa.Column("is_guest", sa.Boolean(), nullable=False),
        sa.Column(
            "delivery_zone_id",
            sa.String(36),
            nullable=True,
            comment="Zone chosen during this session (guest or authenticated)",
        ),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["delivery_zone_id"], ["delivery_zones.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sessions_user_id", "sessions", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_sessions_user_id", table_name="sessions")
    op.drop_table("sessions")
    op.drop_table("users")
    op.drop_index("ix_delivery_zones_state_code", table_name="delivery_zones")
    op.drop_table("delivery_zones")
    op.drop_table("states")
