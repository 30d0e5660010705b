"""
models/user.py: SQLAlchemy ORM model for storefront accounts.

Table: users
preferred_delivery_zone_id is the durable delivery preference; the state is
derived from the zone's state_code.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from luzimarket.database import Base


class UserORM(Base):
    """
    ORM model for a registered customer.

    password_hash: bcrypt digest. The plaintext password is never stored or logged.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="Lowercased login e-mail",
    )
    password_hash: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="customer",
        comment="customer | employee | admin | vendor",
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    preferred_delivery_zone_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("delivery_zones.id"),
        nullable=True,
        comment="Durable delivery preference; survives across sessions and devices",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
