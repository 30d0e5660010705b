"""
models/session.py: SQLAlchemy ORM model for Identity Sessions.

Table: sessions

A session starts as a guest (user_id NULL) and may be promoted to an
authenticated session on login, keeping the same id. revoked_at is set on
logout; a revoked session never validates again.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from luzimarket.database import Base


class SessionORM(Base):
    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Session UUID; the sid claim of every access token",
    )
    user_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("users.id"),
        nullable=True,
        index=True,
    )
    is_guest: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    delivery_zone_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("delivery_zones.id"),
        nullable=True,
        comment="Zone chosen during this session (guest or authenticated)",
    )
    revoked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
