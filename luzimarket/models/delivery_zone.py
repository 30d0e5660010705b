"""
models/delivery_zone.py: Reference tables for the delivery catalog.

Tables: states, delivery_zones
fee is stored in cents (7500 == $75.00 MXN). A zone belongs to exactly one
state through state_code -> states.value.
"""
import uuid
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from luzimarket.database import Base


class StateORM(Base):
    __tablename__ = "states"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    label: Mapped[str] = mapped_column(String(100), nullable=False)
    value: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        comment="Stable state code, e.g. 'nuevo-leon'",
    )


class DeliveryZoneORM(Base):
    __tablename__ = "delivery_zones"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    fee: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    state_code: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("states.value"),
        nullable=False,
        index=True,
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
