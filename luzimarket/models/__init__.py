"""
models/__init__.py: imports all ORM models so Alembic's env.py
sees them via Base.metadata when generating migrations.

Import order follows FK dependencies: reference data, then users, then sessions.
"""
from luzimarket.models.delivery_zone import DeliveryZoneORM, StateORM
from luzimarket.models.user import UserORM
from luzimarket.models.session import SessionORM
from luzimarket.models.refresh_token import RefreshTokenORM

__all__ = ["StateORM", "DeliveryZoneORM", "UserORM", "SessionORM", "RefreshTokenORM"]
