"""
store.py: Data access facade for Luzimarket.

Provides a consistent, high-level API for persisting and retrieving identity
sessions, rotation credentials, accounts and the delivery catalog.
Routes and services only talk to a Store; no route touches SQLAlchemy directly.

Design principles:
  - Store is a Protocol; SqlStore (PostgreSQL, here) and MemoryStore
    (memory_store.py, tests and local runs) both satisfy it
  - All methods are async and return domain Pydantic objects, not ORM instances
  - Uses flush() (not commit()); the get_db() dependency owns the transaction
  - Logs only ids; never tokens, digests, passwords or e-mail addresses
"""
import logging
from datetime import datetime
from typing import Optional, Protocol, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from luzimarket.delivery.schemas import DeliveryZone, StateOption
from luzimarket.errors import DuplicateAccount
from luzimarket.identity.schemas import SessionRecord, SubjectType, UserRecord
from luzimarket.models.delivery_zone import DeliveryZoneORM, StateORM
from luzimarket.models.refresh_token import RefreshTokenORM
from luzimarket.models.session import SessionORM
from luzimarket.models.user import UserORM

logger = logging.getLogger(__name__)


class Store(Protocol):
    # --- Identity sessions ---
    async def create_session(
        self, subject_type: SubjectType, subject_id: Optional[str] = None
    ) -> SessionRecord: ...

    async def get_session(self, session_id: str) -> Optional[SessionRecord]: ...

    async def promote_session(self, session_id: str, subject_id: str) -> SessionRecord: ...

    async def set_session_zone(
        self, session_id: str, zone_id: Optional[str]
    ) -> Optional[SessionRecord]: ...

    async def revoke_session(self, session_id: str, revoked_at: datetime) -> None: ...

    # --- Rotation credentials ---
    async def store_rotation(
        self, session_id: str, token_hash: str, expires_at: datetime
    ) -> None: ...

    async def redeem_rotation(self, token_hash: str, now: datetime) -> Optional[str]: ...

    # --- Accounts ---
    async def create_user(
        self, email: str, password_hash: str, name: Optional[str] = None
    ) -> UserRecord: ...

    async def get_user(self, user_id: str) -> Optional[UserRecord]: ...

    async def get_user_by_email(self, email: str) -> Optional[UserRecord]: ...

    async def set_preferred_zone(self, user_id: str, zone_id: Optional[str]) -> None: ...

    # --- Delivery catalog ---
    async def list_states(self) -> list[StateOption]: ...

    async def list_zones(self) -> list[DeliveryZone]: ...

    async def get_zone(self, zone_id: str) -> Optional[DeliveryZone]: ...

    async def seed_catalog(
        self, states: Sequence[StateOption], zones: Sequence[DeliveryZone]
    ) -> bool: ...


# ---------------------------------------------------------------------------
# ORM → domain conversion
# ---------------------------------------------------------------------------

def _session_record(orm: SessionORM) -> SessionRecord:
    return SessionRecord(
        session_id=orm.id,
        subject_type=SubjectType.guest if orm.is_guest else SubjectType.authenticated,
        subject_id=orm.user_id,
        delivery_zone_id=orm.delivery_zone_id,
        revoked=orm.revoked_at is not None,
    )


def _user_record(orm: UserORM) -> UserRecord:
    return UserRecord(
        user_id=orm.id,
        email=orm.email,
        password_hash=orm.password_hash,
        name=orm.name,
        preferred_delivery_zone_id=orm.preferred_delivery_zone_id,
    )


def _zone(orm: DeliveryZoneORM) -> DeliveryZone:
    return DeliveryZone(
        id=orm.id,
        name=orm.name,
        fee=orm.fee,
        state_code=orm.state_code,
        is_active=orm.is_active,
        description=orm.description,
    )


class SqlStore:
    """Store backed by PostgreSQL through one request-scoped AsyncSession."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # -----------------------------------------------------------------------
    # Identity sessions
    # -----------------------------------------------------------------------

    async def create_session(
        self, subject_type: SubjectType, subject_id: Optional[str] = None
    ) -> SessionRecord:
        orm = SessionORM(
            user_id=subject_id,
            is_guest=subject_type == SubjectType.guest,
        )
        self.db.add(orm)
        await self.db.flush()
        logger.info("Created session session_id=%s subject_type=%s", orm.id, subject_type.value)
        return _session_record(orm)

    async def _load_session(self, session_id: str) -> Optional[SessionORM]:
        result = await self.db.execute(select(SessionORM).where(SessionORM.id == session_id))
        return result.scalar_one_or_none()

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        orm = await self._load_session(session_id)
        return None if orm is None else _session_record(orm)

    async def promote_session(self, session_id: str, subject_id: str) -> SessionRecord:
        """Turn a guest session into an authenticated one, keeping its id."""
        orm = await self._load_session(session_id)
        if orm is None:
            raise LookupError(f"Session '{session_id}' not found")
        orm.user_id = subject_id
        orm.is_guest = False
        await self.db.flush()
        logger.info("Promoted session session_id=%s user_id=%s", session_id, subject_id)
        return _session_record(orm)

    async def set_session_zone(
        self, session_id: str, zone_id: Optional[str]
    ) -> Optional[SessionRecord]:
        orm = await self._load_session(session_id)
        if orm is None:
            return None
        orm.delivery_zone_id = zone_id
        await self.db.flush()
        logger.info("Updated session zone session_id=%s zone_id=%s", session_id, zone_id)
        return _session_record(orm)

    async def revoke_session(self, session_id: str, revoked_at: datetime) -> None:
        await self.db.execute(
            update(SessionORM)
            .where(SessionORM.id == session_id, SessionORM.revoked_at.is_(None))
            .values(revoked_at=revoked_at)
        )
        await self.db.execute(
            update(RefreshTokenORM)
            .where(RefreshTokenORM.session_id == session_id)
            .values(is_revoked=True)
        )
        await self.db.flush()
        logger.info("Revoked session session_id=%s", session_id)

    # -----------------------------------------------------------------------
    # Rotation credentials
    # -----------------------------------------------------------------------

    async def store_rotation(
        self, session_id: str, token_hash: str, expires_at: datetime
    ) -> None:
        """Insert a new rotation credential, revoking any still active for the session."""
        await self.db.execute(
            update(RefreshTokenORM)
            .where(
                RefreshTokenORM.session_id == session_id,
                RefreshTokenORM.is_revoked.is_(False),
            )
            .values(is_revoked=True)
        )
        self.db.add(
            RefreshTokenORM(
                session_id=session_id,
                token_hash=token_hash,
                expires_at=expires_at,
                is_revoked=False,
            )
        )
        await self.db.flush()

    async def redeem_rotation(self, token_hash: str, now: datetime) -> Optional[str]:
        """
        Compare-and-invalidate: flip one live row to revoked and return its session_id.

        The WHERE clause is re-evaluated under the row lock, so of two
        concurrent redemptions of the same digest only one gets a row back.
        """
        result = await self.db.execute(
            update(RefreshTokenORM)
            .where(
                RefreshTokenORM.token_hash == token_hash,
                RefreshTokenORM.is_revoked.is_(False),
                RefreshTokenORM.expires_at > now,
            )
            .values(is_revoked=True)
            .returning(RefreshTokenORM.session_id)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none()

    # -----------------------------------------------------------------------
    # Accounts
    # -----------------------------------------------------------------------

    async def create_user(
        self, email: str, password_hash: str, name: Optional[str] = None
    ) -> UserRecord:
        if await self.get_user_by_email(email) is not None:
            raise DuplicateAccount()
        orm = UserORM(email=email, password_hash=password_hash, name=name)
        self.db.add(orm)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            raise DuplicateAccount() from exc
        logger.info("Created user user_id=%s", orm.id)
        return _user_record(orm)

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        result = await self.db.execute(select(UserORM).where(UserORM.id == user_id))
        orm = result.scalar_one_or_none()
        return None if orm is None else _user_record(orm)

    async def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        result = await self.db.execute(
            select(UserORM).where(UserORM.email == email, UserORM.is_active.is_(True))
        )
        orm = result.scalar_one_or_none()
        return None if orm is None else _user_record(orm)

    async def set_preferred_zone(self, user_id: str, zone_id: Optional[str]) -> None:
        await self.db.execute(
            update(UserORM)
            .where(UserORM.id == user_id)
            .values(preferred_delivery_zone_id=zone_id)
        )
        await self.db.flush()
        logger.info("Saved preferred zone user_id=%s zone_id=%s", user_id, zone_id)

    # -----------------------------------------------------------------------
    # Delivery catalog
    # -----------------------------------------------------------------------

    async def list_states(self) -> list[StateOption]:
        result = await self.db.execute(select(StateORM).order_by(StateORM.label.asc()))
        return [StateOption(value=row.value, label=row.label) for row in result.scalars().all()]

    async def list_zones(self) -> list[DeliveryZone]:
        result = await self.db.execute(select(DeliveryZoneORM))
        return [_zone(row) for row in result.scalars().all()]

    async def get_zone(self, zone_id: str) -> Optional[DeliveryZone]:
        result = await self.db.execute(
            select(DeliveryZoneORM).where(DeliveryZoneORM.id == zone_id)
        )
        orm = result.scalar_one_or_none()
        return None if orm is None else _zone(orm)

    async def seed_catalog(
        self, states: Sequence[StateOption], zones: Sequence[DeliveryZone]
    ) -> bool:
        """Insert reference data when the catalog is empty. Returns True if seeded."""
        count = await self.db.scalar(select(func.count()).select_from(StateORM))
        if count:
            return False
        self.db.add_all(StateORM(value=s.value, label=s.label) for s in states)
        await self.db.flush()
        self.db.add_all(
            DeliveryZoneORM(
                id=z.id,
                name=z.name,
                fee=z.fee,
                state_code=z.state_code,
                is_active=z.is_active,
                description=z.description,
            )
            for z in zones
        )
        await self.db.flush()
        logger.info("Seeded catalog states=%d zones=%d", len(states), len(zones))
        return True
