"""
memory_store.py: In-process Store used by the test-suite and local runs.

Satisfies the same contract as store.SqlStore. Mutations of rotation
credentials happen under one asyncio.Lock, which gives redeem_rotation the
same single-winner guarantee the conditional UPDATE gives in PostgreSQL.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from luzimarket.delivery.schemas import DeliveryZone, StateOption
from luzimarket.errors import DuplicateAccount
from luzimarket.identity.schemas import SessionRecord, SubjectType, UserRecord

logger = logging.getLogger(__name__)


@dataclass
class _Rotation:
    session_id: str
    expires_at: datetime
    is_revoked: bool = False


class MemoryStore:
    def __init__(
        self,
        states: Sequence[StateOption] = (),
        zones: Sequence[DeliveryZone] = (),
    ) -> None:
        self._lock = asyncio.Lock()
        self.sessions: dict[str, SessionRecord] = {}
        self.rotations: dict[str, _Rotation] = {}
        self.users: dict[str, UserRecord] = {}
        self.states: list[StateOption] = list(states)
        self.zones: dict[str, DeliveryZone] = {z.id: z for z in zones}

    # --- Identity sessions ---

    async def create_session(
        self, subject_type: SubjectType, subject_id: Optional[str] = None
    ) -> SessionRecord:
        record = SessionRecord(
            session_id=str(uuid.uuid4()),
            subject_type=subject_type,
            subject_id=subject_id,
        )
        self.sessions[record.session_id] = record
        return record.model_copy()

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        record = self.sessions.get(session_id)
        return None if record is None else record.model_copy()

    async def promote_session(self, session_id: str, subject_id: str) -> SessionRecord:
        if session_id not in self.sessions:
            raise LookupError(f"Session '{session_id}' not found")
        record = self.sessions[session_id].model_copy(
            update={"subject_type": SubjectType.authenticated, "subject_id": subject_id}
        )
        self.sessions[session_id] = record
        return record.model_copy()

    async def set_session_zone(
        self, session_id: str, zone_id: Optional[str]
    ) -> Optional[SessionRecord]:
        if session_id not in self.sessions:
            return None
        record = self.sessions[session_id].model_copy(update={"delivery_zone_id": zone_id})
        self.sessions[session_id] = record
        return record.model_copy()

    async def revoke_session(self, session_id: str, revoked_at: datetime) -> None:
        async with self._lock:
            if session_id in self.sessions:
                self.sessions[session_id] = self.sessions[session_id].model_copy(
                    update={"revoked": True}
                )
            for rotation in self.rotations.values():
                if rotation.session_id == session_id:
                    rotation.is_revoked = True

    # --- Rotation credentials ---

    async def store_rotation(
        self, session_id: str, token_hash: str, expires_at: datetime
    ) -> None:
        async with self._lock:
            for rotation in self.rotations.values():
                if rotation.session_id == session_id:
                    rotation.is_revoked = True
            self.rotations[token_hash] = _Rotation(session_id=session_id, expires_at=expires_at)

    async def redeem_rotation(self, token_hash: str, now: datetime) -> Optional[str]:
        async with self._lock:
            rotation = self.rotations.get(token_hash)
            if rotation is None or rotation.is_revoked or rotation.expires_at <= now:
                return None
            rotation.is_revoked = True
            return rotation.session_id

    # --- Accounts ---

    async def create_user(
        self, email: str, password_hash: str, name: Optional[str] = None
    ) -> UserRecord:
        if await self.get_user_by_email(email) is not None:
            raise DuplicateAccount()
        record = UserRecord(
            user_id=str(uuid.uuid4()),
            email=email,
            password_hash=password_hash,
            name=name,
        )
        self.users[record.user_id] = record
        return record.model_copy()

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        record = self.users.get(user_id)
        return None if record is None else record.model_copy()

    async def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        for record in self.users.values():
            if record.email == email:
                return record.model_copy()
        return None

    async def set_preferred_zone(self, user_id: str, zone_id: Optional[str]) -> None:
        if user_id in self.users:
            self.users[user_id] = self.users[user_id].model_copy(
                update={"preferred_delivery_zone_id": zone_id}
            )

    # --- Delivery catalog ---

    async def list_states(self) -> list[StateOption]:
        return sorted(self.states, key=lambda s: s.label)

    async def list_zones(self) -> list[DeliveryZone]:
        return list(self.zones.values())

    async def get_zone(self, zone_id: str) -> Optional[DeliveryZone]:
        return self.zones.get(zone_id)

    async def seed_catalog(
        self, states: Sequence[StateOption], zones: Sequence[DeliveryZone]
    ) -> bool:
        if self.states:
            return False
        self.states = list(states)
        self.zones = {z.id: z for z in zones}
        logger.info("Seeded in-memory catalog states=%d zones=%d", len(states), len(zones))
        return True
