"""
manager.py: Session Identity Manager.

Owns the current actor (guest or authenticated), issues credential pairs and
rotates them. Every failure surfaced to callers is the same Unauthorized.
No retries happen here; retry policy belongs to the caller.

Operations:
  issue(subject_type, subject_id?, session_id?) -> TokenPair
  refresh(rotation_token)                        -> TokenPair   (single-use rotation)
  validate(access_token)                         -> SubjectContext
  revoke(session_id)                             -> None        (logout)
"""
from __future__ import annotations

import logging
from typing import Optional

from luzimarket.errors import Unauthorized
from luzimarket.identity.schemas import SessionRecord, SubjectContext, SubjectType, TokenPair
from luzimarket.identity.tokens import CredentialCodec, hash_rotation, is_well_formed_rotation
from luzimarket.store import Store

logger = logging.getLogger(__name__)


class SessionIdentityManager:
    def __init__(self, store: Store, codec: Optional[CredentialCodec] = None) -> None:
        self.store = store
        self.codec = codec or CredentialCodec()

    async def _mint_pair(self, session: SessionRecord) -> TokenPair:
        access_token, _ = self.codec.mint_access(
            session.session_id, session.subject_type, session.subject_id
        )
        rotation_token, digest, rotation_expires_at = self.codec.mint_rotation()
        # Replaces any still-active rotation credential of this session
        await self.store.store_rotation(session.session_id, digest, rotation_expires_at)
        return TokenPair(
            access_token=access_token,
            refresh_token=rotation_token,
            expires_in=int(self.codec.access_ttl.total_seconds()),
            session_id=session.session_id,
            subject_type=session.subject_type,
            subject_id=session.subject_id,
        )

    async def issue(
        self,
        subject_type: SubjectType,
        subject_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> TokenPair:
        """
        Mint a credential pair on guest start, login or registration.

        subject_id is required iff subject_type is authenticated. When session_id
        names a live guest session it is carried forward (guest → authenticated);
        otherwise a new session is created.
        """
        if (subject_type == SubjectType.authenticated) != (subject_id is not None):
            raise ValueError("subject_id is required iff subject_type is authenticated")

        session = await self._carry_forward(session_id, subject_type, subject_id)
        if session is None:
            session = await self.store.create_session(subject_type, subject_id)

        pair = await self._mint_pair(session)
        logger.info(
            "Issued credentials session_id=%s subject_type=%s",
            session.session_id,
            subject_type.value,
        )
        return pair

    async def _carry_forward(
        self,
        session_id: Optional[str],
        subject_type: SubjectType,
        subject_id: Optional[str],
    ) -> Optional[SessionRecord]:
        if session_id is None:
            return None
        session = await self.store.get_session(session_id)
        if session is None or session.revoked:
            return None
        if session.subject_type == SubjectType.guest:
            if subject_type == SubjectType.guest:
                return session
            return await self.store.promote_session(session_id, subject_id)
        # Never hand an authenticated session over to someone else
        if session.subject_id == subject_id:
            return session
        return None

    async def refresh(self, rotation_token: str) -> TokenPair:
        """
        Redeem a rotation credential for a new pair bound to the same session.

        The presented credential is invalidated atomically by the store; a
        second presentation (replay or a losing concurrent refresh) fails.
        """
        if not is_well_formed_rotation(rotation_token):
            raise Unauthorized()
        session_id = await self.store.redeem_rotation(
            hash_rotation(rotation_token), self.codec.clock()
        )
        if session_id is None:
            logger.warning("Rotation credential rejected")
            raise Unauthorized()
        session = await self.store.get_session(session_id)
        if session is None or session.revoked:
            raise Unauthorized()
        pair = await self._mint_pair(session)
        logger.info("Rotated credentials session_id=%s", session_id)
        return pair

    async def validate(self, access_token: str) -> SubjectContext:
        """Check signature and expiry, then that the session has not been revoked."""
        context = self.codec.decode_access(access_token)
        session = await self.store.get_session(context.session_id)
        if (
            session is None
            or session.revoked
            or session.subject_type != context.subject_type
            or session.subject_id != context.subject_id
        ):
            raise Unauthorized()
        return context

    async def revoke(self, session_id: str) -> None:
        await self.store.revoke_session(session_id, self.codec.clock())
        logger.info("Session revoked session_id=%s", session_id)
