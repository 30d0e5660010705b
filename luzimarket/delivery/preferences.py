"""
preferences.py: Server-side persistence of delivery preferences.

The server session row holds the zone chosen during that session; the users
row holds the durable preference. Guest choices win on login: a zone recorded
on the guest session overwrites whatever the account had saved before.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from luzimarket.delivery.catalog import ZoneCatalog
from luzimarket.delivery.schemas import DeliveryZone
from luzimarket.errors import InvalidSelection, NoActiveSession, Unauthorized
from luzimarket.identity.schemas import SessionRecord, SubjectContext
from luzimarket.store import Store

logger = logging.getLogger(__name__)


@dataclass
class RestoredZone:
    zone_id: str
    state_code: Optional[str]
    zone: Optional[DeliveryZone] = None
    session: Optional[SessionRecord] = None


async def update_session_zone(
    store: Store,
    catalog: ZoneCatalog,
    subject: SubjectContext,
    zone_id: str,
) -> tuple[SessionRecord, DeliveryZone]:
    """
    Record zone_id on the subject's session, and on the account when authenticated.

    Raises:
        InvalidSelection: zone unknown or deactivated
        NoActiveSession: the session row no longer exists
    """
    zone = await catalog.get_active_zone(zone_id)
    if zone is None:
        raise InvalidSelection()
    session = await store.set_session_zone(subject.session_id, zone.id)
    if session is None:
        raise NoActiveSession()
    if subject.is_authenticated and session.subject_id is not None:
        await store.set_preferred_zone(session.subject_id, zone.id)
    logger.info(
        "Session zone updated session_id=%s zone_id=%s durable=%s",
        session.session_id,
        zone.id,
        subject.is_authenticated,
    )
    return session, zone


async def restore_preferences(
    store: Store,
    catalog: ZoneCatalog,
    subject: SubjectContext,
) -> Optional[RestoredZone]:
    """
    Copy the account's durable zone onto the current session.

    Returns None when nothing is saved. A saved zone that no longer resolves
    is returned unresolved (zone None) so the caller can tell the user; the
    durable row itself is left as is.
    """
    if not subject.is_authenticated or subject.subject_id is None:
        raise Unauthorized()
    user = await store.get_user(subject.subject_id)
    if user is None:
        raise Unauthorized()
    zone_id = user.preferred_delivery_zone_id
    if not zone_id:
        return None
    zone = await catalog.get_active_zone(zone_id)
    if zone is None:
        logger.info("Durable zone no longer resolves user_id=%s zone_id=%s", user.user_id, zone_id)
        retired = await store.get_zone(zone_id)
        return RestoredZone(zone_id=zone_id, state_code=retired.state_code if retired else None)
    session = await store.set_session_zone(subject.session_id, zone.id)
    if session is None:
        raise NoActiveSession()
    return RestoredZone(zone_id=zone.id, state_code=zone.state_code, zone=zone, session=session)


async def merge_session_into_account(
    store: Store,
    catalog: ZoneCatalog,
    session: SessionRecord,
    user_id: str,
) -> Optional[str]:
    """
    Called once when a guest session becomes authenticated.

    A live zone on the session overwrites the account's durable preference.
    Without one, the durable preference (if still live) becomes the session's.
    Returns the zone id now active for the session, if any.
    """
    if session.delivery_zone_id:
        zone = await catalog.get_active_zone(session.delivery_zone_id)
        if zone is not None:
            await store.set_preferred_zone(user_id, zone.id)
            logger.info(
                "Merged guest zone into account session_id=%s user_id=%s zone_id=%s",
                session.session_id,
                user_id,
                zone.id,
            )
            return zone.id

    user = await store.get_user(user_id)
    if user is None or not user.preferred_delivery_zone_id:
        return None
    zone = await catalog.get_active_zone(user.preferred_delivery_zone_id)
    if zone is None:
        return None
    await store.set_session_zone(session.session_id, zone.id)
    return zone.id
