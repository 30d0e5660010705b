"""
Identity HTTP routes: POST  /api/auth/guest
                       POST  /api/auth/register
                       POST  /api/auth/login
                       POST  /api/auth/refresh
                       POST  /api/auth/logout
                       GET   /api/auth/session
                       PATCH /api/auth/update-session
                       POST  /api/auth/restore-preferences

Credential failures surface as a uniform 401 through the Unauthorized handler
in main.py; nothing here tells a caller why a token was rejected.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import JSONResponse

from luzimarket.delivery.catalog import ZoneCatalog
from luzimarket.delivery.preferences import (
    merge_session_into_account,
    restore_preferences,
    update_session_zone,
)
from luzimarket.dependencies import (
    get_catalog,
    get_current_subject,
    get_identity_manager,
    get_optional_subject,
    get_store,
)
from luzimarket.identity.accounts import authenticate, register_user
from luzimarket.identity.manager import SessionIdentityManager
from luzimarket.identity.schemas import (
    AuthResponse,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    RestorePreferencesResponse,
    SessionZoneOut,
    SessionZoneResponse,
    SubjectContext,
    SubjectType,
    TokenPair,
    UpdateSessionRequest,
    UserOut,
)
from luzimarket.schemas import ErrorResponse
from luzimarket.store import Store

router = APIRouter(
    prefix="/api/auth",
    tags=["auth"],
    responses={401: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
logger = logging.getLogger(__name__)


def _auth_response(pair: TokenPair, user_id: str, email: str, name: Optional[str]) -> AuthResponse:
    return AuthResponse(**pair.model_dump(), user=UserOut(id=user_id, email=email, name=name))


@router.post("/guest", response_model=TokenPair)
async def start_guest_session(
    manager: SessionIdentityManager = Depends(get_identity_manager),
) -> TokenPair:
    """Issue a credential pair for a new anonymous session."""
    return await manager.issue(SubjectType.guest)


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    store: Store = Depends(get_store),
    manager: SessionIdentityManager = Depends(get_identity_manager),
) -> AuthResponse:
    """Create an account and issue an authenticated credential pair. 409 on duplicate e-mail."""
    user = await register_user(store, body.email, body.password, body.name)
    pair = await manager.issue(SubjectType.authenticated, user.user_id)
    return _auth_response(pair, user.user_id, user.email, user.name)


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    guest: Optional[SubjectContext] = Depends(get_optional_subject),
    store: Store = Depends(get_store),
    catalog: ZoneCatalog = Depends(get_catalog),
    manager: SessionIdentityManager = Depends(get_identity_manager),
) -> AuthResponse:
    """
    Password login.

    With a valid guest bearer token the guest session is carried forward under
    the same sessionId and its delivery zone is merged into the account.
    """
    user = await authenticate(store, body.email, body.password)

    guest_session_id = None
    if guest is not None and guest.subject_type == SubjectType.guest:
        guest_session_id = guest.session_id

    pair = await manager.issue(SubjectType.authenticated, user.user_id, session_id=guest_session_id)

    session = await store.get_session(pair.session_id)
    if session is not None:
        await merge_session_into_account(store, catalog, session, user.user_id)

    logger.info("Login user_id=%s session_id=%s carried=%s", user.user_id, pair.session_id,
                guest_session_id == pair.session_id)
    return _auth_response(pair, user.user_id, user.email, user.name)


@router.post("/refresh", response_model=TokenPair)
async def refresh(
    body: RefreshRequest,
    manager: SessionIdentityManager = Depends(get_identity_manager),
) -> TokenPair:
    """Exchange a rotation credential for a fresh pair. The presented one is spent."""
    return await manager.refresh(body.refresh_token)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    subject: SubjectContext = Depends(get_current_subject),
    manager: SessionIdentityManager = Depends(get_identity_manager),
) -> Response:
    await manager.revoke(subject.session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/session", response_model=SubjectContext)
async def current_session(
    subject: SubjectContext = Depends(get_current_subject),
) -> SubjectContext:
    return subject


@router.patch("/update-session", response_model=SessionZoneResponse)
async def update_session(
    body: UpdateSessionRequest,
    subject: SubjectContext = Depends(get_current_subject),
    store: Store = Depends(get_store),
    catalog: ZoneCatalog = Depends(get_catalog),
) -> SessionZoneResponse:
    """Record the selected delivery zone on the session (and account, if authenticated)."""
    session, zone = await update_session_zone(store, catalog, subject, body.delivery_zone_id)
    return SessionZoneResponse(
        message="Session updated successfully",
        session=SessionZoneOut(id=session.session_id, delivery_zone_id=zone.id, delivery_zone=zone),
    )


@router.post(
    "/restore-preferences",
    response_model=RestorePreferencesResponse,
    responses={204: {"description": "No preferences to restore"}},
)
async def restore(
    subject: SubjectContext = Depends(get_current_subject),
    store: Store = Depends(get_store),
    catalog: ZoneCatalog = Depends(get_catalog),
):
    restored = await restore_preferences(store, catalog, subject)
    if restored is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    if restored.zone is None:
        body = RestorePreferencesResponse(
            message="Saved delivery zone is no longer available. Please select a valid location.",
            resolved=False,
            delivery_zone_id=restored.zone_id,
            state_code=restored.state_code,
        )
    else:
        body = RestorePreferencesResponse(
            message="Preferences restored successfully",
            resolved=True,
            delivery_zone_id=restored.zone_id,
            state_code=restored.state_code,
            session=SessionZoneOut(
                id=restored.session.session_id,
                delivery_zone_id=restored.zone.id,
                delivery_zone=restored.zone,
            ),
        )
    return JSONResponse(status_code=200, content=body.model_dump(mode="json", by_alias=True))
