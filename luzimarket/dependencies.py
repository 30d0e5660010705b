"""
dependencies.py: FastAPI dependency wiring.

get_store is the single seam between routes and persistence: tests override it
with a MemoryStore and everything downstream (identity manager, catalog)
follows.
"""
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from luzimarket.database import get_db
from luzimarket.delivery.catalog import ZoneCatalog
from luzimarket.errors import Unauthorized
from luzimarket.identity.manager import SessionIdentityManager
from luzimarket.identity.schemas import SubjectContext
from luzimarket.store import SqlStore, Store

bearer_scheme = HTTPBearer(auto_error=False)


async def get_store(db: AsyncSession = Depends(get_db)) -> Store:
    return SqlStore(db)


async def get_identity_manager(store: Store = Depends(get_store)) -> SessionIdentityManager:
    return SessionIdentityManager(store)


async def get_catalog(request: Request, store: Store = Depends(get_store)) -> ZoneCatalog:
    # app.state.redis only exists once the lifespan has run
    redis = getattr(request.app.state, "redis", None)
    return ZoneCatalog(store, redis)


async def get_optional_subject(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    manager: SessionIdentityManager = Depends(get_identity_manager),
) -> Optional[SubjectContext]:
    """Subject of a valid bearer token, or None when absent or invalid."""
    if credentials is None:
        return None
    try:
        return await manager.validate(credentials.credentials)
    except Unauthorized:
        return None


async def get_current_subject(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    manager: SessionIdentityManager = Depends(get_identity_manager),
) -> SubjectContext:
    if credentials is None:
        raise Unauthorized()
    return await manager.validate(credentials.credentials)
