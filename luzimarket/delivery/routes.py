"""
Delivery catalog HTTP routes: GET /api/states
                                GET /api/delivery-zones?state=&active=&sort=

Read-only reference data; no authentication required.
"""
from __future__ import annotations

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query

from luzimarket.delivery.catalog import ZoneCatalog
from luzimarket.delivery.schemas import DeliveryZone, StateOption
from luzimarket.dependencies import get_catalog
from luzimarket.schemas import ErrorResponse

router = APIRouter(prefix="/api", tags=["delivery"], responses={422: {"model": ErrorResponse}})
logger = logging.getLogger(__name__)


@router.get("/states", response_model=list[StateOption])
async def list_states(catalog: ZoneCatalog = Depends(get_catalog)) -> list[StateOption]:
    return await catalog.list_states()


@router.get("/delivery-zones", response_model=list[DeliveryZone])
async def list_delivery_zones(
    state: Optional[str] = Query(default=None, description="State code, e.g. 'coahuila'"),
    active: Optional[bool] = Query(default=None),
    sort: Optional[Literal["name", "fee"]] = Query(default=None),
    catalog: ZoneCatalog = Depends(get_catalog),
) -> list[DeliveryZone]:
    """
    Delivery zones, one per city name (active first, then cheapest).
    An unknown state yields an empty list rather than an error.
    """
    zones = await catalog.list_zones(state_code=state, active=active, sort=sort)
    logger.debug("Listed zones state=%s active=%s count=%d", state, active, len(zones))
    return zones
