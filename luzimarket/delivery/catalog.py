"""
catalog.py: The live zone catalog: states, zones by state, and resolution
of stored (state, zone) references.

Zones are filtered by state and active flag, then deduplicated by name keeping
the active zone first and the cheapest one second, as the storefront lists
one option per city.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional

import redis.asyncio as aioredis

from luzimarket.cache import get_zone_cache, make_zones_key, set_zone_cache
from luzimarket.delivery.schemas import DeliveryZone, StateOption
from luzimarket.store import Store

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Reference data; inserted at startup when the catalog is empty
# ---------------------------------------------------------------------------
SEED_STATES: list[StateOption] = [
    StateOption(value="coahuila", label="Coahuila"),
    StateOption(value="chihuahua", label="Chihuahua"),
    StateOption(value="durango", label="Durango"),
    StateOption(value="nuevo-leon", label="Nuevo León"),
    StateOption(value="cdmx", label="Ciudad de México"),
]

SEED_ZONES: list[DeliveryZone] = [
    DeliveryZone(id="1", name="Torreón", fee=5000, state_code="coahuila",
                 description="Entrega en Torreón, Coahuila - $50 pesos"),
    DeliveryZone(id="2", name="Saltillo", fee=7500, state_code="coahuila",
                 description="Entrega en Saltillo, Coahuila - $75 pesos"),
    DeliveryZone(id="3", name="Monterrey", fee=12000, state_code="nuevo-leon",
                 description="Entrega en Monterrey, Nuevo León - $120 pesos"),
    DeliveryZone(id="4", name="Chihuahua", fee=14000, state_code="chihuahua",
                 description="Entrega en Chihuahua, Chihuahua - $140 pesos"),
    DeliveryZone(id="5", name="Ciudad Juárez", fee=15000, state_code="chihuahua",
                 description="Entrega en Ciudad Juárez, Chihuahua - $150 pesos"),
    DeliveryZone(id="6", name="Gómez Palacio", fee=6000, state_code="durango",
                 description="Entrega en Gómez Palacio, Durango - $60 pesos"),
    DeliveryZone(id="7", name="Lerdo", fee=6500, state_code="durango",
                 description="Entrega en Lerdo, Durango - $65 pesos"),
    DeliveryZone(id="8", name="CDMX", fee=18000, state_code="cdmx",
                 description="Entrega en Ciudad de México - $180 pesos"),
]

SORT_KEYS = ("name", "fee")


def filter_zones(
    zones: Iterable[DeliveryZone],
    state_code: Optional[str] = None,
    active: Optional[bool] = None,
) -> list[DeliveryZone]:
    """Filter by state and active flag, then keep one zone per name."""
    items = list(zones)
    if active is not None:
        items = [z for z in items if z.is_active == active]
    if state_code:
        normalized = state_code.lower()
        items = [z for z in items if z.state_code == normalized]

    unique: dict[str, DeliveryZone] = {}
    for zone in items:
        existing = unique.get(zone.name)
        if existing is None:
            unique[zone.name] = zone
            continue
        should_replace = (not existing.is_active and zone.is_active) or (
            existing.is_active == zone.is_active and zone.fee < existing.fee
        )
        if should_replace:
            unique[zone.name] = zone
    return list(unique.values())


def sort_zones(zones: list[DeliveryZone], sort: Optional[str]) -> list[DeliveryZone]:
    if sort == "name":
        return sorted(zones, key=lambda z: z.name.lower())
    if sort == "fee":
        return sorted(zones, key=lambda z: z.fee)
    return zones


class ZoneCatalog:
    """Read side of the catalog, with an optional Redis cache in front of the store."""

    def __init__(self, store: Store, redis: Optional[aioredis.Redis] = None) -> None:
        self.store = store
        self.redis = redis

    async def list_states(self) -> list[StateOption]:
        return await self.store.list_states()

    async def list_zones(
        self,
        state_code: Optional[str] = None,
        active: Optional[bool] = None,
        sort: Optional[str] = None,
    ) -> list[DeliveryZone]:
        key = make_zones_key(state_code, active)
        if self.redis is not None:
            cached = await get_zone_cache(self.redis, key)
            if cached is not None:
                return sort_zones([DeliveryZone.model_validate(z) for z in cached], sort)

        zones = filter_zones(await self.store.list_zones(), state_code, active)
        if self.redis is not None:
            await set_zone_cache(self.redis, key, [z.model_dump() for z in zones])
        return sort_zones(zones, sort)

    async def zones_for_state(self, state_code: str) -> list[DeliveryZone]:
        """Active, selectable zones of one state."""
        return await self.list_zones(state_code=state_code, active=True)

    async def get_active_zone(self, zone_id: str) -> Optional[DeliveryZone]:
        zone = await self.store.get_zone(zone_id)
        if zone is None or not zone.is_active:
            return None
        return zone
