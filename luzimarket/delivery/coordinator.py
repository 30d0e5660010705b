"""
coordinator.py: Delivery Preference Coordinator.

Client-side state machine over the selected {state, zone} pair:

    NoSelection ──select_state──▶ StateSelected ──select_zone──▶ ZoneSelected
          ▲                             ▲                             │
          │                             └──── select_state (new) ─────┤
          │                                                        confirm
    restore() with a dead reference ──▶ Invalid                       ▼
                                                                  Confirmed

Zone lists are fetched asynchronously per state and fenced by a request
counter: a response for anything but the latest select_state is dropped.
Transient fetch failures are recorded on the coordinator and disable
confirm(); they are never raised from select_state() or restore().
"""
from __future__ import annotations

import logging
from typing import Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError

from luzimarket.delivery.catalog import ZoneCatalog
from luzimarket.delivery.schemas import (
    ConfirmResult,
    DeliveryPreference,
    DeliveryZone,
    SelectionStatus,
    StateOption,
)
from luzimarket.delivery.storage import SELECTED_STATE_KEY, SELECTED_ZONE_KEY, KeyValueStore
from luzimarket.errors import InvalidSelection, NoActiveSession, TransientFetchFailure
from luzimarket.identity.schemas import SubjectContext

logger = logging.getLogger(__name__)


class ZoneSource(Protocol):
    async def list_states(self) -> list[StateOption]: ...

    async def list_zones(self, state_code: str) -> list[DeliveryZone]: ...


class IdentitySource(Protocol):
    async def current_subject(self) -> Optional[SubjectContext]: ...


class DurablePreferences(Protocol):
    async def read(self, subject_id: str) -> Optional[DeliveryPreference]: ...

    async def write(self, subject_id: str, preference: DeliveryPreference) -> None: ...


class CatalogZoneSource:
    """ZoneSource reading the catalog in-process instead of over HTTP."""

    def __init__(self, catalog: ZoneCatalog) -> None:
        self.catalog = catalog

    async def list_states(self) -> list[StateOption]:
        try:
            return await self.catalog.list_states()
        except (SQLAlchemyError, OSError) as exc:
            raise TransientFetchFailure() from exc

    async def list_zones(self, state_code: str) -> list[DeliveryZone]:
        try:
            return await self.catalog.zones_for_state(state_code)
        except (SQLAlchemyError, OSError) as exc:
            raise TransientFetchFailure() from exc


class DeliveryPreferenceCoordinator:
    def __init__(
        self,
        zone_source: ZoneSource,
        identity: IdentitySource,
        storage: KeyValueStore,
        durable: DurablePreferences,
    ) -> None:
        self.zone_source = zone_source
        self.identity = identity
        self.storage = storage
        self.durable = durable

        self.status = SelectionStatus.no_selection
        self.states: list[StateOption] = []
        self.state_code: Optional[str] = None
        self.zones: list[DeliveryZone] = []
        self.zone: Optional[DeliveryZone] = None
        self.zones_loading = False
        self.fetch_error: Optional[str] = None
        self.error: Optional[str] = None
        self.message: Optional[str] = None
        self._zone_request = 0

    # -----------------------------------------------------------------------
    # Read-only views
    # -----------------------------------------------------------------------

    @property
    def can_confirm(self) -> bool:
        return (
            self.status in (SelectionStatus.zone_selected, SelectionStatus.confirmed)
            and self.zone is not None
            and not self.zones_loading
            and self.fetch_error is None
        )

    @property
    def preference(self) -> Optional[DeliveryPreference]:
        if self.state_code is None or self.zone is None:
            return None
        return DeliveryPreference(
            state_code=self.state_code,
            zone_id=self.zone.id,
            zone_fee=self.zone.fee,
            zone_name=self.zone.name,
        )

    # -----------------------------------------------------------------------
    # Fetching
    # -----------------------------------------------------------------------

    async def load_states(self) -> list[StateOption]:
        try:
            self.states = await self.zone_source.list_states()
        except TransientFetchFailure as exc:
            self.error = exc.message
            logger.warning("State lookup failed: %s", exc.message)
        return self.states

    async def _fetch_zones(self, state_code: str) -> bool:
        """Fetch zones for state_code. Returns False if failed or superseded."""
        self._zone_request += 1
        ticket = self._zone_request
        self.zones_loading = True
        self.fetch_error = None
        try:
            zones = await self.zone_source.list_zones(state_code)
        except TransientFetchFailure as exc:
            if ticket != self._zone_request:
                return False
            self.zones_loading = False
            self.fetch_error = exc.message
            self.error = exc.message
            logger.warning("Zone fetch failed state=%s", state_code)
            return False
        if ticket != self._zone_request or state_code != self.state_code:
            logger.debug("Discarded stale zone list state=%s", state_code)
            return False
        self.zones = zones
        self.zones_loading = False
        return True

    async def retry_zones(self) -> bool:
        """Manual retry after a transient failure."""
        if self.state_code is None:
            return False
        applied = await self._fetch_zones(self.state_code)
        if applied:
            self._drop_unlisted_zone()
            if self.error is not None:
                self.error = None
        return applied

    def _drop_unlisted_zone(self) -> None:
        """Forget the chosen zone if the freshly fetched list no longer has it."""
        if self.zone is None:
            return
        kept = next((z for z in self.zones if z.id == self.zone.id), None)
        if kept is None:
            logger.info("Selected zone left the catalog state=%s zone_id=%s", self.state_code, self.zone.id)
            self.status = SelectionStatus.state_selected
        self.zone = kept

    # -----------------------------------------------------------------------
    # Transitions
    # -----------------------------------------------------------------------

    async def select_state(self, state_code: str) -> None:
        """
        Choose a state and (re)load its zones.

        Re-selecting the current state keeps the chosen zone if it is still in
        the fresh zone list. Any other state clears the zone.

        Raises:
            InvalidSelection: state_code is not in the state lookup.
        """
        if not self.states:
            await self.load_states()
            if not self.states:
                return
        if not any(s.value == state_code for s in self.states):
            raise InvalidSelection("Please select a valid state.")

        same_state = state_code == self.state_code
        previous_zone = self.zone if same_state else None
        previous_status = self.status

        self.state_code = state_code
        self.error = None
        self.message = None
        if not same_state:
            self.zone = None
            self.zones = []
        self.status = SelectionStatus.state_selected if previous_zone is None else previous_status

        ticket = self._zone_request + 1
        applied = await self._fetch_zones(state_code)
        if not applied or ticket != self._zone_request:
            return

        self._drop_unlisted_zone()

    def select_zone(self, zone_id: str) -> None:
        """
        Choose a zone from the current state's zone list.

        Raises:
            InvalidSelection: no state chosen, zones still loading, or zone_id
                not in the list for the chosen state.
        """
        if self.state_code is None or self.zones_loading:
            raise InvalidSelection("Please select a state first.")
        zone = next((z for z in self.zones if z.id == zone_id), None)
        if zone is None:
            raise InvalidSelection()
        self.zone = zone
        self.status = SelectionStatus.zone_selected
        self.error = None
        self.message = None

    async def confirm(self) -> ConfirmResult:
        """
        Persist the selected pair: durable copy first when authenticated, then
        the ephemeral copy. Safe to retry with the same pair.

        Raises:
            InvalidSelection: nothing confirmable is selected (including Invalid).
            NoActiveSession: no identity can be resolved.
        """
        if not self.can_confirm:
            raise InvalidSelection("Please select a city.")
        subject = await self.identity.current_subject()
        if subject is None:
            self.error = NoActiveSession.default_message
            raise NoActiveSession()

        preference = self.preference
        durable = subject.is_authenticated and subject.subject_id is not None
        if durable:
            await self.durable.write(subject.subject_id, preference)
        self.storage.set(SELECTED_STATE_KEY, preference.state_code)
        self.storage.set(SELECTED_ZONE_KEY, preference.zone_id)

        self.status = SelectionStatus.confirmed
        label = self.zone.name.upper()
        self.message = (
            f"Delivery location saved: {label}" if durable else f"Delivery location updated: {label}"
        )
        self.error = None
        logger.info(
            "Confirmed delivery zone state=%s zone_id=%s durable=%s",
            preference.state_code,
            preference.zone_id,
            durable,
        )
        return ConfirmResult(preference=preference, message=self.message, durable=durable)

    async def restore(self) -> Optional[DeliveryPreference]:
        """
        Load the stored pair on page/session start: ephemeral copy first,
        durable copy for authenticated subjects otherwise. A pair that no
        longer resolves moves to Invalid and its zone reference is cleared.
        """
        state_code = self.storage.get(SELECTED_STATE_KEY)
        zone_id = self.storage.get(SELECTED_ZONE_KEY)
        from_durable = False

        if not (state_code and zone_id):
            subject = await self.identity.current_subject()
            if subject is not None and subject.is_authenticated and subject.subject_id:
                stored = await self.durable.read(subject.subject_id)
                if stored is not None:
                    state_code, zone_id = stored.state_code, stored.zone_id
                    from_durable = True

        if not (state_code and zone_id):
            if from_durable:
                # Durable zone whose state could not be determined
                self._mark_invalid(None)
            return None
        return await self._apply_stored(state_code, zone_id, from_durable)

    async def _apply_stored(
        self, state_code: str, zone_id: str, from_durable: bool
    ) -> Optional[DeliveryPreference]:
        if not self.states:
            await self.load_states()
            if not self.states:
                return None

        if not any(s.value == state_code for s in self.states):
            self.storage.remove(SELECTED_STATE_KEY)
            self.storage.remove(SELECTED_ZONE_KEY)
            self._mark_invalid(None)
            return None

        self.state_code = state_code
        self.zone = None
        self.zones = []
        self.status = SelectionStatus.state_selected
        if not await self._fetch_zones(state_code):
            return None

        zone = next((z for z in self.zones if z.id == zone_id), None)
        if zone is None:
            logger.warning("Stored zone no longer resolves state=%s zone_id=%s", state_code, zone_id)
            self.storage.remove(SELECTED_ZONE_KEY)
            self._mark_invalid(state_code)
            return None

        self.zone = zone
        self.status = SelectionStatus.confirmed
        self.error = None
        if from_durable:
            self.storage.set(SELECTED_STATE_KEY, state_code)
            self.storage.set(SELECTED_ZONE_KEY, zone.id)
        return self.preference

    def _mark_invalid(self, state_code: Optional[str]) -> None:
        self.state_code = state_code
        self.zone = None
        if state_code is None:
            self.zones = []
        self.status = SelectionStatus.invalid
        self.error = InvalidSelection.default_message
        self.message = None

    async def merge_on_login(self, subject_id: str) -> Optional[DeliveryPreference]:
        """
        Run once when the guest becomes authenticated as subject_id.

        An ephemeral pair overwrites the durable preference unconditionally,
        unless its zone was retired in the meantime: then the pair is marked
        Invalid, its zone key is cleared and the durable preference is kept.
        Without one, the durable preference (if any) is left untouched and
        becomes the active selection.
        """
        state_code = self.storage.get(SELECTED_STATE_KEY)
        zone_id = self.storage.get(SELECTED_ZONE_KEY)
        if state_code and zone_id:
            known = self.zone if self.zone is not None and self.zone.id == zone_id else None
            preference = DeliveryPreference(
                state_code=state_code,
                zone_id=zone_id,
                zone_fee=known.fee if known else None,
                zone_name=known.name if known else None,
            )
            try:
                await self.durable.write(subject_id, preference)
            except InvalidSelection:
                logger.warning("Guest zone no longer resolves state=%s zone_id=%s", state_code, zone_id)
                self.storage.remove(SELECTED_ZONE_KEY)
                self._mark_invalid(state_code)
                await self._fetch_zones(state_code)
                return None
            logger.info("Merged guest delivery preference state=%s zone_id=%s", state_code, zone_id)
            return preference

        stored = await self.durable.read(subject_id)
        if stored is None:
            return None
        return await self._apply_stored(stored.state_code, stored.zone_id, from_durable=True)
