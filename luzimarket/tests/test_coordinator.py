"""
Tests for the delivery preference coordinator state machine.

The coordinator runs against the in-process catalog, an in-memory
session storage and an in-memory durable preference store.
"""
import asyncio
from typing import Optional

import pytest

from luzimarket.delivery.catalog import ZoneCatalog
from luzimarket.delivery.coordinator import CatalogZoneSource, DeliveryPreferenceCoordinator
from luzimarket.delivery.schemas import DeliveryPreference, SelectionStatus
from luzimarket.delivery.storage import (
    SELECTED_STATE_KEY,
    SELECTED_ZONE_KEY,
    MemoryDurablePreferences,
    MemorySessionStorage,
)
from luzimarket.errors import InvalidSelection, NoActiveSession, TransientFetchFailure
from luzimarket.identity.schemas import SubjectContext, SubjectType


class FakeIdentity:
    def __init__(self, subject: Optional[SubjectContext] = None) -> None:
        self.subject = subject

    async def current_subject(self) -> Optional[SubjectContext]:
        return self.subject

    def login(self, user_id: str) -> None:
        self.subject = SubjectContext(
            session_id=self.subject.session_id if self.subject else "sess-1",
            subject_type=SubjectType.authenticated,
            subject_id=user_id,
        )


class GatedZoneSource:
    """Holds list_zones for gated states until the test releases them."""

    def __init__(self, inner: CatalogZoneSource, gated: tuple = ()) -> None:
        self.inner = inner
        self.started = {s: asyncio.Event() for s in gated}
        self.gates = {s: asyncio.Event() for s in gated}

    async def list_states(self):
        return await self.inner.list_states()

    async def list_zones(self, state_code):
        if state_code in self.gates:
            self.started[state_code].set()
            await self.gates[state_code].wait()
        return await self.inner.list_zones(state_code)


class FlakyZoneSource:
    """Fails the first `failures` zone fetches."""

    def __init__(self, inner: CatalogZoneSource, failures: int = 1) -> None:
        self.inner = inner
        self.failures = failures

    async def list_states(self):
        return await self.inner.list_states()

    async def list_zones(self, state_code):
        if self.failures > 0:
            self.failures -= 1
            raise TransientFetchFailure()
        return await self.inner.list_zones(state_code)


GUEST = SubjectContext(session_id="sess-1", subject_type=SubjectType.guest)


@pytest.fixture
def source(store):
    return CatalogZoneSource(ZoneCatalog(store))


@pytest.fixture
def storage():
    return MemorySessionStorage()


@pytest.fixture
def durable():
    return MemoryDurablePreferences()


@pytest.fixture
def identity():
    return FakeIdentity(GUEST)


@pytest.fixture
def coordinator(source, identity, storage, durable):
    return DeliveryPreferenceCoordinator(source, identity, storage, durable)


# ---------------------------------------------------------------------------
# Selection transitions
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_select_state_then_zone(coordinator):
    assert coordinator.status == SelectionStatus.no_selection

    await coordinator.select_state("coahuila")
    assert coordinator.status == SelectionStatus.state_selected
    assert [z.id for z in coordinator.zones] == ["1", "2"]
    assert coordinator.can_confirm is False

    coordinator.select_zone("2")
    assert coordinator.status == SelectionStatus.zone_selected
    assert coordinator.preference == DeliveryPreference(
        state_code="coahuila", zone_id="2", zone_fee=7500, zone_name="Saltillo"
    )
    assert coordinator.can_confirm


@pytest.mark.asyncio
async def test_unknown_state_rejected(coordinator):
    with pytest.raises(InvalidSelection) as exc_info:
        await coordinator.select_state("jalisco")
    assert exc_info.value.message == "Please select a valid state."
    assert coordinator.status == SelectionStatus.no_selection


@pytest.mark.asyncio
async def test_zone_requires_state(coordinator):
    with pytest.raises(InvalidSelection):
        coordinator.select_zone("1")


@pytest.mark.asyncio
async def test_zone_from_other_state_rejected(coordinator):
    await coordinator.select_state("coahuila")
    with pytest.raises(InvalidSelection):
        coordinator.select_zone("3")
    assert coordinator.zone is None


@pytest.mark.asyncio
async def test_changing_state_clears_zone(coordinator):
    await coordinator.select_state("coahuila")
    coordinator.select_zone("1")

    await coordinator.select_state("durango")
    assert coordinator.zone is None
    assert coordinator.status == SelectionStatus.state_selected
    assert [z.id for z in coordinator.zones] == ["6", "7"]


@pytest.mark.asyncio
async def test_reselecting_same_state_keeps_zone(coordinator):
    await coordinator.select_state("coahuila")
    coordinator.select_zone("1")

    await coordinator.select_state("coahuila")
    assert coordinator.zone.id == "1"
    assert coordinator.status == SelectionStatus.zone_selected


@pytest.mark.asyncio
async def test_stale_zone_response_is_discarded(store, identity, storage, durable):
    source = GatedZoneSource(CatalogZoneSource(ZoneCatalog(store)), gated=("coahuila",))
    coordinator = DeliveryPreferenceCoordinator(source, identity, storage, durable)
    await coordinator.load_states()

    slow = asyncio.create_task(coordinator.select_state("coahuila"))
    await source.started["coahuila"].wait()
    await coordinator.select_state("nuevo-leon")

    source.gates["coahuila"].set()
    await slow

    assert coordinator.state_code == "nuevo-leon"
    assert [z.id for z in coordinator.zones] == ["3"]
    coordinator.select_zone("3")
    assert coordinator.preference.state_code == "nuevo-leon"


@pytest.mark.asyncio
async def test_transient_failure_blocks_confirm_until_retry(store, identity, storage, durable):
    source = FlakyZoneSource(CatalogZoneSource(ZoneCatalog(store)))
    coordinator = DeliveryPreferenceCoordinator(source, identity, storage, durable)

    await coordinator.select_state("coahuila")
    assert coordinator.fetch_error == "Could not load delivery locations. Please try again."
    assert coordinator.zones == []
    assert coordinator.can_confirm is False

    assert await coordinator.retry_zones()
    assert coordinator.fetch_error is None
    assert coordinator.error is None
    coordinator.select_zone("1")
    assert coordinator.can_confirm


@pytest.mark.asyncio
async def test_retry_drops_zone_retired_while_offline(store, identity, storage, durable, deactivate_zone):
    source = FlakyZoneSource(CatalogZoneSource(ZoneCatalog(store)), failures=0)
    coordinator = DeliveryPreferenceCoordinator(source, identity, storage, durable)
    await coordinator.select_state("coahuila")
    coordinator.select_zone("2")
    await coordinator.confirm()

    source.failures = 1
    await coordinator.select_state("coahuila")
    assert coordinator.fetch_error is not None
    assert coordinator.zone.id == "2"

    deactivate_zone("2")
    assert await coordinator.retry_zones()

    assert coordinator.zone is None
    assert coordinator.status == SelectionStatus.state_selected
    assert [z.id for z in coordinator.zones] == ["1"]
    assert coordinator.can_confirm is False
    with pytest.raises(InvalidSelection):
        await coordinator.confirm()


# ---------------------------------------------------------------------------
# Confirm
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_guest_confirm_writes_session_storage_only(coordinator, storage, durable):
    await coordinator.select_state("coahuila")
    coordinator.select_zone("2")
    result = await coordinator.confirm()

    assert result.message == "Delivery location updated: SALTILLO"
    assert result.durable is False
    assert storage.get(SELECTED_STATE_KEY) == "coahuila"
    assert storage.get(SELECTED_ZONE_KEY) == "2"
    assert durable.preferences == {}
    assert coordinator.status == SelectionStatus.confirmed


@pytest.mark.asyncio
async def test_authenticated_confirm_writes_durable(coordinator, identity, storage, durable):
    identity.login("user-1")
    await coordinator.select_state("nuevo-leon")
    coordinator.select_zone("3")
    result = await coordinator.confirm()

    assert result.message == "Delivery location saved: MONTERREY"
    assert result.durable
    assert durable.preferences["user-1"].zone_id == "3"
    assert storage.get(SELECTED_ZONE_KEY) == "3"


@pytest.mark.asyncio
async def test_confirm_is_idempotent(coordinator, storage):
    await coordinator.select_state("coahuila")
    coordinator.select_zone("1")
    first = await coordinator.confirm()
    second = await coordinator.confirm()
    assert first == second
    assert storage.get(SELECTED_ZONE_KEY) == "1"


@pytest.mark.asyncio
async def test_confirm_without_zone(coordinator):
    await coordinator.select_state("coahuila")
    with pytest.raises(InvalidSelection) as exc_info:
        await coordinator.confirm()
    assert exc_info.value.message == "Please select a city."


@pytest.mark.asyncio
async def test_confirm_without_identity(coordinator, identity, storage):
    identity.subject = None
    await coordinator.select_state("coahuila")
    coordinator.select_zone("1")
    with pytest.raises(NoActiveSession):
        await coordinator.confirm()
    assert storage.get(SELECTED_ZONE_KEY) is None
    assert coordinator.status == SelectionStatus.zone_selected


# ---------------------------------------------------------------------------
# Restore
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_round_trip_through_session_storage(source, identity, storage, durable):
    first = DeliveryPreferenceCoordinator(source, identity, storage, durable)
    await first.select_state("coahuila")
    first.select_zone("2")
    await first.confirm()

    reloaded = DeliveryPreferenceCoordinator(source, identity, storage, durable)
    restored = await reloaded.restore()

    assert restored == DeliveryPreference(
        state_code="coahuila", zone_id="2", zone_fee=7500, zone_name="Saltillo"
    )
    assert reloaded.status == SelectionStatus.confirmed


@pytest.mark.asyncio
async def test_restore_with_nothing_stored(coordinator):
    assert await coordinator.restore() is None
    assert coordinator.status == SelectionStatus.no_selection


@pytest.mark.asyncio
async def test_restore_dead_zone_marks_invalid(coordinator, storage):
    storage.set(SELECTED_STATE_KEY, "coahuila")
    storage.set(SELECTED_ZONE_KEY, "99")

    assert await coordinator.restore() is None
    assert coordinator.status == SelectionStatus.invalid
    assert coordinator.state_code == "coahuila"
    assert storage.get(SELECTED_ZONE_KEY) is None
    assert storage.get(SELECTED_STATE_KEY) == "coahuila"
    assert coordinator.can_confirm is False
    with pytest.raises(InvalidSelection):
        await coordinator.confirm()

    # A fresh zone choice recovers
    coordinator.select_zone("1")
    result = await coordinator.confirm()
    assert result.preference.zone_id == "1"


@pytest.mark.asyncio
async def test_restore_deactivated_zone_marks_invalid(coordinator, storage, deactivate_zone):
    storage.set(SELECTED_STATE_KEY, "coahuila")
    storage.set(SELECTED_ZONE_KEY, "2")
    deactivate_zone("2")

    assert await coordinator.restore() is None
    assert coordinator.status == SelectionStatus.invalid


@pytest.mark.asyncio
async def test_restore_unknown_state_clears_both_keys(coordinator, storage):
    storage.set(SELECTED_STATE_KEY, "jalisco")
    storage.set(SELECTED_ZONE_KEY, "1")

    assert await coordinator.restore() is None
    assert coordinator.status == SelectionStatus.invalid
    assert storage.get(SELECTED_STATE_KEY) is None
    assert storage.get(SELECTED_ZONE_KEY) is None


@pytest.mark.asyncio
async def test_authenticated_restore_falls_back_to_durable(coordinator, identity, storage, durable):
    identity.login("user-1")
    durable.preferences["user-1"] = DeliveryPreference(state_code="durango", zone_id="7")

    restored = await coordinator.restore()

    assert restored.zone_id == "7"
    assert restored.zone_fee == 6500
    assert storage.get(SELECTED_STATE_KEY) == "durango"
    assert storage.get(SELECTED_ZONE_KEY) == "7"


@pytest.mark.asyncio
async def test_guest_restore_ignores_durable(coordinator, durable):
    durable.preferences["user-1"] = DeliveryPreference(state_code="durango", zone_id="7")
    assert await coordinator.restore() is None


# ---------------------------------------------------------------------------
# Merge on login
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_guest_selection_overwrites_durable_on_login(coordinator, identity, storage, durable):
    durable.preferences["user-1"] = DeliveryPreference(state_code="nuevo-leon", zone_id="3")
    await coordinator.select_state("coahuila")
    coordinator.select_zone("2")
    await coordinator.confirm()

    identity.login("user-1")
    merged = await coordinator.merge_on_login("user-1")

    assert merged.zone_id == "2"
    assert durable.preferences["user-1"].state_code == "coahuila"
    assert durable.preferences["user-1"].zone_fee == 7500
    assert storage.get(SELECTED_ZONE_KEY) == "2"


@pytest.mark.asyncio
async def test_durable_applied_on_login_without_guest_selection(coordinator, identity, storage, durable):
    durable.preferences["user-1"] = DeliveryPreference(state_code="coahuila", zone_id="1")

    identity.login("user-1")
    merged = await coordinator.merge_on_login("user-1")

    assert merged.zone_id == "1"
    assert coordinator.status == SelectionStatus.confirmed
    assert storage.get(SELECTED_STATE_KEY) == "coahuila"
    assert storage.get(SELECTED_ZONE_KEY) == "1"


@pytest.mark.asyncio
async def test_login_with_nothing_to_merge(coordinator, identity, durable):
    identity.login("user-1")
    assert await coordinator.merge_on_login("user-1") is None
    assert durable.preferences == {}


class RejectingDurablePreferences(MemoryDurablePreferences):
    """Durable store whose server no longer accepts the zone."""

    async def write(self, subject_id, preference):
        raise InvalidSelection()


@pytest.mark.asyncio
async def test_login_with_retired_guest_zone_marks_invalid(source, identity, storage):
    durable = RejectingDurablePreferences()
    coordinator = DeliveryPreferenceCoordinator(source, identity, storage, durable)
    storage.set(SELECTED_STATE_KEY, "coahuila")
    storage.set(SELECTED_ZONE_KEY, "2")

    identity.login("user-1")
    assert await coordinator.merge_on_login("user-1") is None

    assert coordinator.status == SelectionStatus.invalid
    assert coordinator.error == InvalidSelection.default_message
    assert coordinator.state_code == "coahuila"
    assert storage.get(SELECTED_ZONE_KEY) is None
    assert storage.get(SELECTED_STATE_KEY) == "coahuila"
    assert durable.preferences == {}

    # The state's zones are ready for a new choice
    coordinator.select_zone("1")
    assert coordinator.status == SelectionStatus.zone_selected


# ---------------------------------------------------------------------------
# Storefront scenarios
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_logged_in_user_saves_saltillo(coordinator, identity, durable):
    identity.login("user-1")
    await coordinator.select_state("coahuila")
    coordinator.select_zone("2")
    result = await coordinator.confirm()

    assert coordinator.status == SelectionStatus.confirmed
    assert (durable.preferences["user-1"].state_code, durable.preferences["user-1"].zone_id) == (
        "coahuila",
        "2",
    )
    assert result.preference.zone_fee == 7500
    assert result.message.startswith("Delivery location saved")


@pytest.mark.asyncio
async def test_guest_pair_replaces_older_account_pair(coordinator, identity, storage, durable):
    durable.preferences["user-1"] = DeliveryPreference(state_code="coahuila", zone_id="3")
    storage.set(SELECTED_STATE_KEY, "nuevo-leon")
    storage.set(SELECTED_ZONE_KEY, "1")

    identity.login("user-1")
    await coordinator.merge_on_login("user-1")

    saved = durable.preferences["user-1"]
    assert (saved.state_code, saved.zone_id) == ("nuevo-leon", "1")
