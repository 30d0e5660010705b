"""
Tests for client/api.py: the storefront client against the ASGI app.

Covers the credential slots, refresh-once-then-retry, forced logout after a
second 401, a shared refresh for concurrent 401s, and a full guest → login
flow with the coordinator talking HTTP.
"""
import asyncio
import base64

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from luzimarket.client.api import (
    HttpDurablePreferences,
    HttpZoneSource,
    LuzimarketClient,
    sign_in,
)
from luzimarket.delivery.coordinator import DeliveryPreferenceCoordinator
from luzimarket.delivery.schemas import SelectionStatus
from luzimarket.delivery.storage import (
    ACCESS_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    SELECTED_STATE_KEY,
    SELECTED_ZONE_KEY,
    SUBJECT_KEY,
    MemorySessionStorage,
)
from luzimarket.errors import InvalidSelection, TransientFetchFailure, Unauthorized
from luzimarket.identity.schemas import SubjectType


@pytest_asyncio.fixture
async def http(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def storage():
    return MemorySessionStorage()


@pytest.fixture
def api(http, storage):
    return LuzimarketClient(http, storage)


def _mock_client(handler) -> AsyncClient:
    return AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")


# ---------------------------------------------------------------------------
# Credential slots
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_start_guest_fills_slots(api, storage):
    pair = await api.start_guest()

    assert storage.get(ACCESS_TOKEN_KEY) == pair.access_token
    assert storage.get(REFRESH_TOKEN_KEY) == pair.refresh_token
    assert base64.b64decode(ACCESS_TOKEN_KEY) == b"_luzi_auth_access"

    subject = await api.current_subject()
    assert subject.session_id == pair.session_id
    assert subject.subject_type == SubjectType.guest


@pytest.mark.asyncio
async def test_no_subject_without_credentials(api):
    assert await api.current_subject() is None


@pytest.mark.asyncio
async def test_logout_clears_slots(api, storage):
    await api.start_guest()
    await api.logout()
    for key in (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, SUBJECT_KEY):
        assert key not in storage


# ---------------------------------------------------------------------------
# 401 handling
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_expired_access_is_refreshed_once(api, clock):
    pair = await api.start_guest()
    clock.advance(minutes=20)

    response = await api.request("GET", "/api/auth/session")

    assert response.status_code == 200
    assert api.access_token != pair.access_token
    assert api.refresh_token != pair.refresh_token
    assert response.json()["sessionId"] == pair.session_id


@pytest.mark.asyncio
async def test_concurrent_401s_share_one_refresh(api, clock):
    pair = await api.start_guest()
    clock.advance(minutes=20)

    first, second = await asyncio.gather(
        api.request("GET", "/api/auth/session"),
        api.request("GET", "/api/auth/session"),
    )

    assert first.status_code == second.status_code == 200
    assert (await api.current_subject()).session_id == pair.session_id


@pytest.mark.asyncio
async def test_failed_refresh_logs_out(api, storage, manager):
    pair = await api.start_guest()
    # Revoke server-side: access and rotation credentials are both dead
    await manager.revoke(pair.session_id)

    with pytest.raises(Unauthorized):
        await api.request("GET", "/api/auth/session")
    assert ACCESS_TOKEN_KEY not in storage
    assert REFRESH_TOKEN_KEY not in storage


@pytest.mark.asyncio
async def test_second_401_after_refresh_logs_out(storage):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        if request.url.path == "/api/auth/refresh":
            return httpx.Response(
                200,
                json={
                    "accessToken": "new-access",
                    "refreshToken": "f" * 128,
                    "expiresIn": 900,
                    "sessionId": "sess-1",
                    "subjectType": "guest",
                },
            )
        return httpx.Response(401, json={"error": {"code": "UNAUTHORIZED"}})

    storage.set(ACCESS_TOKEN_KEY, "old-access")
    storage.set(REFRESH_TOKEN_KEY, "e" * 128)
    async with _mock_client(handler) as http:
        api = LuzimarketClient(http, storage)
        with pytest.raises(Unauthorized):
            await api.request("GET", "/api/auth/session")

    assert calls == ["/api/auth/session", "/api/auth/refresh", "/api/auth/session"]
    assert ACCESS_TOKEN_KEY not in storage
    assert REFRESH_TOKEN_KEY not in storage


@pytest.mark.asyncio
async def test_unauthenticated_401_is_returned_as_is(api):
    response = await api.request("GET", "/api/auth/session")
    assert response.status_code == 401


# ---------------------------------------------------------------------------
# Zone source over HTTP
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_http_zone_source(api):
    source = HttpZoneSource(api)
    states = await source.list_states()
    assert "coahuila" in [s.value for s in states]
    zones = await source.list_zones("coahuila")
    assert [z.id for z in zones] == ["1", "2"]


@pytest.mark.asyncio
async def test_server_error_is_transient(storage):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": {"code": "HTTP_503"}})

    async with _mock_client(handler) as http:
        source = HttpZoneSource(LuzimarketClient(http, storage))
        with pytest.raises(TransientFetchFailure):
            await source.list_zones("coahuila")


@pytest.mark.asyncio
async def test_network_error_is_transient(storage):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _mock_client(handler) as http:
        source = HttpZoneSource(LuzimarketClient(http, storage))
        with pytest.raises(TransientFetchFailure):
            await source.list_states()


# ---------------------------------------------------------------------------
# Full storefront flow
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_guest_selection_follows_user_into_account(api, storage, http):
    await api.register("luz@example.com", "s3cret-pass", "Luz")
    await api.start_guest()

    coordinator = DeliveryPreferenceCoordinator(
        HttpZoneSource(api), api, storage, HttpDurablePreferences(api)
    )
    await coordinator.select_state("coahuila")
    coordinator.select_zone("2")
    result = await coordinator.confirm()
    assert result.message == "Delivery location updated: SALTILLO"

    auth = await sign_in(api, coordinator, "luz@example.com", "s3cret-pass")
    assert auth.subject_type == SubjectType.authenticated

    # A new browser session for the same account gets the zone back
    other_storage = MemorySessionStorage()
    other = LuzimarketClient(http, other_storage)
    await other.login("luz@example.com", "s3cret-pass")
    restored_coordinator = DeliveryPreferenceCoordinator(
        HttpZoneSource(other), other, other_storage, HttpDurablePreferences(other)
    )
    restored = await restored_coordinator.restore()

    assert restored.zone_id == "2"
    assert restored.zone_fee == 7500
    assert other_storage.get(SELECTED_ZONE_KEY) == "2"


@pytest.mark.asyncio
async def test_authenticated_confirm_is_saved(api, storage, store):
    auth = await api.register("mar@example.com", "s3cret-pass")
    await api.login("mar@example.com", "s3cret-pass")

    coordinator = DeliveryPreferenceCoordinator(
        HttpZoneSource(api), api, storage, HttpDurablePreferences(api)
    )
    await coordinator.select_state("cdmx")
    coordinator.select_zone("8")
    result = await coordinator.confirm()

    assert result.message == "Delivery location saved: CDMX"
    assert store.users[auth.subject_id].preferred_delivery_zone_id == "8"


@pytest.mark.asyncio
async def test_saved_zone_retired_since_last_visit_is_flagged(api, storage, http, deactivate_zone):
    await api.register("rio@example.com", "s3cret-pass")
    await api.login("rio@example.com", "s3cret-pass")
    coordinator = DeliveryPreferenceCoordinator(
        HttpZoneSource(api), api, storage, HttpDurablePreferences(api)
    )
    await coordinator.select_state("coahuila")
    coordinator.select_zone("2")
    await coordinator.confirm()

    deactivate_zone("2")

    other_storage = MemorySessionStorage()
    other = LuzimarketClient(http, other_storage)
    await other.login("rio@example.com", "s3cret-pass")
    restored_coordinator = DeliveryPreferenceCoordinator(
        HttpZoneSource(other), other, other_storage, HttpDurablePreferences(other)
    )

    assert await restored_coordinator.restore() is None
    assert restored_coordinator.status == SelectionStatus.invalid
    assert restored_coordinator.error == InvalidSelection.default_message
    assert restored_coordinator.state_code == "coahuila"
    assert other_storage.get(SELECTED_ZONE_KEY) is None


@pytest.mark.asyncio
async def test_sign_in_with_retired_guest_zone(api, storage, deactivate_zone, store):
    await api.register("sol@example.com", "s3cret-pass")
    await api.start_guest()
    coordinator = DeliveryPreferenceCoordinator(
        HttpZoneSource(api), api, storage, HttpDurablePreferences(api)
    )
    await coordinator.select_state("coahuila")
    coordinator.select_zone("2")
    await coordinator.confirm()

    deactivate_zone("2")
    auth = await sign_in(api, coordinator, "sol@example.com", "s3cret-pass")

    assert auth.subject_type == SubjectType.authenticated
    assert coordinator.status == SelectionStatus.invalid
    assert storage.get(SELECTED_ZONE_KEY) is None
    assert storage.get(SELECTED_STATE_KEY) == "coahuila"
    assert store.users[auth.subject_id].preferred_delivery_zone_id is None
