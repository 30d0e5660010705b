"""
api.py: Async storefront API client.

Holds the credential pair in a per-session KeyValueStore and applies the
caller-side retry rule: a 401 triggers at most one refresh and one retry;
a second 401 (or a failed refresh) clears the credentials and raises
Unauthorized. Concurrent 401s share a single refresh.

Also provides the HTTP implementations of the coordinator's ZoneSource and
DurablePreferences, and sign_in() which runs merge-on-login after a login.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

import httpx

from luzimarket.delivery.coordinator import DeliveryPreferenceCoordinator
from luzimarket.delivery.schemas import DeliveryPreference, DeliveryZone, StateOption
from luzimarket.delivery.storage import (
    ACCESS_TOKEN_KEY,
    CREDENTIAL_KEYS,
    REFRESH_TOKEN_KEY,
    SUBJECT_KEY,
    KeyValueStore,
    MemorySessionStorage,
)
from luzimarket.errors import InvalidSelection, TransientFetchFailure, Unauthorized
from luzimarket.identity.schemas import AuthResponse, SubjectContext, TokenPair

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> Optional[str]:
    try:
        return response.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        return None


class LuzimarketClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        storage: Optional[KeyValueStore] = None,
    ) -> None:
        self.http = http
        self.storage = storage if storage is not None else MemorySessionStorage()
        self._refresh_lock = asyncio.Lock()

    # -----------------------------------------------------------------------
    # Credential slots
    # -----------------------------------------------------------------------

    @property
    def access_token(self) -> Optional[str]:
        return self.storage.get(ACCESS_TOKEN_KEY)

    @property
    def refresh_token(self) -> Optional[str]:
        return self.storage.get(REFRESH_TOKEN_KEY)

    def _store_pair(self, pair: TokenPair) -> None:
        self.storage.set(ACCESS_TOKEN_KEY, pair.access_token)
        self.storage.set(REFRESH_TOKEN_KEY, pair.refresh_token)
        subject = SubjectContext(
            session_id=pair.session_id,
            subject_type=pair.subject_type,
            subject_id=pair.subject_id,
        )
        self.storage.set(SUBJECT_KEY, subject.model_dump_json(by_alias=True))

    def clear_credentials(self) -> None:
        for key in CREDENTIAL_KEYS:
            self.storage.remove(key)

    async def current_subject(self) -> Optional[SubjectContext]:
        raw = self.storage.get(SUBJECT_KEY)
        if raw is None or self.access_token is None:
            return None
        return SubjectContext.model_validate(json.loads(raw))

    # -----------------------------------------------------------------------
    # Transport
    # -----------------------------------------------------------------------

    async def _send(self, method: str, url: str, auth: bool, **kwargs: Any) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        token = self.access_token
        if auth and token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            return await self.http.request(method, url, headers=headers, **kwargs)
        except httpx.TransportError as exc:
            logger.warning("Request failed %s %s: %s", method, url, exc)
            raise TransientFetchFailure() from exc

    async def request(
        self, method: str, url: str, *, auth: bool = True, **kwargs: Any
    ) -> httpx.Response:
        stale_access = self.access_token
        response = await self._send(method, url, auth, **kwargs)
        if response.status_code != 401 or not auth or stale_access is None:
            return response

        await self._refresh_after_401(stale_access)
        response = await self._send(method, url, auth, **kwargs)
        if response.status_code == 401:
            logger.info("Second 401 after refresh, forcing logout")
            self.clear_credentials()
            raise Unauthorized()
        return response

    async def _refresh_after_401(self, stale_access: str) -> None:
        async with self._refresh_lock:
            if self.access_token is not None and self.access_token != stale_access:
                # Another request already rotated the pair
                return
            await self.refresh()

    # -----------------------------------------------------------------------
    # Auth endpoints
    # -----------------------------------------------------------------------

    async def start_guest(self) -> TokenPair:
        response = await self._send("POST", "/api/auth/guest", auth=False)
        response.raise_for_status()
        pair = TokenPair.model_validate(response.json())
        self._store_pair(pair)
        return pair

    async def register(self, email: str, password: str, name: Optional[str] = None) -> AuthResponse:
        response = await self._send(
            "POST", "/api/auth/register", auth=False,
            json={"email": email, "password": password, "name": name},
        )
        response.raise_for_status()
        return AuthResponse.model_validate(response.json())

    async def login(self, email: str, password: str) -> AuthResponse:
        """Log in, sending the guest token (if any) so the session is carried forward."""
        response = await self._send(
            "POST", "/api/auth/login", auth=True,
            json={"email": email, "password": password},
        )
        if response.status_code == 401:
            raise Unauthorized()
        response.raise_for_status()
        auth = AuthResponse.model_validate(response.json())
        self._store_pair(auth)
        return auth

    async def refresh(self) -> TokenPair:
        token = self.refresh_token
        if token is None:
            self.clear_credentials()
            raise Unauthorized()
        response = await self._send(
            "POST", "/api/auth/refresh", auth=False, json={"refreshToken": token}
        )
        if response.status_code == 401:
            self.clear_credentials()
            raise Unauthorized()
        response.raise_for_status()
        pair = TokenPair.model_validate(response.json())
        self._store_pair(pair)
        return pair

    async def logout(self) -> None:
        try:
            if self.access_token is not None:
                await self._send("POST", "/api/auth/logout", auth=True)
        finally:
            self.clear_credentials()


class HttpZoneSource:
    def __init__(self, client: LuzimarketClient) -> None:
        self.client = client

    async def _get_list(self, url: str, params: Optional[dict] = None) -> list[dict]:
        response = await self.client.request("GET", url, auth=False, params=params)
        if response.status_code >= 400:
            raise TransientFetchFailure()
        return response.json()

    async def list_states(self) -> list[StateOption]:
        return [StateOption.model_validate(s) for s in await self._get_list("/api/states")]

    async def list_zones(self, state_code: str) -> list[DeliveryZone]:
        rows = await self._get_list(
            "/api/delivery-zones", params={"state": state_code, "active": "true"}
        )
        return [DeliveryZone.model_validate(z) for z in rows]


class HttpDurablePreferences:
    """
    Durable preferences through the session endpoints. The bearer token
    identifies the account, so subject_id is only used for logging.
    """

    def __init__(self, client: LuzimarketClient) -> None:
        self.client = client

    async def read(self, subject_id: str) -> Optional[DeliveryPreference]:
        response = await self.client.request("POST", "/api/auth/restore-preferences")
        if response.status_code == 204:
            return None
        if response.status_code >= 400:
            raise TransientFetchFailure()
        body = response.json()
        if not body.get("resolved", True):
            # Saved zone is gone; hand the pair back so restore() can flag it
            return DeliveryPreference(state_code=body.get("stateCode") or "", zone_id=body["deliveryZoneId"])
        zone = DeliveryZone.model_validate(body["session"]["deliveryZone"])
        return DeliveryPreference(
            state_code=zone.state_code, zone_id=zone.id, zone_fee=zone.fee, zone_name=zone.name
        )

    async def write(self, subject_id: str, preference: DeliveryPreference) -> None:
        response = await self.client.request(
            "PATCH", "/api/auth/update-session", json={"deliveryZoneId": preference.zone_id}
        )
        if response.status_code == 422:
            raise InvalidSelection(_error_message(response))
        if response.status_code >= 400:
            raise TransientFetchFailure()
        logger.info("Durable preference written subject_id=%s zone_id=%s", subject_id, preference.zone_id)


async def sign_in(
    client: LuzimarketClient,
    coordinator: DeliveryPreferenceCoordinator,
    email: str,
    password: str,
) -> AuthResponse:
    """Log in and merge the guest's delivery selection into the account."""
    auth = await client.login(email, password)
    await coordinator.merge_on_login(auth.subject_id)
    return auth
