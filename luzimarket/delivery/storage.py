"""
storage.py: Per-browser-session key/value storage used by the client side.

The storefront keeps credentials and the ephemeral delivery selection in
sessionStorage. Here that is an injectable KeyValueStore so the coordinator
and API client run against any backend; MemorySessionStorage is the default.
"""
import base64
from typing import Optional, Protocol

# Credential slots use the same obfuscated names as the storefront
ACCESS_TOKEN_KEY = base64.b64encode(b"_luzi_auth_access").decode("ascii")
REFRESH_TOKEN_KEY = base64.b64encode(b"_luzi_auth_refresh").decode("ascii")
SUBJECT_KEY = base64.b64encode(b"_luzi_auth_subject").decode("ascii")

SELECTED_STATE_KEY = "selectedDeliveryState"
SELECTED_ZONE_KEY = "selectedDeliveryZone"

CREDENTIAL_KEYS = (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, SUBJECT_KEY)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def clear(self) -> None: ...


class MemorySessionStorage:
    """Dict-backed KeyValueStore; one instance per simulated browser session."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._data


class MemoryDurablePreferences:
    """Durable per-user preference store keyed by subject id."""

    def __init__(self) -> None:
        self.preferences: dict = {}

    async def read(self, subject_id: str):
        return self.preferences.get(subject_id)

    async def write(self, subject_id: str, preference) -> None:
        self.preferences[subject_id] = preference
