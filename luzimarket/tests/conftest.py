"""
Test configuration for Luzimarket tests.

The project root is put on sys.path so 'from luzimarket...' resolves whether
pytest runs from the project root or from luzimarket/.

No PostgreSQL or Redis is needed: the get_store dependency is overridden with
a MemoryStore seeded with the reference catalog, and ASGITransport does not
run the lifespan (migrations, seeding, Redis pool).
"""
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

_project_root = Path(__file__).parent.parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from luzimarket.delivery.catalog import SEED_STATES, SEED_ZONES  # noqa: E402
from luzimarket.dependencies import get_identity_manager, get_store  # noqa: E402
from luzimarket.identity.manager import SessionIdentityManager  # noqa: E402
from luzimarket.identity.tokens import CredentialCodec  # noqa: E402
from luzimarket.memory_store import MemoryStore  # noqa: E402

TEST_SECRET = "test-secret-key-for-luzimarket-suite-0123456789"


class FakeClock:
    """Callable clock the tests can move forward."""

    def __init__(self) -> None:
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def codec(clock: FakeClock) -> CredentialCodec:
    return CredentialCodec(
        secret_key=TEST_SECRET,
        access_ttl=timedelta(minutes=15),
        rotation_ttl=timedelta(days=7),
        clock=clock,
    )


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore(states=SEED_STATES, zones=SEED_ZONES)


@pytest.fixture
def manager(store: MemoryStore, codec: CredentialCodec) -> SessionIdentityManager:
    return SessionIdentityManager(store, codec)


@pytest.fixture
def app(store: MemoryStore, codec: CredentialCodec):
    from luzimarket.main import app as fastapi_app

    fastapi_app.dependency_overrides[get_store] = lambda: store
    fastapi_app.dependency_overrides[get_identity_manager] = lambda: SessionIdentityManager(store, codec)
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app):
    """Async httpx client using ASGI transport, no live server needed."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def deactivate_zone(store: MemoryStore):
    """Take a seeded zone out of service, as an operator would."""

    def _deactivate(zone_id: str) -> None:
        store.zones[zone_id] = store.zones[zone_id].model_copy(update={"is_active": False})

    return _deactivate
