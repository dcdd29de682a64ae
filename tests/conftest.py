"""
Shared fixtures for storefront cart tests.

The remote cart service is the in-memory FastAPI app from
fake_cart_api, reached through httpx.ASGITransport. Local storage
is an in-memory SQLite database.
"""
import httpx
import pytest

from storefront_cart.config import Settings
from storefront_cart.database import create_storage_engine, create_session_factory
from storefront_cart.services.auth_signal import AuthSignal
from storefront_cart.services.cart_gateway import CartGateway
from storefront_cart.services.cart_state import CartState
from storefront_cart.services.local_cart_store import LocalCartStore
from storefront_cart.services.local_storage import LocalStorage
from tests.fake_cart_api import FakeCartBackend, create_fake_cart_api

API_BASE_URL = "http://testserver/api"


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        api_base_url=API_BASE_URL,
        local_storage_url="sqlite://",
        request_timeout=5.0,
    )


@pytest.fixture
def storage(test_settings):
    engine = create_storage_engine(test_settings.local_storage_url, echo=False)
    yield LocalStorage(create_session_factory(engine))
    engine.dispose()


@pytest.fixture
def local_store(storage, test_settings) -> LocalCartStore:
    return LocalCartStore(storage, test_settings)


@pytest.fixture
def backend() -> FakeCartBackend:
    return FakeCartBackend()


@pytest.fixture
async def gateway(backend, test_settings):
    client = httpx.AsyncClient(
        transport=httpx.ASGITransport(app=create_fake_cart_api(backend)),
        base_url=API_BASE_URL,
    )
    gateway = CartGateway(test_settings, client=client)
    yield gateway
    await gateway.aclose()


@pytest.fixture
def auth() -> AuthSignal:
    return AuthSignal(is_authenticated=False)


@pytest.fixture
async def cart_state(gateway, local_store, auth, test_settings):
    state = CartState(gateway, local_store, auth, settings=test_settings)
    await state.mount()
    yield state
    await state.shutdown()


def mock_gateway(handler, settings: Settings) -> CartGateway:
    """Gateway over httpx.MockTransport for transport-level failures."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=API_BASE_URL)
    return CartGateway(settings, client=client)
