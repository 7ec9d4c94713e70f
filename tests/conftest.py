"""Shared fixtures for RiseUp tests."""

from typing import Any

import pytest

from custom_components.riseup.engines.connectivity_observer import ConnectivityObserver
from custom_components.riseup.engines.state_store import ObservableState
from custom_components.riseup.engines.sync_engine import EntitySyncService
from tests.helpers import FakeLocalStore, FakeRemoteStore

# pylint: disable=invalid-name
pytest_plugins = "pytest_homeassistant_custom_component"
# pylint: enable=invalid-name


@pytest.fixture(autouse=True)
def auto_enable_custom_integrations(enable_custom_integrations: Any) -> Any:
    """Enable custom integrations in tests."""
    # pylint: disable=unused-argument
    yield


@pytest.fixture
def remote() -> FakeRemoteStore:
    """Return an empty in-memory remote document store."""
    return FakeRemoteStore()


@pytest.fixture
def local() -> FakeLocalStore:
    """Return an empty in-memory local store."""
    return FakeLocalStore()


@pytest.fixture
def connectivity() -> ConnectivityObserver:
    """Return an observer that starts online."""
    return ConnectivityObserver()


@pytest.fixture
async def sync(
    remote: FakeRemoteStore, local: FakeLocalStore, connectivity: ConnectivityObserver
) -> EntitySyncService:
    """Return an Entity Sync Service over the fakes with a short remote timeout."""
    service = EntitySyncService(
        remote, local, connectivity, state=ObservableState(), remote_timeout=0.2
    )
    yield service
    await service.async_shutdown()
