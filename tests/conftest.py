import pytest
import pytest_asyncio

from edgeai.bridge.bridge import ExtensionBridge
from edgeai.bridge.channel import BroadcastChannel
from edgeai.bridge.simulated import SimulatedExtension
from edgeai.config.environment import Environment


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Ignore the user's settings file and environment overrides."""
    monkeypatch.setattr(Environment, "settings", {})
    for key in (
        "SCHEDULER_RESOURCES",
        "EXTENSION_RECONNECT_DELAY",
        "EXTENSION_PING_TIMEOUT",
        "EXTENSION_SEARCH_ONLY_TIMEOUT",
        "EXTENSION_SEARCH_TIMEOUT",
        "EXTENSION_EXTRACT_TIMEOUT",
        "EXTENSION_RELAY_URL",
    ):
        monkeypatch.delenv(key, raising=False)
    yield


@pytest.fixture
def channel():
    return BroadcastChannel()


@pytest_asyncio.fixture
async def extension(channel):
    ext = SimulatedExtension(channel)
    yield ext
    ext.detach()


@pytest_asyncio.fixture
async def bridge(channel):
    b = ExtensionBridge(channel, reconnect_delay=0.05)
    yield b
    b.cleanup()


@pytest_asyncio.fixture
async def connected_bridge(channel, extension, bridge):
    await extension.wait_until_connected(bridge)
    return bridge
