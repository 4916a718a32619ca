import pytest
import pytest_asyncio

from cd48 import CD48, CD48Config, MockCD48, MockTransport


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "slow: marks test as slow running test")
    config.addinivalue_line(
        "markers", "hardware: marks test that require physical hardware"
    )


FAST = dict(
    settle_delay=0.0,
    command_delay=0.005,
    command_timeout=0.2,
    reconnect_delay=0.01,
    retry_delay=0.01,
)


@pytest.fixture
def make_config():
    """Factory for fast configs, keyword overrides on top."""

    def _make(**overrides):
        return CD48Config(**{**FAST, **overrides})

    return _make


@pytest.fixture
def fast_config(make_config):
    """Config with timings shrunk so the mock device runs quickly."""
    return make_config()


@pytest.fixture
def mock_device():
    return MockCD48()


@pytest.fixture
def transport(mock_device):
    return MockTransport(mock_device)


@pytest_asyncio.fixture
async def cd48(transport, fast_config):
    """A CD48 connected to a mock device."""
    dev = CD48(transport=transport, config=fast_config)
    await dev.connect()
    yield dev
    await dev.disconnect()
