"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides
fixtures and configuration that can be used across all tests.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from scribe.services.capture.decoder import PassthroughDecoder
from scribe.services.capture.transport import QueueFrameStream, VoiceTransport

# Configure pytest-asyncio
pytest_plugins = ("pytest_asyncio",)


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom settings and markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "slow: Slow running tests")


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:  # noqa: ARG001
    """Apply timeout to all tests except those marked as slow."""
    for item in items:
        if "slow" not in item.keywords:
            item.add_marker(pytest.mark.timeout(30))


@pytest.fixture(scope="session")
def shared_test_log_file(tmp_path_factory) -> str:
    """
    Create a single shared log file for all tests in the session.

    This prevents creating a new timestamped log file for each test,
    consolidating all test logs into one file for easier debugging.

    Returns:
        str: Path to the shared log file
    """
    from datetime import datetime

    # Create a logs directory in the test temp directory
    logs_dir = tmp_path_factory.mktemp("logs")

    # Create a single log file with timestamp in the name
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = logs_dir / f"test_run_{timestamp}.log"

    return str(log_file)


# ============================================================================
# Mock Fixtures
# ============================================================================


@pytest.fixture
def mock_services() -> MagicMock:
    """Create a mock services manager with logging service."""
    services = MagicMock()
    services.logging_service = AsyncMock()
    services.logging_service.info = AsyncMock()
    services.logging_service.debug = AsyncMock()
    services.logging_service.warning = AsyncMock()
    services.logging_service.error = AsyncMock()
    return services


@pytest.fixture
def sample_transcript() -> str:
    """Provide a sample speaker-labelled transcript for testing."""
    return (
        "**alice:**\nWelcome everyone to today's meeting.\n\n"
        "**bob:**\nThanks for having me. Let's discuss the project timeline.\n\n"
        "**alice:**\nAgreed. We need to finish phase one by next week."
    )


# ============================================================================
# Testing Environment Fixtures (mock Whisper and Ollama servers)
# ============================================================================


@pytest.fixture
def test_config(tmp_path):
    """
    Pipeline configuration with short timings for tests.

    Storage lives under the test's temporary directory.
    """
    from scribe.config import PipelineConfig

    return PipelineConfig(
        recording_storage_path=str(tmp_path / "data" / "recordings"),
        flush_interval_seconds=0.05,
        finalize_timeout_seconds=0.5,
        reconnect_attempts=2,
        reconnect_timeout_seconds=0.2,
        transcription_initial_backoff_seconds=0.0,
        transcription_max_backoff_seconds=0.0,
    )


@pytest.fixture
async def test_context(test_config):
    """
    Create a test context instance.

    Yields:
        Context: Test context instance
    """
    from scribe.context import Context

    context = Context(config=test_config)
    yield context


@pytest.fixture
async def test_server_manager(test_context):
    """
    Create and connect a test server manager with mock servers.

    Yields:
        ServerManager: Connected test server manager instance
    """
    from scribe.constructor import ServerManagerType
    from scribe.server.constructor import construct_server_manager

    server = construct_server_manager(ServerManagerType.TESTING, test_context)
    test_context.set_server_manager(server)
    await server.connect_all()

    yield server

    await server.disconnect_all()


@pytest.fixture
async def test_whisper_client(test_server_manager):
    """Get the mock Whisper client from the test server manager."""
    yield test_server_manager.whisper_server_client


@pytest.fixture
async def test_summarizer_client(test_server_manager):
    """Get the mock summarizer client from the test server manager."""
    yield test_server_manager.summarizer_client


@pytest.fixture
async def services_manager(test_server_manager, shared_test_log_file):
    """
    Create and initialize a services manager backed by the mock servers.

    Yields:
        ServicesManager: Initialized services manager instance
    """
    from scribe.constructor import ServerManagerType
    from scribe.services.constructor import construct_services_manager

    services = construct_services_manager(
        ServerManagerType.TESTING,
        context=test_server_manager.context,
        log_file=shared_test_log_file,  # Use shared log file
        use_timestamp_logs=False,  # Don't create timestamp-based logs
        console_output=False,
    )
    test_server_manager.context.set_services_manager(services)

    await services.initialize_all()

    yield services

    await services.shutdown_all(timeout=10.0)


# ============================================================================
# Fake Voice Transport
# ============================================================================


class FakeTransport(VoiceTransport):
    """
    In-memory VoiceTransport.

    Tests push frames into the streams handed out by ``subscribe`` and
    control whether reconnect attempts succeed.
    """

    def __init__(self):
        self.handler = None
        self.streams: dict[str, list] = {}
        self.reconnect_result = False
        self.reconnect_delay = 0.0
        self.reconnect_calls = 0
        self.disconnected = False
        self.stream_factory = None

    def set_event_handler(self, handler) -> None:
        self.handler = handler

    def subscribe(self, participant_id: str):
        stream = self.stream_factory(participant_id) if self.stream_factory else QueueFrameStream()
        self.streams.setdefault(participant_id, []).append(stream)
        return stream

    def latest(self, participant_id: str):
        return self.streams[participant_id][-1]

    async def reconnect(self) -> bool:
        self.reconnect_calls += 1
        if self.reconnect_delay:
            await asyncio.sleep(self.reconnect_delay)
        return self.reconnect_result

    async def disconnect(self) -> None:
        self.disconnected = True

    def display_label(self, participant_id: str) -> str:
        return f"user-{participant_id}"

    def create_decoder(self) -> PassthroughDecoder:
        return PassthroughDecoder()


class HangingStream:
    """Frame stream that never yields and ignores close()."""

    def __init__(self):
        self._never = asyncio.Event()
        self.close_calls = 0

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        await self._never.wait()
        raise StopAsyncIteration

    async def close(self) -> None:
        self.close_calls += 1


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def make_fake_transport():
    return FakeTransport


@pytest.fixture
def hanging_stream_class():
    return HangingStream


@pytest.fixture
def wait_until():
    """Poll a predicate on the event loop until it holds or the timeout passes."""
    async def _wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
        loop = asyncio.get_event_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("Condition not met before timeout")
            await asyncio.sleep(interval)

    return _wait_until
