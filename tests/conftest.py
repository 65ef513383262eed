"""
Shared fixtures and test utilities.
"""

import asyncio
import sys
import tempfile
from collections.abc import AsyncGenerator, Generator
from pathlib import Path
from typing import List

import pytest
from httpx import ASGITransport, AsyncClient

from drivefetch.app import create_app
from drivefetch.config import AuthConfig, RuntimeConfig, Settings
from drivefetch.services import Event, EventHub, EventType, ProcessSupervisor, Scheduler
from drivefetch.state import TaskRegistry

FAKE_GDOWN = Path(__file__).parent / "fake_gdown.py"
FAKE_TOOL_COMMAND = [sys.executable, str(FAKE_GDOWN)]


def folder_url(folder_id: str) -> str:
    return f"https://drive.google.com/drive/folders/{folder_id}"


def drain(sub) -> List[Event]:
    """Collect everything currently queued for a subscription."""
    events = []
    while not sub.queue.empty():
        events.append(sub.queue.get_nowait())
    return events


def event_types(events: List[Event]) -> List[EventType]:
    return [e.type for e in events]


@pytest.fixture
def temp_dir() -> Generator[Path]:
    """Provide a temporary directory that is cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db(temp_dir: Path) -> str:
    """Provide a temporary database file."""
    return str(temp_dir / "test_tasks.db")


@pytest.fixture
def registry(temp_db: str) -> TaskRegistry:
    """Provide a TaskRegistry backed by a temporary database."""
    return TaskRegistry(db_file=temp_db, flush_interval=0.05)


@pytest.fixture
def download_root(temp_dir: Path) -> Path:
    root = temp_dir / "downloads"
    root.mkdir()
    return root


@pytest.fixture
def hub() -> EventHub:
    return EventHub()


@pytest.fixture
def supervisor() -> ProcessSupervisor:
    return ProcessSupervisor(FAKE_TOOL_COMMAND)


@pytest.fixture
async def scheduler(
    registry: TaskRegistry,
    supervisor: ProcessSupervisor,
    hub: EventHub,
    temp_dir: Path,
) -> AsyncGenerator[Scheduler]:
    """Provide a scheduler driving the fake gdown; stopped after the test."""
    sched = Scheduler(
        registry,
        supervisor,
        hub,
        runtime_config=RuntimeConfig(max_concurrent=1),
        config_file=str(temp_dir / "config.json"),
        poll_interval=0.01,
    )
    yield sched
    await sched.shutdown()


@pytest.fixture
def settings(temp_dir: Path, download_root: Path) -> Settings:
    """Provide Settings pointing every file at the temp directory."""
    return Settings(
        download_root=str(download_root),
        tasks_db=str(temp_dir / "app_tasks.db"),
        config_file=str(temp_dir / "app_config.json"),
        flush_interval=0.05,
        poll_interval=0.01,
        resume_delay=0.0,
        tool_command=FAKE_TOOL_COMMAND,
        cookies_file=str(temp_dir / "gdown" / "cookies.txt"),
    )


@pytest.fixture
def auth_config_disabled() -> AuthConfig:
    """Provide a disabled AuthConfig for testing."""
    return AuthConfig(enabled=False, master_key=None, header_name="X-API-Key")


@pytest.fixture
def auth_config_enabled() -> AuthConfig:
    """Provide an enabled AuthConfig for testing."""
    return AuthConfig(enabled=True, master_key="test-master-key", header_name="X-API-Key")


@pytest.fixture
async def app(settings: Settings, auth_config_disabled: AuthConfig):
    application = create_app(settings, auth_config_disabled)
    yield application
    await application.state.scheduler.shutdown()


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient]:
    """Provide an async HTTP client for testing the FastAPI app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def wait_for(predicate, timeout: float = 10.0, interval: float = 0.01) -> None:
    """Poll predicate until it is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not reached before timeout")
        await asyncio.sleep(interval)
