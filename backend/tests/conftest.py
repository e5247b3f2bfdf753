"""Shared test fixtures and configuration for backend tests."""
import pytest

from chatrelay.config import AppSettings, StorageSettings, set_config

# Settings must be in place before the app module reads them at import time
set_config(AppSettings(storage=StorageSettings(db_path=":memory:")))

from fastapi.testclient import TestClient  # noqa: E402

from chatrelay.chat.coordinator import coordinator  # noqa: E402
from chatrelay.history.service import MessageLogService  # noqa: E402
from chatrelay.main import app  # noqa: E402


class FakeWebSocket:
    """Records frames sent to it; optionally fails every send."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send_json(self, message: dict) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)

    def types(self):
        return [m["type"] for m in self.sent]

    def of_type(self, kind: str):
        return [m for m in self.sent if m["type"] == kind]

    def clear(self):
        self.sent.clear()


@pytest.fixture(autouse=True)
def message_log():
    """Use an in-memory MessageLogService for each test."""
    MessageLogService.reset_instance()
    service = MessageLogService.get_instance(db_path=":memory:")
    yield service
    MessageLogService.reset_instance()


@pytest.fixture(autouse=True)
def reset_coordinator():
    """Clear coordinator state after each test to avoid interference."""
    yield
    coordinator.reset()


@pytest.fixture
def api_client():
    """Provide a TestClient for the main FastAPI app.

    Entered as a context manager so the lifespan runs and every WebSocket
    session shares one event loop.
    """
    with TestClient(app) as client:
        yield client
