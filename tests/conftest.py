import pytest

from switchboard.infrastructure.database import AppDatabase
from switchboard.messaging.types import DeliveryError


@pytest.fixture
def db() -> AppDatabase:
    """Create an in-memory database for testing."""
    app_db = AppDatabase()
    app_db._init_test()
    return app_db


class FakeAdapter:
    """In-memory channel adapter that records what it was asked to send."""

    def __init__(self, name: str, fail: bool = False) -> None:
        self.name = name
        self.fail = fail
        self.sent: list[str] = []
        self.direct: list[tuple[str, str]] = []
        self.disconnected = False

    async def send_message(self, text: str) -> None:
        if self.fail:
            raise DeliveryError(f"{self.name} is down")
        self.sent.append(text)

    async def send_message_to_user(self, user_id: str, text: str) -> None:
        if self.fail:
            raise DeliveryError(f"{self.name} is down")
        self.direct.append((user_id, text))

    async def disconnect(self) -> None:
        self.disconnected = True


@pytest.fixture
def make_adapter():
    return FakeAdapter
