"""
Shared fixtures: a per-test SQLite record store seeded with one restaurant,
and fake Twilio / OpenAI realtime sockets for driving a CallBridge.
"""

import asyncio
import json
import os
import sys

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["OPENAI_API_KEY"] = ""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Ensure backend modules are importable
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base
from registry import CallRegistry
from store import RecordStore
import models

RESTAURANT_PHONE = "+15550001111"


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def session_factory(tmp_path):
    """Fresh SQLite file per test; background writes get their own connections."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ivr.db'}",
        connect_args={"check_same_thread": False, "timeout": 10},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine)
    engine.dispose()


@pytest.fixture
def empty_store(session_factory) -> RecordStore:
    return RecordStore(session_factory)


@pytest.fixture
def store(session_factory) -> RecordStore:
    """Store seeded with Luigi's Trattoria and its menu."""
    db = session_factory()
    try:
        luigi = models.Restaurant(
            name="Luigi's Trattoria",
            phone=RESTAURANT_PHONE,
            active=True,
            cuisine="Italian",
            greeting_message="Ciao! Thanks for calling Luigi's.",
            voice="verse",
        )
        db.add(luigi)
        db.commit()
        db.refresh(luigi)
        db.add_all([
            models.MenuItem(restaurant_id=luigi.id, name="Margherita Pizza", price=12.00,
                            category="Mains", description="Tomato, mozzarella, basil",
                            modifications=json.dumps(["extra cheese", "gluten free crust"])),
            models.MenuItem(restaurant_id=luigi.id, name="Caesar Salad", price=9.50,
                            category="Appetizers", description="Romaine, parmesan, croutons"),
            models.MenuItem(restaurant_id=luigi.id, name="Tiramisu", price=7.25,
                            category="Desserts", description="Espresso soaked ladyfingers"),
            models.MenuItem(restaurant_id=luigi.id, name="Lobster Ravioli", price=24.00,
                            category="Mains", available=False),
        ])
        db.commit()
    finally:
        db.close()
    return RecordStore(session_factory)


def count_rows(session_factory, model) -> int:
    db = session_factory()
    try:
        return db.query(model).count()
    finally:
        db.close()


# =============================================================================
# Fake Sockets
# =============================================================================

class FakeTwilioSocket:
    """Stands in for the FastAPI WebSocket of the Twilio media stream."""

    def __init__(self):
        self.sent: list[dict] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    def push(self, event: dict) -> None:
        self._incoming.put_nowait(json.dumps(event))

    def hang_up(self) -> None:
        self._incoming.put_nowait(None)

    async def iter_text(self):
        while True:
            message = await self._incoming.get()
            if message is None:
                return
            yield message

    async def send_json(self, data: dict) -> None:
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)

    def events(self, name: str) -> list[dict]:
        return [m for m in self.sent if m.get("event") == name]


class FakeRealtimeSocket:
    """Stands in for the websockets client connection to the realtime API."""

    def __init__(self):
        self.sent: list[dict] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    def push(self, event: dict) -> None:
        self._incoming.put_nowait(json.dumps(event))

    async def send(self, message: str) -> None:
        self.sent.append(json.loads(message))

    def __aiter__(self):
        return self

    async def __anext__(self):
        message = await self._incoming.get()
        if message is None:
            raise StopAsyncIteration
        return message

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)

    def types(self) -> list[str]:
        return [m.get("type") for m in self.sent]


class FakeConnector:
    def __init__(self):
        self.calls = 0
        self.socket = FakeRealtimeSocket()
        self.fail = False

    async def __call__(self):
        self.calls += 1
        if self.fail:
            raise OSError("realtime endpoint unreachable")
        return self.socket


@pytest.fixture
def twilio_ws() -> FakeTwilioSocket:
    return FakeTwilioSocket()


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def registry() -> CallRegistry:
    return CallRegistry()


def start_event(called: str = RESTAURANT_PHONE, call_sid: str = "CA123", stream_sid: str = "MZ456") -> dict:
    return {
        "event": "start",
        "start": {
            "streamSid": stream_sid,
            "customParameters": {
                "callSid": call_sid,
                "callerPhone": "+15557654321",
                "calledNumber": called,
            },
        },
    }


async def eventually(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
