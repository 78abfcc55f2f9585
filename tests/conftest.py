"""Shared fixtures for the test-suite."""

from __future__ import annotations

import asyncio
import json
import os
import sys
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import anyio
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

TEST_DB_PATH = Path(tempfile.gettempdir()) / "chat3d_api_tests.db"
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["ACCESS_TOKEN_EXPIRE_MINUTES"] = "30"
os.environ["EVENT_BUS_MODE"] = "local"

from redis.exceptions import ConnectionError as RedisConnectionError  # noqa: E402

from app.config import get_settings  # noqa: E402

get_settings.cache_clear()

from app.domain.entities import User  # noqa: E402
from app.infrastructure.database import (  # noqa: E402
    Base,
    SessionLocal,
    engine,
    initialize_database,
)
from app.infrastructure.notifications import StreamConnection  # noqa: E402
from app.infrastructure.repositories import UserRepository  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_database():
    """Ensure the test database starts from a clean state for each test."""

    Base.metadata.drop_all(bind=engine)
    initialize_database()
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def make_user() -> Callable[..., User]:
    """Return a factory that inserts users into the test database."""

    counter = 0

    def _make_user(*, user_id: str | None = None, is_active: bool = True) -> User:
        nonlocal counter
        counter += 1
        with SessionLocal() as session:
            return UserRepository(session).create(
                User(
                    id=user_id,
                    name=f"User {counter}",
                    email=f"user{counter}@example.com",
                    is_active=is_active,
                )
            )

    return _make_user


@pytest.fixture
def wait_until() -> Callable[..., Any]:
    async def _wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
        with anyio.fail_after(timeout):
            while not predicate():
                await anyio.sleep(0.01)

    return _wait_until


def parse_event_frame(frame: str) -> dict[str, Any]:
    """Split an ``id``/``event``/``data`` frame into its fields."""

    fields: dict[str, Any] = {}
    for line in frame.strip("\n").split("\n"):
        name, _, value = line.partition(": ")
        fields[name] = value
    return {
        "id": int(fields["id"]),
        "event": fields["event"],
        "data": json.loads(fields["data"]),
    }


class FrameReader:
    """Consume the frames of a :class:`StreamConnection` like a response body."""

    def __init__(self, connection: StreamConnection) -> None:
        self.connection = connection
        self.frames: list[str] = []
        self._iterator = connection.frames().__aiter__()

    async def read(self, count: int = 1, timeout: float = 1.0) -> list[str]:
        received = []
        with anyio.fail_after(timeout):
            for _ in range(count):
                received.append(await self._iterator.__anext__())
        self.frames.extend(received)
        return received

    async def read_available(self) -> list[str]:
        received = []
        for _ in range(self.connection.pending_frames):
            received.append(await self._iterator.__anext__())
        self.frames.extend(received)
        return received

    @property
    def comments(self) -> list[str]:
        return [frame for frame in self.frames if frame.startswith(":")]

    @property
    def events(self) -> list[dict[str, Any]]:
        return [
            parse_event_frame(frame) for frame in self.frames if frame.startswith("id:")
        ]

    async def close(self) -> None:
        await self._iterator.aclose()


@pytest.fixture
def frame_reader() -> type[FrameReader]:
    return FrameReader


_CONNECTION_LOST = object()


class FakePubSub:
    """Subset of ``redis.asyncio.client.PubSub`` used by the bus."""

    def __init__(self, hub: "FakeRedisHub") -> None:
        self.hub = hub
        self.channels: set[str] = set()
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self.closed = False

    async def subscribe(self, *channels: str) -> None:
        self.channels.update(channels)
        self.hub.subscriptions.append(self)
        for channel in channels:
            self.queue.put_nowait({"type": "subscribe", "channel": channel, "data": 1})

    def drop(self) -> None:
        """Make the next read fail as if the server connection was lost."""

        self.queue.put_nowait(_CONNECTION_LOST)

    async def listen(self):
        while True:
            message = await self.queue.get()
            if message is _CONNECTION_LOST:
                raise RedisConnectionError("Connection closed by server")
            yield message

    async def aclose(self) -> None:
        self.closed = True
        if self in self.hub.subscriptions:
            self.hub.subscriptions.remove(self)


class FakeRedisClient:
    """Subset of ``redis.asyncio.Redis`` used by the bus."""

    def __init__(self, hub: "FakeRedisHub") -> None:
        self.hub = hub
        self.closed = False

    async def ping(self) -> bool:
        self.hub.ping_calls += 1
        await asyncio.sleep(0)
        if self.hub.unreachable:
            raise RedisConnectionError("Connection refused")
        return True

    async def publish(self, channel: str, data: str) -> int:
        if self.hub.unreachable:
            raise RedisConnectionError("Connection refused")
        self.hub.published.append((channel, data))
        return self.hub.deliver(channel, data)

    def pubsub(self) -> FakePubSub:
        return FakePubSub(self.hub)

    async def aclose(self) -> None:
        self.closed = True


class FakeRedisHub:
    """In-memory stand-in for a Redis server shared by several processes."""

    def __init__(self) -> None:
        self.subscriptions: list[FakePubSub] = []
        self.published: list[tuple[str, str]] = []
        self.clients: list[FakeRedisClient] = []
        self.ping_calls = 0
        self.unreachable = False

    def client(self) -> FakeRedisClient:
        client = FakeRedisClient(self)
        self.clients.append(client)
        return client

    def deliver(self, channel: str, data: Any) -> int:
        receivers = [sub for sub in self.subscriptions if channel in sub.channels]
        for subscription in receivers:
            subscription.queue.put_nowait(
                {"type": "message", "channel": channel, "data": data}
            )
        return len(receivers)


@pytest.fixture
def redis_hub() -> FakeRedisHub:
    return FakeRedisHub()
