from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Sequence

import httpx
import orjson
import pytest

from daylist.sync.config import RemoteConfig, SyncConfig
from daylist.sync.engine import SyncEngine
from daylist.sync.models import Task, record_key
from daylist.sync.session import SessionContext
from daylist.sync.tokens import TokenClient

TODAY = date(2025, 1, 1)
TODAY_KEY = record_key(TODAY)

_EOF = object()


class FakeConnection:
    """In-memory stand-in for a client WebSocket connection."""

    def __init__(self, url: str) -> None:
        self.url = url
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._inbox: asyncio.Queue[Any] = asyncio.Queue()

    async def send(self, message: str) -> None:
        if self.closed:
            raise OSError("connection closed")
        self.sent.append(orjson.loads(message))

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(_EOF)

    def __aiter__(self) -> "FakeConnection":
        return self

    async def __anext__(self) -> str:
        item = await self._inbox.get()
        if item is _EOF:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item

    def push(self, payload: dict[str, Any] | str) -> None:
        if not isinstance(payload, str):
            payload = orjson.dumps(payload).decode()
        self._inbox.put_nowait(payload)

    def hang_up(self) -> None:
        self._inbox.put_nowait(_EOF)

    def fail(self, exc: BaseException | None = None) -> None:
        self._inbox.put_nowait(exc or ConnectionResetError("connection reset"))


class FakeConnector:
    def __init__(self) -> None:
        self.connections: list[FakeConnection] = []
        self.unreachable = False

    async def __call__(self, url: str) -> FakeConnection:
        if self.unreachable:
            raise ConnectionRefusedError("store unreachable")
        connection = FakeConnection(url)
        self.connections.append(connection)
        return connection

    def latest(self, marker: str) -> FakeConnection:
        matches = [conn for conn in self.connections if marker in conn.url]
        assert matches, f"no connection with {marker!r}"
        return matches[-1]


class FakeClock:
    def __init__(self, start: int = 1_735_689_600_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class RecordingRenderer:
    def __init__(self) -> None:
        self.calls: list[tuple[tuple[Task, ...], bool]] = []

    def render(self, tasks: Sequence[Task], changed: bool) -> None:
        self.calls.append((tuple(tasks), changed))

    @property
    def last(self) -> tuple[tuple[Task, ...], bool]:
        assert self.calls, "nothing rendered"
        return self.calls[-1]


async def settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_config(**overrides: Any) -> SyncConfig:
    remote = RemoteConfig(endpoint="store.test", api_key="secret-key")
    return SyncConfig(remote=remote, **overrides)


def token_client(
    handler: Callable[[httpx.Request], httpx.Response] | None = None,
    requests: list[httpx.Request] | None = None,
) -> TokenClient:
    def _default(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"token": "tok-1"})

    def _record(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return (handler or _default)(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(_record))
    return TokenClient("https://store.test", "secret-key", client=client)


@dataclass
class Harness:
    engine: SyncEngine
    connector: FakeConnector
    clock: FakeClock
    renderer: RecordingRenderer
    token_requests: list[httpx.Request] = field(default_factory=list)

    @property
    def command(self) -> FakeConnection:
        return self.connector.latest("apiKey=")

    @property
    def notifications(self) -> FakeConnection:
        return self.connector.latest("token=")

    def sent(self, op: int | None = None) -> list[dict[str, Any]]:
        return [msg for msg in self.command.sent if op is None or msg["op"] == op]

    async def start(self) -> None:
        await self.engine.connect()
        await settle()


@pytest.fixture
def make_harness() -> Callable[..., Harness]:
    def _build(
        token_handler: Callable[[httpx.Request], httpx.Response] | None = None,
        **config: Any,
    ) -> Harness:
        clock = FakeClock()
        connector = FakeConnector()
        renderer = RecordingRenderer()
        requests: list[httpx.Request] = []
        cfg = make_config(**config)
        session = SessionContext.create(
            debounce_ms=cfg.debounce_ms,
            sent_id_capacity=cfg.sent_id_capacity,
            clock=clock,
            today=lambda: TODAY,
        )
        engine = SyncEngine(
            cfg,
            session=session,
            renderer=renderer,
            connector=connector,
            token_client=token_client(token_handler, requests),
        )
        return Harness(
            engine=engine,
            connector=connector,
            clock=clock,
            renderer=renderer,
            token_requests=requests,
        )

    return _build
