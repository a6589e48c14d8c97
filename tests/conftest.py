"""
Shared doubles: a scripted in-process gateway standing in for Discord, and
the transport it hands out in place of a real websocket.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any

import msgspec
import pytest
import pytest_asyncio

from billy.gateway import ConnectError, GatewayClient, GatewayClosed, TransportError
from billy.gateway import gateway as gateway_module
from billy.gateway._transport import GatewayTransport

TOKEN = "secret-token-0123456789"


class _Close:
    def __init__(self, code: int | None, reason: str = "", *, local: bool = False) -> None:
        self.code = code
        self.reason = reason
        self.local = local


class FakeTransport:
    """Implements the `GatewayTransport` interface over in-memory queues."""

    def __init__(self, gateway: FakeGateway | None = None, url: Any = None) -> None:
        self.gateway = gateway
        self.url = url
        self.sent: list[dict[str, Any]] = []
        self.sent_at: list[float] = []
        self.close_code: int | None = None
        self._frames: asyncio.Queue[Any] = asyncio.Queue()
        self._observers: list[Any] = []

    @property
    def ops(self) -> list[int]:
        return [frame["op"] for frame in self.sent]

    @property
    def closed(self) -> bool:
        return self.close_code is not None

    def add_close_observer(self, observer: Any) -> None:
        self._observers.append(observer)

    def push(self, op: int, d: Any = None, *, s: int | None = None, t: str | None = None) -> None:
        self._frames.put_nowait(msgspec.json.encode({"op": op, "d": d, "s": s, "t": t}))

    def push_raw(self, frame: bytes | str) -> None:
        self._frames.put_nowait(frame)

    def peer_close(self, code: int | None, reason: str = "") -> None:
        self._frames.put_nowait(_Close(code, reason))

    async def receive(self) -> bytes | str:
        item = await self._frames.get()
        if isinstance(item, _Close):
            if not item.local:
                for observer in self._observers:
                    observer(item.code, item.reason)
            raise GatewayClosed(item.code, item.reason)
        return item

    async def send(self, data: bytes) -> None:
        if self.close_code is not None:
            raise TransportError("connection is closed")
        frame = msgspec.json.decode(data)
        self.sent.append(frame)
        self.sent_at.append(time.monotonic())
        if self.gateway is not None:
            self.gateway.respond(self, frame)

    async def close(self, code: int = 1000) -> None:
        if self.close_code is not None:
            return
        self.close_code = code
        self._frames.put_nowait(_Close(code, local=True))


class FakeGateway:
    """Answers like the real gateway: HELLO on open, READY to IDENTIFY,
    RESUMED to RESUME and an ack to every heartbeat."""

    bootstrap_url = "wss://gateway.example"

    def __init__(self) -> None:
        self.connections: list[FakeTransport] = []
        self.bootstrap_calls = 0
        self.bootstrap_error: Exception | None = None
        self.refused_hosts: set[str] = set()

        self.heartbeat_interval = 41250
        self.session_id = "abc123"
        self.resume_url = "wss://resume.example"
        self.first_frame: dict[str, Any] | None = None
        self.ready_body: dict[str, Any] | None = None
        self.ack_heartbeats = True
        self.accept_resume = True
        self.close_on_identify: int | None = None
        self.close_after_ready: int | None = None
        self.answer_resume = True
        self.send_hello = True
        self.sequence = 0

    def next_sequence(self) -> int:
        self.sequence += 1
        return self.sequence

    async def fetch_gateway_url(self, client_session: Any, token: str, *, api_url: str) -> str:
        self.bootstrap_calls += 1
        if self.bootstrap_error is not None:
            raise self.bootstrap_error
        return self.bootstrap_url

    async def connect(self, url: Any, *, client_session: Any = None) -> FakeTransport:
        if url.host in self.refused_hosts:
            raise ConnectError("failed to switch protocols with status 404", status=404)
        ws = FakeTransport(self, url)
        self.connections.append(ws)
        if self.first_frame is not None:
            ws.push(**self.first_frame)
        elif self.send_hello:
            ws.push(10, {"heartbeat_interval": self.heartbeat_interval})
        return ws

    def respond(self, ws: FakeTransport, frame: dict[str, Any]) -> None:
        op = frame["op"]
        if op == 2:
            if self.close_on_identify is not None:
                ws.peer_close(self.close_on_identify, "closed by test")
                return
            body = self.ready_body or {
                "v": 10,
                "session_id": self.session_id,
                "resume_gateway_url": self.resume_url,
            }
            ws.push(0, body, s=self.next_sequence(), t="READY")
            if self.close_after_ready is not None:
                ws.peer_close(self.close_after_ready, "closed by test")
                self.close_after_ready = None
        elif op == 6:
            if not self.answer_resume:
                return
            if self.accept_resume:
                ws.push(0, {}, s=self.next_sequence(), t="RESUMED")
            else:
                ws.push(9, False)
        elif op == 1 and self.ack_heartbeats:
            ws.push(11)


async def wait_until(predicate: Any, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def fake_gateway(monkeypatch: pytest.MonkeyPatch) -> FakeGateway:
    fake = FakeGateway()
    monkeypatch.setattr(gateway_module, "fetch_gateway_url", fake.fetch_gateway_url)
    monkeypatch.setattr(GatewayTransport, "connect", fake.connect)
    return fake


@pytest_asyncio.fixture
async def client(fake_gateway: FakeGateway):
    client = GatewayClient(TOKEN, 513, reconnect_attempts=3, backoff_base=0.01, backoff_max=0.05)
    yield client
    await client.disconnect()
