from __future__ import annotations

import asyncio
import logging
import random
import time
import typing
from collections.abc import Callable, Sequence

from ._codec import encode_heartbeat
from ._payload import GatewayPayload, OpCode
from ._session import GatewaySession
from ._transport import GatewayTransport

__all__: Sequence[str] = ("HeartbeatMonitor",)


@typing.final
class HeartbeatMonitor:
    """Keeps one connection alive and notices when it is not.

    After a random jitter the monitor beats, then waits on the control channel
    until the beat's deadline (``heartbeat_interval`` after the send). If
    every heartbeat sent so far, including those the gateway asked for, has
    been acked by then the next beat goes out, otherwise ``on_timeout`` is
    called and the monitor exits. Control events it has no use for are handed
    to ``on_event``.
    """

    _logger: logging.Logger = logging.getLogger("billy.heartbeat")

    def __init__(
        self,
        transport: GatewayTransport,
        session: GatewaySession,
        channel: asyncio.Queue[GatewayPayload],
        stop_event: asyncio.Event,
        *,
        on_timeout: Callable[[], None],
        on_event: Callable[[GatewayPayload], None],
        jitter: float | None = None,
    ) -> None:
        self._transport = transport
        self._session = session
        self._channel = channel
        self._stop_event = stop_event
        self._on_timeout = on_timeout
        self._on_event = on_event

        self.interval: float = session.heartbeat_interval
        self.jitter: float = random.random() * self.interval if jitter is None else jitter
        self._outstanding: int = 0

    async def _send(self) -> None:
        await self._transport.send(encode_heartbeat(self._session.last_sequence))
        self._outstanding += 1
        self._logger.debug("send heartbeat [s:%s]", self._session.last_sequence)

    async def _beat(self) -> None:
        await self._send()
        self._session.last_heartbeat_sent = time.monotonic()

    async def _next_event(self, timeout: float) -> GatewayPayload | None:
        """Next control event, or None on timeout or once stopped."""
        if not self._channel.empty():
            return self._channel.get_nowait()
        if timeout <= 0 or self._stop_event.is_set():
            return None

        get = asyncio.ensure_future(self._channel.get())
        stop = asyncio.ensure_future(self._stop_event.wait())
        try:
            await asyncio.wait((get, stop), timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in (get, stop):
                if not waiter.done():
                    waiter.cancel()

        if get.done() and not get.cancelled():
            return get.result()
        return None

    async def _handle(self, payload: GatewayPayload) -> None:
        if payload.op is OpCode.HEARTBEAT_ACK:
            self._session.last_heartbeat_ack = time.monotonic()
            self._outstanding = max(0, self._outstanding - 1)
            self._logger.debug("received heartbeat ack, latency %.3fs", self._session.latency)
        elif payload.op is OpCode.HEARTBEAT:
            self._logger.debug("heartbeat requested by the gateway")
            await self._send()
        else:
            self._on_event(payload)

    async def run(self) -> None:
        self._logger.debug("starting heartbeat with %ss interval, first beat in %.3fs", self.interval, self.jitter)
        first_beat = time.monotonic() + self.jitter
        while (remaining := first_beat - time.monotonic()) > 0:
            payload = await self._next_event(remaining)
            if self._stop_event.is_set():
                return
            if payload is not None:
                await self._handle(payload)
        if self._stop_event.is_set():
            return

        await self._beat()

        while True:
            elapsed = time.monotonic() - self._session.last_heartbeat_sent
            payload = await self._next_event(self.interval - elapsed)
            if self._stop_event.is_set():
                self._logger.debug("stop signal received, heartbeat stopped")
                return

            if payload is not None:
                await self._handle(payload)
            elif time.monotonic() - self._session.last_heartbeat_sent <= self.interval:
                continue
            elif self._outstanding:
                self._logger.warning("no heartbeat ack within %ss, zombie connection", self.interval)
                self._on_timeout()
                return
            else:
                await self._beat()
