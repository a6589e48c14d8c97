from __future__ import annotations

import asyncio
import functools
import logging
import typing
from collections.abc import Sequence
from enum import Enum
from typing import Final

from aiohttp import ClientSession

from ._bootstrap import DEFAULT_API_URL, fetch_gateway_url, gateway_url
from ._codec import READY, RESUMED, encode_identify, encode_resume
from ._errors import ConnectError, GatewayError, HandshakeViolation
from ._heartbeat import HeartbeatMonitor
from ._listener import EventListener
from ._payload import GatewayPayload, Hello, OpCode, Ready, is_resumable
from ._router import DispatchRouter
from ._session import GatewaySession, redact
from ._transport import GatewayTransport

__all__: Sequence[str] = ("GatewayClient", "GatewayState")

_CHANNEL_SIZE: Final[int] = 16

# Closing with 1000 invalidates the session on the server side.
_RESUMABLE_CLOSE: Final[int] = 4000
_NORMAL_CLOSE: Final[int] = 1000

# Upper bound on the wait for HELLO, before the heartbeat interval is known.
_HELLO_TIMEOUT: Final[float] = 30.0


@typing.final
class GatewayState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"


class GatewayClient:
    """Connection to the gateway, kept alive until `disconnect()`.

    Each opened websocket is a generation with its own control channel, stop
    signal, Event Listener and Heartbeat Monitor. A generation is torn down
    completely before the next one is opened.

    Everything that notices a dead connection (close observer, heartbeat
    timeout, RECONNECT / INVALID_SESSION, a crashed task) only requests
    recovery; a single supervisor task decides how to act on it.
    """

    _logger: logging.Logger = logging.getLogger("billy.gateway")

    def __init__(
        self,
        token: str,
        intents: int,
        *,
        api_url: str = DEFAULT_API_URL,
        client_session: ClientSession | None = None,
        router: DispatchRouter | None = None,
        reconnect_attempts: int = 5,
        backoff_base: float = 1.0,
        backoff_max: float = 60.0,
        hello_timeout: float = _HELLO_TIMEOUT,
    ) -> None:
        self.api_url: str = api_url
        self.router: DispatchRouter = router or DispatchRouter()
        self.reconnect_attempts: int = reconnect_attempts
        self.backoff_base: float = backoff_base
        self.backoff_max: float = backoff_max
        self.hello_timeout: float = hello_timeout

        self._session: GatewaySession = GatewaySession(token, intents)
        self._state: GatewayState = GatewayState.IDLE

        self._client_session: ClientSession | None = client_session
        self._owns_client_session: bool = client_session is None

        self._generation: int = 0
        self._ws: GatewayTransport | None = None
        self._channel: asyncio.Queue[GatewayPayload] | None = None
        self._stop_event: asyncio.Event = asyncio.Event()
        self._listener_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self.heartbeat: HeartbeatMonitor | None = None
        self._last_close: tuple[int | None, str] | None = None

        self._supervisor_task: asyncio.Task[None] | None = None
        self._shutdown_task: asyncio.Task[None] | None = None
        self._recovery_requested: asyncio.Event = asyncio.Event()
        self._pending_resume: bool | None = None
        self._closed_event: asyncio.Event = asyncio.Event()

    @property
    def state(self) -> GatewayState:
        return self._state

    @property
    def session(self) -> GatewaySession:
        return self._session

    @property
    def latency(self) -> float:
        return self._session.latency

    # Connection generations

    async def _http(self) -> ClientSession:
        if self._client_session is None or self._client_session.closed:
            self._client_session = ClientSession()
            self._owns_client_session = True
        return self._client_session

    async def _close_http(self) -> None:
        if self._owns_client_session and self._client_session is not None:
            await self._client_session.close()
            self._client_session = None

    async def _open(self, url: str) -> None:
        """Open a websocket and start its Event Listener."""
        ws = await GatewayTransport.connect(gateway_url(url), client_session=await self._http())

        self._generation += 1
        generation = self._generation
        self._ws = ws
        self._channel = asyncio.Queue(_CHANNEL_SIZE)
        self._stop_event = asyncio.Event()
        self._last_close = None

        ws.add_close_observer(functools.partial(self._on_close, generation))
        listener = EventListener(ws, self._session, self._channel, self.router)
        self._listener_task = asyncio.create_task(listener.run(), name=f"listener {generation}")
        self._listener_task.add_done_callback(functools.partial(self._on_task_done, generation))

    def _start_heartbeat(self) -> None:
        assert self._ws is not None and self._channel is not None
        generation = self._generation
        self.heartbeat = HeartbeatMonitor(
            self._ws,
            self._session,
            self._channel,
            self._stop_event,
            on_timeout=functools.partial(self._on_heartbeat_timeout, generation),
            on_event=functools.partial(self._on_control_event, generation),
        )
        self._heartbeat_task = asyncio.create_task(self.heartbeat.run(), name=f"heartbeat {generation}")
        self._heartbeat_task.add_done_callback(functools.partial(self._on_task_done, generation))

    async def _teardown(self, code: int) -> None:
        """Stop the current generation and wait until its tasks are gone."""
        self._stop_event.set()
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close(code)

        tasks = [task for task in (self._listener_task, self._heartbeat_task) if task is not None]
        self._listener_task = self._heartbeat_task = None
        self._channel = None
        self.heartbeat = None
        current = asyncio.current_task()
        for task in tasks:
            if task is not current and not task.done():
                task.cancel()
        await asyncio.gather(*(task for task in tasks if task is not current), return_exceptions=True)

    async def _next_event(self, expected: str, timeout: float) -> GatewayPayload:
        """Next control event while a handshake owns the channel.

        Raises `HandshakeViolation` if nothing arrives within ``timeout``
        seconds or the connection ends first.
        """
        assert self._channel is not None and self._listener_task is not None
        if not self._channel.empty():
            return self._channel.get_nowait()

        get = asyncio.ensure_future(self._channel.get())
        try:
            await asyncio.wait((get, self._listener_task), timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not get.done():
                get.cancel()

        if get.done() and not get.cancelled():
            return get.result()
        if not self._listener_task.done():
            raise HandshakeViolation(f"timed out after {timeout}s waiting for {expected}")

        cause = None if self._listener_task.cancelled() else self._listener_task.exception()
        if self._last_close is not None:
            code, reason = self._last_close
            raise HandshakeViolation(f"connection closed during handshake [code:{code}] {reason}") from cause
        raise HandshakeViolation("connection lost during handshake") from cause

    # Handshakes

    async def _connect(self) -> None:
        self._state = GatewayState.CONNECTING
        await self._teardown(_NORMAL_CLOSE)
        self._session.reset()

        url = await fetch_gateway_url(await self._http(), self._session.token, api_url=self.api_url)
        self._logger.info("connecting to %s", url)
        await self._open(url)
        try:
            hello = await self._next_event("hello", self.hello_timeout)
            if hello.op is not OpCode.HELLO:
                raise HandshakeViolation(f"expected hello, but received [op:{hello.op}]")
            assert isinstance(hello.d, Hello)

            assert self._ws is not None
            await self._ws.send(encode_identify(self._session.token, self._session.intents))
            self._logger.debug("sent identify [token:%s,intents:%s]", redact(self._session.token), self._session.intents)

            ready = await self._next_event("ready", hello.d.heartbeat_interval / 1_000.0)
            if ready.op is not OpCode.DISPATCH or ready.t != READY:
                raise HandshakeViolation(f"expected ready, but received [op:{ready.op},t:{ready.t}]")
            assert isinstance(ready.d, Ready)
        except BaseException:
            await self._teardown(_NORMAL_CLOSE)
            raise

        self._session.session_id = ready.d.session_id
        self._session.resume_url = ready.d.resume_gateway_url
        self._session.heartbeat_interval = hello.d.heartbeat_interval / 1_000.0
        self._logger.info(
            "ready: session %r, resume url %s, heartbeat interval %ss",
            self._session.session_id,
            self._session.resume_url,
            self._session.heartbeat_interval,
        )

        self._start_heartbeat()
        self._mark_connected()

    async def connect(self) -> None:
        """Open a new session: HELLO, IDENTIFY, READY.

        Errors are raised to the caller. Once connected, connection losses are
        recovered in the background until `disconnect()`.
        """
        if self._state not in (GatewayState.IDLE, GatewayState.DISCONNECTED):
            raise RuntimeError(f"cannot connect while {self._state.value}")

        self._closed_event.clear()
        try:
            await self._connect()
        except BaseException:
            self._state = GatewayState.DISCONNECTED
            await self._close_http()
            self._closed_event.set()
            raise

        self._supervisor_task = asyncio.create_task(self._supervise(), name="gateway supervisor")
        self._supervisor_task.add_done_callback(self._on_supervisor_done)

    async def reconnect(self) -> None:
        """Resume the session on a new connection.

        Falls back to a full `connect` flow when the session cannot be resumed,
        the resume URL cannot be opened, or the gateway does not confirm the
        resume.
        """
        self._logger.info("attempting to reconnect...")
        self._state = GatewayState.RECONNECTING
        await self._teardown(_RESUMABLE_CLOSE)

        if not self._session.resumable:
            self._logger.info("session is not resumable, restarting connection...")
            await self._connect()
            return

        assert self._session.resume_url is not None and self._session.session_id is not None
        try:
            await self._open(self._session.resume_url)
        except ConnectError as exc:
            self._logger.warning("error reestablishing connection to gateway: %s, restarting connection...", exc)
            await self._connect()
            return

        try:
            hello = await self._next_event("hello", self.hello_timeout)
            if hello.op is not OpCode.HELLO:
                raise HandshakeViolation(f"expected hello, but received [op:{hello.op}]")
            assert isinstance(hello.d, Hello)
            self._session.heartbeat_interval = hello.d.heartbeat_interval / 1_000.0

            assert self._ws is not None
            await self._ws.send(
                encode_resume(self._session.token, self._session.session_id, self._session.last_sequence)
            )
            self._logger.debug("sent resume [session:%s,s:%s]", self._session.session_id, self._session.last_sequence)

            resumed = await self._next_event("resumed", self._session.heartbeat_interval)
            if resumed.op is not OpCode.DISPATCH or resumed.t != RESUMED:
                raise HandshakeViolation(f"expected resumed, but received [op:{resumed.op},t:{resumed.t}]")
        except GatewayError as exc:
            self._logger.warning("failed to resume connection: %s, restarting connection...", exc)
            await self._connect()
            return

        self._start_heartbeat()
        self._mark_connected()
        self._logger.info("resumed session %r at [s:%s]", self._session.session_id, self._session.last_sequence)

    async def disconnect(self) -> None:
        """Stop everything and forget the session. Safe to call repeatedly."""
        if self._state is GatewayState.DISCONNECTED and self._ws is None and self._supervisor_task is None:
            return
        self._logger.info("disconnecting...")
        self._state = GatewayState.DISCONNECTED

        supervisor, self._supervisor_task = self._supervisor_task, None
        if supervisor is not None and supervisor is not asyncio.current_task():
            supervisor.cancel()
            await asyncio.gather(supervisor, return_exceptions=True)

        await self._teardown(_NORMAL_CLOSE)
        await self.router.close()
        self._session.reset()
        await self._close_http()

        self._closed_event.set()
        self._logger.info("disconnected")

    async def wait_closed(self) -> None:
        await self._closed_event.wait()

    # Recovery

    def _mark_connected(self) -> None:
        self._state = GatewayState.CONNECTED
        # The connection may already have ended while the handshake drained
        # the channel; those signals were dropped outside CONNECTED.
        if self._last_close is not None:
            code, _ = self._last_close
            self._logger.info("connection closed during handshake [code:%s]", code)
            self._request_recovery(resume=is_resumable(code))
        elif self._listener_task is not None and self._listener_task.done():
            self._request_recovery(resume=True)

    def _request_recovery(self, *, resume: bool) -> None:
        if self._state is not GatewayState.CONNECTED:
            return
        self._pending_resume = resume if self._pending_resume is None else self._pending_resume and resume
        self._recovery_requested.set()

    def _on_close(self, generation: int, code: int | None, reason: str) -> None:
        if generation != self._generation:
            return
        self._last_close = (code, reason)
        self._logger.info("websocket closed with code: %s, reason: %s", code, reason)
        self._request_recovery(resume=is_resumable(code))

    def _on_heartbeat_timeout(self, generation: int) -> None:
        if generation == self._generation:
            self._request_recovery(resume=True)

    def _on_control_event(self, generation: int, payload: GatewayPayload) -> None:
        if generation != self._generation:
            return
        if payload.op is OpCode.RECONNECT:
            self._logger.info("gateway requested a reconnect")
            self._request_recovery(resume=True)
        elif payload.op is OpCode.INVALID_SESSION:
            self._logger.info("session invalidated [resumable:%s]", payload.d)
            self._request_recovery(resume=bool(payload.d))
        else:
            self._logger.debug("ignoring [op:%s,t:%s]", payload.op, payload.t)

    def _on_task_done(self, generation: int, task: asyncio.Task[None]) -> None:
        if task.cancelled() or generation != self._generation:
            return
        if (exc := task.exception()) is not None:
            self._logger.error("%s crashed", task.get_name(), exc_info=exc)
            self._request_recovery(resume=True)

    def _on_supervisor_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled() or (exc := task.exception()) is None:
            return
        self._logger.error("%s crashed", task.get_name(), exc_info=exc)
        if self._supervisor_task is task:
            self._supervisor_task = None
        self._shutdown_task = asyncio.create_task(self.disconnect(), name="gateway shutdown")

    def _backoff(self, attempt: int) -> float:
        return min(self.backoff_max, self.backoff_base * 2 ** (attempt - 1))

    async def _recover(self, resume: bool) -> bool:
        self._state = GatewayState.RECONNECTING
        for attempt in range(self.reconnect_attempts):
            if attempt:
                delay = self._backoff(attempt)
                self._logger.info("retrying in %.1fs (attempt %s/%s)", delay, attempt + 1, self.reconnect_attempts)
                await asyncio.sleep(delay)
            try:
                if resume:
                    await self.reconnect()
                else:
                    await self._connect()
                return True
            except GatewayError as exc:
                self._logger.warning("reconnect attempt %s failed: %s", attempt + 1, exc)
                # A failed resume already fell back to a full connect.
                resume = False
        return False

    async def _supervise(self) -> None:
        while True:
            await self._recovery_requested.wait()
            self._recovery_requested.clear()
            resume, self._pending_resume = bool(self._pending_resume), None
            if self._state is GatewayState.DISCONNECTED:
                return

            if not await self._recover(resume):
                self._logger.error("giving up after %s reconnect attempts", self.reconnect_attempts)
                await self.disconnect()
                return
