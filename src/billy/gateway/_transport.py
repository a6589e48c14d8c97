from __future__ import annotations

import asyncio
import logging
import typing
from collections.abc import Callable, Sequence
from contextlib import AsyncExitStack

from aiohttp import ClientError, ClientSession, ClientWebSocketResponse, WSMessage, WSMsgType, WSServerHandshakeError
from aiohttp.typedefs import StrOrURL

from ._errors import ConnectError, GatewayClosed, TransportError

__all__: Sequence[str] = ("CloseObserver", "GatewayTransport")

CloseObserver = Callable[[typing.Optional[int], str], None]

_CLOSE_TYPES: typing.Final[frozenset[WSMsgType]] = frozenset({WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED})


@typing.final
class GatewayTransport:
    """One live websocket connection to the gateway.

    Close observers are told about closures the peer started (or an abrupt
    drop); a `close()` issued locally ends `receive()` with `GatewayClosed`
    without notifying them.
    """

    _logger: logging.Logger = logging.getLogger("billy.websocket")

    @classmethod
    async def connect(cls, url: StrOrURL, *, client_session: ClientSession | None = None) -> GatewayTransport:
        exit_stack: AsyncExitStack = AsyncExitStack()
        try:
            if client_session is None:
                client_session = ClientSession()
                await exit_stack.enter_async_context(client_session)
            connection = await exit_stack.enter_async_context(
                client_session.ws_connect(url, max_msg_size=0, autoclose=False)
            )
        except WSServerHandshakeError as exc:
            await exit_stack.aclose()
            raise ConnectError(f"failed to switch protocols with status {exc.status}", status=exc.status) from exc
        except (ClientError, OSError, asyncio.TimeoutError) as exc:
            await exit_stack.aclose()
            raise ConnectError(f"error establishing connection to {url}: {exc}") from exc
        cls._logger.debug("connected to %s", url)
        return cls(connection, exit_stack)

    def __init__(self, connection: ClientWebSocketResponse, exit_stack: AsyncExitStack) -> None:
        self.connection: ClientWebSocketResponse = connection

        self._exit_stack: AsyncExitStack = exit_stack
        self._observers: list[CloseObserver] = []
        self._closing: bool = False
        self._notified: bool = False

    @property
    def closed(self) -> bool:
        return self._closing or self.connection.closed

    def add_close_observer(self, observer: CloseObserver) -> None:
        self._observers.append(observer)

    def _notify_closed(self, code: int | None, reason: str) -> None:
        if self._closing or self._notified:
            return
        self._notified = True
        for observer in self._observers:
            observer(code, reason)

    async def send(self, data: bytes) -> None:
        if self._closing:
            raise TransportError("connection is closed")
        try:
            await self.connection.send_str(data.decode())
        except (RuntimeError, ConnectionError) as exc:
            raise TransportError(f"error sending payload: {exc}") from exc

    async def receive(self) -> bytes | str:
        """Wait for the next data frame.

        Raises `GatewayClosed` once the connection is closed, whichever side
        closed it, and `TransportError` for anything else that is not data.
        """
        message: WSMessage = await self.connection.receive()
        if message.type is WSMsgType.TEXT or message.type is WSMsgType.BINARY:
            return message.data

        if message.type in _CLOSE_TYPES:
            if message.type is WSMsgType.CLOSE:
                code, reason = message.data, message.extra or ""
            else:
                code, reason = self.connection.close_code, ""
            self._logger.debug("received %s [code:%s]", message.type.name, code)
            if not self._closing and not self.connection.closed:
                # Echo application codes, 1000 for anything we may not send.
                await self.connection.close(code=code if code is not None and 3000 <= code < 5000 else 1000)
            self._notify_closed(code, reason)
            raise GatewayClosed(code, reason)

        if message.type is WSMsgType.ERROR:
            cause = message.data if isinstance(message.data, BaseException) else None
            raise TransportError(f"websocket error: {message.data}") from cause

        raise TransportError(f"unexpected websocket message {message.type!r}")

    async def close(self, code: int = 1000) -> None:
        if self._closing:
            return
        self._closing = True
        try:
            if not self.connection.closed:
                await asyncio.wait_for(self.connection.close(code=code), 5)
        except asyncio.TimeoutError:
            self._logger.warning("timed out closing websocket [code:%s]", code)
        finally:
            await self._exit_stack.aclose()
