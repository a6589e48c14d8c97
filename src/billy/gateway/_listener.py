from __future__ import annotations

import asyncio
import logging
import typing
from collections.abc import Sequence

from ._codec import decode
from ._errors import GatewayClosed
from ._payload import GatewayPayload, OpCode
from ._router import SESSION_EVENTS, DispatchRouter
from ._session import GatewaySession
from ._transport import GatewayTransport

__all__: Sequence[str] = ("EventListener",)


@typing.final
class EventListener:
    """Reads frames off one connection and fans them out.

    Control opcodes go to ``channel``, dispatches to the router, and READY /
    RESUMED to both since the handshake is waiting on them. A closed
    connection ends the loop quietly; decode and transport errors propagate
    out of `run()` to whoever owns the task.
    """

    _logger: logging.Logger = logging.getLogger("billy.listener")

    def __init__(
        self,
        transport: GatewayTransport,
        session: GatewaySession,
        channel: asyncio.Queue[GatewayPayload],
        router: DispatchRouter,
    ) -> None:
        self._transport = transport
        self._session = session
        self._channel = channel
        self._router = router

    async def run(self) -> None:
        while True:
            try:
                frame = await self._transport.receive()
            except GatewayClosed as exc:
                self._logger.debug("connection closed [code:%s], stopping", exc.code)
                return

            payload = decode(frame)
            self._logger.debug("received [op:%s,s:%s,t:%s]", payload.op, payload.s, payload.t)
            await self.route(payload)

    async def route(self, payload: GatewayPayload) -> None:
        if payload.op is not OpCode.DISPATCH:
            await self._channel.put(payload)
        elif payload.t in SESSION_EVENTS:
            self._router.dispatch(payload)
            await self._channel.put(payload)
        else:
            self._router.dispatch(payload)

        if payload.s is not None:
            self._session.last_sequence = payload.s
