from __future__ import annotations

import asyncio
import logging
import typing
from collections.abc import Callable, Collection, Coroutine, Sequence
from enum import Enum
from typing import Any, Final

from ._codec import READY, RESUMED
from ._payload import GatewayPayload, OpCode

__all__: Sequence[str] = ("DispatchRouter", "EventHandler", "Route", "SESSION_EVENTS", "route")

EventHandler = Callable[[GatewayPayload], Coroutine[Any, Any, None]]

SESSION_EVENTS: Final[frozenset[str]] = frozenset({READY, RESUMED})


@typing.final
class Route(Enum):
    SESSION = "session"
    HANDLED = "handled"
    UNHANDLED = "unhandled"
    IGNORED = "ignored"


def route(payload: GatewayPayload, handled: Collection[str] = ()) -> Route:
    if payload.op is not OpCode.DISPATCH:
        return Route.IGNORED
    if payload.t in SESSION_EVENTS:
        return Route.SESSION
    if payload.t in handled:
        return Route.HANDLED
    return Route.UNHANDLED


class DispatchRouter:
    """Hands named dispatch events to registered handlers.

    Each handler runs in its own task so a slow handler never holds up the
    Event Listener.
    """

    _logger: logging.Logger = logging.getLogger("billy.dispatch")

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    def add_handler(self, event: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event.upper(), []).append(handler)

    def listen(self, event: str) -> Callable[[EventHandler], EventHandler]:
        def decorator(handler: EventHandler) -> EventHandler:
            self.add_handler(event, handler)
            return handler

        return decorator

    def dispatch(self, payload: GatewayPayload) -> Route:
        decision = route(payload, self._handlers)
        if decision is Route.SESSION:
            self._logger.info("received %r dispatch event [s:%s]", payload.t, payload.s)
        elif decision is Route.UNHANDLED:
            self._logger.debug("no handler for event of type %r", payload.t)
        elif decision is Route.IGNORED:
            return decision

        for handler in self._handlers.get(payload.t or "", ()):
            task = asyncio.create_task(handler(payload), name=f"dispatch {payload.t}")
            self._tasks.add(task)
            task.add_done_callback(self._on_handler_done)
        return decision

    def _on_handler_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and (exc := task.exception()) is not None:
            self._logger.error("handler %s failed", task.get_name(), exc_info=exc)

    async def close(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
