from __future__ import annotations

import typing
from collections.abc import Sequence
from enum import Enum
from typing import Any, Final

from msgspec import Struct, field

__all__: Sequence[str] = (
    "CloseCode",
    "ConnectionProperties",
    "GatewayPayload",
    "Hello",
    "Identify",
    "OpCode",
    "Ready",
    "Resume",
    "RESUMABLE_CLOSE_CODE_MAX",
    "is_resumable",
)


@typing.final
class OpCode(int, Enum):
    DISPATCH = 0
    HEARTBEAT = 1
    IDENTIFY = 2
    PRESENCE_UPDATE = 3
    VOICE_STATE_UPDATE = 4
    RESUME = 6
    RECONNECT = 7
    REQUEST_GUILD_MEMBERS = 8
    INVALID_SESSION = 9
    HELLO = 10
    HEARTBEAT_ACK = 11
    REQUEST_SOUNDBOARD_SOUNDS = 31

    def __str__(self) -> str:
        return self.name.lower()


@typing.final
class CloseCode(int, Enum):
    UNKNOWN_ERROR = 4000
    UNKNOWN_OPCODE = 4001
    DECODE_ERROR = 4002
    NOT_AUTHENTICATED = 4003
    AUTHENTICATION_FAILED = 4004
    ALREADY_AUTHENTICATED = 4005
    INVALID_SEQ = 4007
    RATE_LIMITED = 4008
    SESSION_TIMED_OUT = 4009
    INVALID_SHARD = 4010
    SHARDING_REQUIRED = 4011
    INVALID_API_VERSION = 4012
    INVALID_INTENTS = 4013
    DISALLOWED_INTENTS = 4014


# Every close code above this one invalidates the session.
RESUMABLE_CLOSE_CODE_MAX: Final[int] = CloseCode.INVALID_SHARD


def is_resumable(code: int | None) -> bool:
    """Whether a connection closed with ``code`` may be resumed.

    A missing code (the socket dropped without a close frame) is treated as
    resumable, the session is still alive on the server side.
    """
    if code is None:
        return True
    return code <= RESUMABLE_CLOSE_CODE_MAX


class GatewayPayload(Struct, frozen=True):
    op: OpCode
    d: Any | None = None
    s: int | None = None
    t: str | None = None


class Hello(Struct):
    heartbeat_interval: int


class Ready(Struct):
    session_id: str
    resume_gateway_url: str
    v: int | None = None


class ConnectionProperties(Struct):
    system: str = field(name="os")
    browser: str
    device: str


class Identify(Struct):
    token: str
    properties: ConnectionProperties
    intents: int


class Resume(Struct):
    token: str
    session_id: str
    seq: int | None
