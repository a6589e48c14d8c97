"""Conversion between gateway frames and `GatewayPayload` objects.

Inbound bodies are converted into a concrete type per opcode (and per event
name for dispatches the client itself consumes), so a READY lacking its
``session_id`` fails here rather than wherever the field is first read.
"""

from __future__ import annotations

import platform
import sys
from collections.abc import Sequence
from typing import Any, Final

import msgspec
from msgspec import Struct, json

from ._errors import DecodeError
from ._payload import ConnectionProperties, GatewayPayload, Hello, Identify, OpCode, Ready, Resume

__all__: Sequence[str] = (
    "IDENTIFY_PROPERTIES",
    "LIBRARY_NAME",
    "decode",
    "encode_heartbeat",
    "encode_identify",
    "encode_resume",
)

LIBRARY_NAME: Final[str] = sys.intern("billy")

IDENTIFY_PROPERTIES: Final[ConnectionProperties] = ConnectionProperties(
    system=platform.system(),
    browser=LIBRARY_NAME,
    device=LIBRARY_NAME,
)

READY: Final[str] = sys.intern("READY")
RESUMED: Final[str] = sys.intern("RESUMED")


class _Command(Struct):
    op: OpCode
    d: Any


_decoder: Final[json.Decoder[GatewayPayload]] = json.Decoder(GatewayPayload)
_encoder: Final[json.Encoder] = json.Encoder()

_BODY_TYPES: Final[dict[OpCode, Any]] = {
    OpCode.HELLO: Hello,
    OpCode.HEARTBEAT: int | None,
    OpCode.HEARTBEAT_ACK: None,
    OpCode.RECONNECT: None,
    OpCode.INVALID_SESSION: bool,
}

_DISPATCH_TYPES: Final[dict[str, Any]] = {
    READY: Ready,
}


def decode(frame: bytes | str) -> GatewayPayload:
    """Decode one text frame.

    Raises `DecodeError` for anything that is not a complete, valid payload;
    a partially populated payload is never returned.
    """
    try:
        payload = _decoder.decode(frame)
    except msgspec.DecodeError as exc:
        raise DecodeError(f"malformed frame: {exc}") from exc

    if (payload.op is OpCode.DISPATCH) != (payload.t is not None):
        raise DecodeError(f"event name {payload.t!r} does not match [op:{payload.op}]")

    if payload.op is OpCode.DISPATCH:
        body_type = _DISPATCH_TYPES.get(payload.t, Any)  # type: ignore[arg-type]
    else:
        body_type = _BODY_TYPES.get(payload.op, Any)

    if body_type is Any:
        return payload

    try:
        body = msgspec.convert(payload.d, type=body_type, strict=False)
    except msgspec.ValidationError as exc:
        raise DecodeError(f"malformed [op:{payload.op},t:{payload.t}] body: {exc}") from exc

    return GatewayPayload(op=payload.op, d=body, s=payload.s, t=payload.t)


def _encode(op: OpCode, d: Any) -> bytes:
    return _encoder.encode(_Command(op=op, d=d))


def encode_heartbeat(sequence: int | None) -> bytes:
    return _encode(OpCode.HEARTBEAT, sequence)


def encode_identify(token: str, intents: int) -> bytes:
    return _encode(OpCode.IDENTIFY, Identify(token=token, properties=IDENTIFY_PROPERTIES, intents=int(intents)))


def encode_resume(token: str, session_id: str, sequence: int | None) -> bytes:
    return _encode(OpCode.RESUME, Resume(token=token, session_id=session_id, seq=sequence))
