from __future__ import annotations

from collections.abc import Sequence

from ._bootstrap import DEFAULT_API_URL, fetch_gateway_url
from ._errors import (
    BootstrapError,
    ConnectError,
    DecodeError,
    GatewayClosed,
    GatewayError,
    HandshakeViolation,
    TransportError,
)
from ._payload import CloseCode, GatewayPayload, OpCode, is_resumable
from ._router import DispatchRouter, Route
from .gateway import GatewayClient, GatewayState

__all__: Sequence[str] = (
    "BootstrapError",
    "CloseCode",
    "ConnectError",
    "DEFAULT_API_URL",
    "DecodeError",
    "DispatchRouter",
    "GatewayClient",
    "GatewayClosed",
    "GatewayError",
    "GatewayPayload",
    "GatewayState",
    "HandshakeViolation",
    "OpCode",
    "Route",
    "TransportError",
    "fetch_gateway_url",
    "is_resumable",
)
