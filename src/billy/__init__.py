"""Discord gateway client: handshake, heartbeat, resume and reconnect."""

from __future__ import annotations

from collections.abc import Sequence

from .gateway import GatewayClient, GatewayState

__all__: Sequence[str] = ("GatewayClient", "GatewayState")

__version__ = "0.1.0"
