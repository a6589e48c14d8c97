from __future__ import annotations

from collections.abc import Sequence

__all__: Sequence[str] = (
    "BootstrapError",
    "ConnectError",
    "DecodeError",
    "GatewayClosed",
    "GatewayError",
    "HandshakeViolation",
    "TransportError",
)


class GatewayError(Exception):
    """Base class for every error raised by the gateway client."""


class BootstrapError(GatewayError):
    """The gateway URL could not be resolved from the REST API.

    Nothing inside the client recovers from this, the credential or the API is
    unusable.
    """


class ConnectError(GatewayError):
    """Opening the websocket failed or the upgrade was not accepted."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)

        self.status = status


class HandshakeViolation(GatewayError):
    """The gateway sent something other than the expected handshake event."""


class TransportError(GatewayError):
    """Sending or receiving failed in a way that is not a clean close."""


class DecodeError(GatewayError):
    """A frame could not be decoded into a gateway payload."""


class GatewayClosed(GatewayError):
    """The websocket was closed, either by the peer or locally.

    This is the normal end of a connection rather than a failure; ``code`` is
    what decides between resuming and identifying again.
    """

    def __init__(self, code: int | None, reason: str = "") -> None:
        super().__init__(f"{code if code is not None else ''}{' - ' + reason if reason else ''}")

        self.code = code
        self.reason = reason
