from __future__ import annotations

import typing
from collections.abc import Sequence

__all__: Sequence[str] = ("GatewaySession", "redact")

NAN: typing.Final[float] = float("NaN")


def redact(token: str) -> str:
    return f"{token[:4]}..." if len(token) > 8 else "..."


@typing.final
class GatewaySession:
    """Mutable state of a live or resumable gateway session.

    Owned by the `GatewayClient`. The Event Listener is the only writer of
    `last_sequence`, the Heartbeat Monitor the only writer of the heartbeat
    timestamps.
    """

    __slots__ = (
        "token",
        "intents",
        "last_sequence",
        "heartbeat_interval",
        "session_id",
        "resume_url",
        "last_heartbeat_sent",
        "last_heartbeat_ack",
    )

    def __init__(self, token: str, intents: int) -> None:
        self.token: str = token
        self.intents: int = intents
        self.last_sequence: int | None = None
        # Seconds, learned from HELLO.
        self.heartbeat_interval: float = NAN
        self.session_id: str | None = None
        self.resume_url: str | None = None
        # time.monotonic() readings.
        self.last_heartbeat_sent: float = NAN
        self.last_heartbeat_ack: float = NAN

    def __repr__(self) -> str:
        return (
            f"GatewaySession(token={redact(self.token)!r}, session_id={self.session_id!r}, "
            f"last_sequence={self.last_sequence!r}, resume_url={self.resume_url!r})"
        )

    @property
    def resumable(self) -> bool:
        return self.session_id is not None and self.resume_url is not None

    @property
    def latency(self) -> float:
        return self.last_heartbeat_ack - self.last_heartbeat_sent

    def reset_liveness(self) -> None:
        self.heartbeat_interval = NAN
        self.last_heartbeat_sent = NAN
        self.last_heartbeat_ack = NAN

    def reset(self) -> None:
        """Forget the session, the next connection has to IDENTIFY."""
        self.last_sequence = None
        self.session_id = None
        self.resume_url = None
        self.reset_liveness()
