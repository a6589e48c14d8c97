from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from enum import IntFlag
from pathlib import Path

import msgspec
from msgspec import Struct, json

from .config import Config, ConfigError
from .gateway._session import redact

__all__: Sequence[str] = ("Identity", "Intents", "load_identity", "resolve_intents")

_LOGGER: logging.Logger = logging.getLogger("billy.identity")


class Intents(IntFlag):
    NONE = 0
    GUILDS = 1 << 0
    GUILD_MEMBERS = 1 << 1
    GUILD_MODERATION = 1 << 2
    GUILD_EXPRESSIONS = 1 << 3
    GUILD_INTEGRATIONS = 1 << 4
    GUILD_WEBHOOKS = 1 << 5
    GUILD_INVITES = 1 << 6
    GUILD_VOICE_STATES = 1 << 7
    GUILD_PRESENCES = 1 << 8
    GUILD_MESSAGES = 1 << 9
    GUILD_MESSAGE_REACTIONS = 1 << 10
    GUILD_MESSAGE_TYPING = 1 << 11
    DIRECT_MESSAGES = 1 << 12
    DIRECT_MESSAGE_REACTIONS = 1 << 13
    DIRECT_MESSAGE_TYPING = 1 << 14
    MESSAGE_CONTENT = 1 << 15
    GUILD_SCHEDULED_EVENTS = 1 << 16
    AUTO_MODERATION_CONFIGURATION = 1 << 20
    AUTO_MODERATION_EXECUTION = 1 << 21
    GUILD_MESSAGE_POLLS = 1 << 24
    DIRECT_MESSAGE_POLLS = 1 << 25


class Identity(Struct, frozen=True):
    token: str
    intents: Intents = Intents.NONE

    def __repr__(self) -> str:
        return f"Identity(token={redact(self.token)!r}, intents={int(self.intents)})"


def resolve_intents(enabled: Mapping[str, bool]) -> Intents:
    """Combine the intents switched on in ``enabled``.

    Unknown names are reported and skipped.
    """
    intents = Intents.NONE
    for name, value in enabled.items():
        if not value:
            continue
        try:
            intents |= Intents[name.upper()]
        except KeyError:
            _LOGGER.warning("unknown intent key: %s", name)
    return intents


def load_identity(config: Config) -> Identity:
    path = Path(config.intents_path)
    try:
        enabled = json.decode(path.read_bytes(), type=dict[str, bool])
    except OSError as exc:
        raise ConfigError(f"could not read intents file {str(path)!r}: {exc}") from exc
    except msgspec.DecodeError as exc:
        raise ConfigError(f"invalid intents file {str(path)!r}: {exc}") from exc

    identity = Identity(token=config.token, intents=resolve_intents(enabled))
    _LOGGER.debug("loaded %r", identity)
    return identity
