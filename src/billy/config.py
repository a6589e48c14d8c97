from __future__ import annotations

import os
from collections.abc import Mapping, Sequence
from typing import Final

import msgspec
from msgspec import Struct

from .gateway._bootstrap import DEFAULT_API_URL

__all__: Sequence[str] = ("Config", "ConfigError")

DEFAULT_INTENTS_PATH: Final[str] = "config/bot_intents_config.json"

# Environment variable -> Config field.
_ENVIRONMENT: Final[dict[str, str]] = {
    "DISCORD_API_KEY": "token",
    "BILLY_INTENTS_CONFIG": "intents_path",
    "BILLY_API_URL": "api_url",
    "BILLY_LOG_LEVEL": "log_level",
    "BILLY_RECONNECT_ATTEMPTS": "reconnect_attempts",
    "BILLY_BACKOFF_BASE": "backoff_base",
    "BILLY_BACKOFF_MAX": "backoff_max",
}


class ConfigError(Exception):
    pass


class Config(Struct, frozen=True):
    token: str
    intents_path: str = DEFAULT_INTENTS_PATH
    api_url: str = DEFAULT_API_URL
    log_level: str = "INFO"
    reconnect_attempts: int = 5
    backoff_base: float = 1.0
    backoff_max: float = 60.0

    def __repr__(self) -> str:
        return f"Config(intents_path={self.intents_path!r}, api_url={self.api_url!r}, log_level={self.log_level!r})"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Config:
        """Build the configuration from environment variables.

        Unset or empty variables keep their defaults; numbers are parsed from
        their string form.
        """
        if env is None:
            env = os.environ

        values = {field: env[key] for key, field in _ENVIRONMENT.items() if env.get(key)}
        if "token" not in values:
            raise ConfigError('missing environment variable: "DISCORD_API_KEY"')
        if "log_level" in values:
            values["log_level"] = values["log_level"].upper()

        try:
            return msgspec.convert(values, cls, strict=False)
        except msgspec.ValidationError as exc:
            for key, field in _ENVIRONMENT.items():
                if f"$.{field}`" in str(exc):
                    raise ConfigError(f'invalid value for "{key}": {exc}') from exc
            raise ConfigError(f"invalid configuration: {exc}") from exc
