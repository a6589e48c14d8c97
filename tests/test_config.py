from __future__ import annotations

import asyncio
import logging
import signal
from unittest.mock import MagicMock

import pytest

from billy.__main__ import _background, _shutdown, main
from billy.config import DEFAULT_INTENTS_PATH, Config, ConfigError
from billy.gateway import DEFAULT_API_URL, GatewayClient
from billy.identity import Intents, load_identity, resolve_intents

TOKEN = "secret-token-0123456789"


class TestConfig:
    def test_defaults(self):
        config = Config.from_env({"DISCORD_API_KEY": TOKEN})

        assert config.token == TOKEN
        assert config.intents_path == DEFAULT_INTENTS_PATH
        assert config.api_url == DEFAULT_API_URL
        assert config.log_level == "INFO"
        assert config.reconnect_attempts == 5
        assert config.backoff_max == 60.0

    def test_overrides(self):
        config = Config.from_env(
            {
                "DISCORD_API_KEY": TOKEN,
                "BILLY_INTENTS_CONFIG": "intents.json",
                "BILLY_LOG_LEVEL": "debug",
                "BILLY_RECONNECT_ATTEMPTS": "2",
                "BILLY_BACKOFF_BASE": "0.5",
            }
        )

        assert config.intents_path == "intents.json"
        assert config.log_level == "DEBUG"
        assert config.reconnect_attempts == 2
        assert config.backoff_base == 0.5

    def test_missing_token(self):
        with pytest.raises(ConfigError, match="DISCORD_API_KEY"):
            Config.from_env({})

    def test_bad_number(self):
        with pytest.raises(ConfigError, match="BILLY_BACKOFF_MAX"):
            Config.from_env({"DISCORD_API_KEY": TOKEN, "BILLY_BACKOFF_MAX": "soon"})

    def test_bad_count(self):
        with pytest.raises(ConfigError, match="BILLY_RECONNECT_ATTEMPTS"):
            Config.from_env({"DISCORD_API_KEY": TOKEN, "BILLY_RECONNECT_ATTEMPTS": "many"})

    def test_empty_values_keep_defaults(self):
        config = Config.from_env({"DISCORD_API_KEY": TOKEN, "BILLY_BACKOFF_BASE": "", "BILLY_API_URL": ""})

        assert config.backoff_base == 1.0
        assert config.api_url == DEFAULT_API_URL

    def test_repr_hides_token(self):
        assert TOKEN not in repr(Config(token=TOKEN))


class TestIntents:
    def test_enabled_keys_are_combined(self):
        intents = resolve_intents({"GUILDS": True, "guild_messages": True, "GUILD_MEMBERS": False})

        assert intents == Intents.GUILDS | Intents.GUILD_MESSAGES
        assert int(intents) == 513

    def test_unknown_key_is_skipped(self, caplog):
        with caplog.at_level(logging.WARNING, logger="billy.identity"):
            intents = resolve_intents({"GUILDS": True, "GUILD_TELEPATHY": True})

        assert intents == Intents.GUILDS
        assert "unknown intent key: GUILD_TELEPATHY" in caplog.text

    def test_bit_positions(self):
        assert Intents.GUILD_SCHEDULED_EVENTS == 1 << 16
        assert Intents.AUTO_MODERATION_CONFIGURATION == 1 << 20
        assert Intents.DIRECT_MESSAGE_POLLS == 1 << 25


class TestLoadIdentity:
    def test_from_file(self, tmp_path):
        path = tmp_path / "intents.json"
        path.write_text('{"GUILDS": true, "MESSAGE_CONTENT": true}')

        identity = load_identity(Config(token=TOKEN, intents_path=str(path)))

        assert identity.token == TOKEN
        assert identity.intents == Intents.GUILDS | Intents.MESSAGE_CONTENT
        assert TOKEN not in repr(identity)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_identity(Config(token=TOKEN, intents_path=str(tmp_path / "missing.json")))

    def test_invalid_file(self, tmp_path):
        path = tmp_path / "intents.json"
        path.write_text('{"GUILDS": "yes"}')

        with pytest.raises(ConfigError):
            load_identity(Config(token=TOKEN, intents_path=str(path)))


class TestMain:
    def test_missing_token_exits_with_usage_error(self, tmp_path, monkeypatch, capsys):
        monkeypatch.delenv("DISCORD_API_KEY", raising=False)

        assert main(["--env-file", str(tmp_path / "missing.env")]) == 2
        assert "DISCORD_API_KEY" in capsys.readouterr().err

    def test_missing_intents_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DISCORD_API_KEY", TOKEN)
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: None)
        monkeypatch.setattr(logging, "captureWarnings", lambda capture: None)

        code = main(["--env-file", str(tmp_path / "missing.env"), "--intents", str(tmp_path / "none.json")])

        assert code == 2

    @pytest.mark.asyncio
    async def test_shutdown_task_is_held_until_done(self):
        client = MagicMock(spec=GatewayClient)

        _shutdown(client, signal.SIGTERM)
        assert len(_background) == 1

        await asyncio.gather(*_background)
        await asyncio.sleep(0)

        assert not _background
        client.disconnect.assert_awaited_once()
