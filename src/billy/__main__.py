"""
Command line entry point: loads the configuration, connects to the gateway
and stays connected until SIGINT / SIGTERM.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import warnings

from dotenv import load_dotenv
from msgspec import structs

from .config import Config, ConfigError
from .gateway import GatewayClient, GatewayError
from .identity import load_identity

log = logging.getLogger("billy")

_background: set[asyncio.Task[None]] = set()

parser = argparse.ArgumentParser(prog="billy")
parser.add_argument("--env-file", help="Environment file to load", default=".env")
parser.add_argument("--intents", help="Intents configuration file", default=None)
parser.add_argument("--log-level", help="Logging level", default=None)


async def run(config: Config, intents_path: str | None = None) -> int:
    if intents_path is not None:
        config = structs.replace(config, intents_path=intents_path)
    identity = load_identity(config)

    client = GatewayClient(
        identity.token,
        identity.intents,
        api_url=config.api_url,
        reconnect_attempts=config.reconnect_attempts,
        backoff_base=config.backoff_base,
        backoff_max=config.backoff_max,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: _shutdown(client, s))

    try:
        await client.connect()
    except GatewayError as exc:
        log.error("failed to start bot: %s", exc)
        return 1

    await client.wait_closed()
    log.info("application stopped cleanly")
    return 0


def _shutdown(client: GatewayClient, sig: signal.Signals) -> None:
    log.info("received %s, shutting down", sig.name)
    task = asyncio.ensure_future(client.disconnect())
    _background.add(task)
    task.add_done_callback(_background.discard)


def main(argv: list[str] | None = None) -> int:
    args = parser.parse_args(argv)
    load_dotenv(dotenv_path=args.env_file)

    try:
        config = Config.from_env()
    except ConfigError as exc:
        print(f"billy: {exc}", file=sys.stderr)
        return 2

    warnings.simplefilter("always", DeprecationWarning)
    logging.captureWarnings(True)
    logging.basicConfig(
        level=getattr(logging, (args.log_level or config.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return asyncio.run(run(config, args.intents))
    except ConfigError as exc:
        log.error("%s", exc)
        return 2


if __name__ == "__main__":
    sys.exit(main())
