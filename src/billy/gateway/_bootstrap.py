from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Final

import msgspec
from aiohttp import ClientError, ClientSession
from msgspec import Struct, json
from yarl import URL

from ._errors import BootstrapError

__all__: Sequence[str] = ("DEFAULT_API_URL", "GATEWAY_QUERY", "fetch_gateway_url", "gateway_url")

DEFAULT_API_URL: Final[str] = "https://discord.com/api/v10"

GATEWAY_QUERY: Final[dict[str, str | int]] = {"v": 10, "encoding": "json"}

_LOGGER: logging.Logger = logging.getLogger("billy.bootstrap")


class GatewayBot(Struct):
    url: str


def gateway_url(url: str) -> URL:
    """The websocket URL to open for a gateway or resume URL."""
    return URL(url).with_query(GATEWAY_QUERY)


async def fetch_gateway_url(client_session: ClientSession, token: str, *, api_url: str = DEFAULT_API_URL) -> str:
    """Ask the REST API which URL the gateway lives at.

    Anything but a 200 carrying a ``url`` string is a `BootstrapError`.
    """
    endpoint = URL(api_url) / "gateway" / "bot"
    try:
        async with client_session.get(endpoint, headers={"Authorization": f"Bot {token}"}) as response:
            body = await response.read()
            status = response.status
    except ClientError as exc:
        raise BootstrapError(f"error requesting {endpoint}: {exc}") from exc

    if status != 200:
        raise BootstrapError(f"{endpoint} answered with status {status}: {body[:200].decode(errors='replace')}")

    try:
        info = json.decode(body, type=GatewayBot)
    except msgspec.DecodeError as exc:
        raise BootstrapError(f"invalid gateway url in response: {exc}") from exc

    _LOGGER.debug("gateway url is %s", info.url)
    return info.url
