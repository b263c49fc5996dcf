"""Outbound HTTP for the provider adapters (Serper, OpenAI, Apollo).

One pooled httpx.AsyncClient is shared by every adapter in the process.
Adapters take an optional `client=` so tests can pass one built on
httpx.MockTransport.
"""

import httpx

from . import __version__
from .config import Settings, settings


def build_client(cfg: Settings | None = None, **kwargs) -> httpx.AsyncClient:
    cfg = cfg or settings
    return httpx.AsyncClient(
        timeout=cfg.http_timeout_seconds,
        limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        headers={"User-Agent": f"leadminer/{__version__}"},
        follow_redirects=False,
        **kwargs,
    )


http = build_client()


async def close_clients() -> None:
    """Close the shared client on app shutdown."""
    if not http.is_closed:
        await http.aclose()
