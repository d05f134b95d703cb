"""
Process-wide relay wiring.

The token cache is the only shared mutable state in the service, so the relay,
its cache and the outbound httpx client are built once per process on first
use and handed to every request through FastAPI dependencies. Tests swap them
out with ``app.dependency_overrides``.
"""

import logging
from typing import Optional

import httpx
from fastapi import Depends

from de_relay.config import RelaySettings
from de_relay.services.token_cache import TokenCache
from de_relay.services.upsert_relay import UpsertRelay

logger = logging.getLogger(__name__)

_http_client: Optional[httpx.AsyncClient] = None
_relay: Optional[UpsertRelay] = None


def build_relay(
    settings: RelaySettings,
    http_client: httpx.AsyncClient,
) -> UpsertRelay:
    """Wire a relay and its token cache around one shared httpx client."""
    token_cache = TokenCache(settings, http_client)
    return UpsertRelay(settings, token_cache, http_client)


async def get_relay() -> UpsertRelay:
    """
    FastAPI dependency returning the process-wide relay.

    Runs on the event loop with no await between the check and the set, so
    concurrent first requests share one relay and one token cache.
    """
    global _http_client, _relay

    if _relay is None:
        settings = RelaySettings.from_env()
        _http_client = httpx.AsyncClient(timeout=settings.request_timeout)
        _relay = build_relay(settings, _http_client)
        logger.info("Relay initialised for DE %s", settings.de_external_key)

    return _relay


async def get_settings(relay: UpsertRelay = Depends(get_relay)) -> RelaySettings:
    """FastAPI dependency returning the settings the relay runs with."""
    return relay.settings


async def close_clients() -> None:
    """Close the shared httpx client and drop the cached relay."""
    global _http_client, _relay

    if _http_client is not None:
        await _http_client.aclose()
    _http_client = None
    _relay = None
