"""Shared httpx client with connection pooling."""

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

_client: Optional[httpx.AsyncClient] = None


def get_http_client() -> httpx.AsyncClient:
    """Return the process-wide async HTTP client, creating it on first use."""
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(30.0, connect=10.0),
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
        )
        logger.debug("Created shared HTTP client")
    return _client


async def close_http_client():
    """Close the shared client and release its connections."""
    global _client
    if _client is not None and not _client.is_closed:
        await _client.aclose()
    _client = None
