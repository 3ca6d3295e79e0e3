"""Shared aiohttp JSON request helper used by the service adapters."""
from __future__ import annotations

import logging
import ssl
from typing import Any

import aiohttp
import certifi

from .errors import TransientRpcError
from .retry import RetryConfig

logger = logging.getLogger(__name__)

TRANSIENT_STATUSES = RetryConfig().retry_on_status


async def request_json(
    method: str,
    url: str,
    *,
    params: dict[str, Any] | None = None,
    json: Any = None,
    headers: dict[str, str] | None = None,
    timeout: float = 30,
) -> tuple[int, Any]:
    """Send one request and return ``(status, decoded JSON body)``.

    Rate limiting and server errors raise ``TransientRpcError`` so callers can
    retry them. Any other status is returned for the caller to interpret.
    A body that is not JSON decodes to ``None``.
    """
    ssl_context = ssl.create_default_context(cafile=certifi.where())
    connector = aiohttp.TCPConnector(ssl=ssl_context)

    async with aiohttp.ClientSession(connector=connector) as session:
        async with session.request(
            method,
            url,
            params=params,
            json=json,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as response:
            if response.status in TRANSIENT_STATUSES:
                raise TransientRpcError(
                    f"{method} {url} returned HTTP {response.status}",
                    status_code=response.status,
                )
            try:
                data = await response.json(content_type=None)
            except ValueError:
                logger.debug("Non-JSON body from %s (HTTP %s)", url, response.status)
                data = None
            return response.status, data
