"""
Shared httpx helpers for analyzer lookups.

Retries 429 and transport errors with exponential backoff; any other non-2xx
status raises httpx.HTTPStatusError. Callers either pass a long-lived
AsyncClient (the API server shares one) or get a short-lived one per call.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx

MAX_RETRIES = 2
RETRY_BACKOFF = 0.25
REQUEST_TIMEOUT = 10.0


@asynccontextmanager
async def client_scope(client: httpx.AsyncClient | None) -> AsyncIterator[httpx.AsyncClient]:
    """Yield the injected client, or a temporary one closed on exit."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as owned:
        yield owned


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    retries: int = MAX_RETRIES,
    **kwargs: Any,
) -> Any:
    last_err: Exception | None = None
    for attempt in range(retries + 1):
        try:
            r = await client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            last_err = e
        else:
            if r.status_code == 429 and attempt < retries:
                await asyncio.sleep(RETRY_BACKOFF * (2 ** attempt))
                continue
            r.raise_for_status()
            return r.json()
        if attempt < retries:
            await asyncio.sleep(RETRY_BACKOFF * (2 ** attempt))
    raise last_err or RuntimeError(f"{method} {url} failed")


def bearer(api_key: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {api_key}"} if api_key else {}
