"""
Minimal async JSON-RPC 2.0 client shared by the ledger adapters.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, List, Optional

import httpx

from ..errors import NetworkError, RpcError

logger = logging.getLogger(__name__)


class JsonRpcClient:
    """
    JSON-RPC over HTTP with bounded timeouts.

    Reads are retried with linear backoff. Writes (``retry=False``) are
    attempted once: a broadcast whose outcome is unknown must not be resent
    blindly.

    Transport failures are mapped to ``NetworkError``; ``request_sent`` is
    False only for failures that prove the request never reached the node
    (connect errors, HTTP 429).
    """

    def __init__(
        self,
        url: str,
        timeout_s: float = 15.0,
        max_retries: int = 3,
        client: Optional[httpx.AsyncClient] = None,
        name: str = "rpc",
    ):
        self.url = url
        self.name = name
        self._timeout_s = timeout_s
        self._max_retries = max(1, max_retries)
        self._client = client
        self._owns_client = client is None
        self._ids = itertools.count(1)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout_s)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def call(self, method: str, params: List[Any], retry: bool = True) -> Any:
        """Make an RPC call and return its ``result`` member."""
        client = await self._get_client()
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        attempts = self._max_retries if retry else 1

        for attempt in range(attempts):
            try:
                return await self._post(client, payload)
            except NetworkError as e:
                if attempt == attempts - 1:
                    raise
                logger.debug(
                    "%s %s failed (attempt %d/%d): %s",
                    self.name, method, attempt + 1, attempts, e.message,
                )
                await asyncio.sleep(0.5 * (attempt + 1))

        raise NetworkError("Max retries exceeded", provider=self.name)

    async def _post(self, client: httpx.AsyncClient, payload: dict) -> Any:
        try:
            response = await client.post(
                self.url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self._timeout_s,
            )
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            raise NetworkError(
                f"{self.name}: cannot reach {self.url}: {e}",
                provider=self.name,
                request_sent=False,
            ) from e
        except httpx.HTTPError as e:
            raise NetworkError(f"{self.name}: {type(e).__name__}: {e}", provider=self.name) from e

        if response.status_code == 429:
            raise NetworkError(f"{self.name}: rate limited", provider=self.name, request_sent=False)
        if response.status_code >= 400:
            raise NetworkError(
                f"{self.name}: HTTP error {response.status_code}",
                provider=self.name,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise NetworkError(f"{self.name}: invalid JSON response", provider=self.name) from e
        if not isinstance(data, dict):
            raise NetworkError(
                f"{self.name}: malformed JSON-RPC response ({type(data).__name__})",
                provider=self.name,
            )

        if data.get("error"):
            error = data["error"]
            if isinstance(error, dict):
                raise RpcError(
                    f"RPC error: {error.get('message', error)}",
                    code=error.get("code"),
                    data=error.get("data"),
                )
            raise RpcError(f"RPC error: {error}")

        return data.get("result")


__all__ = ["JsonRpcClient"]
