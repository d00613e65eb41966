"""
Transport protocol for XRPL JSON-RPC calls.

Defines the seam where concrete HTTP implementations plug in. The
JSON-RPC connection depends on this protocol, not on httpx directly, so
the transport can be swapped for a fake without editing parsing logic.

Concrete implementations:
    - HttpxTransport (default, one pooled httpx.AsyncClient per connection)
    - FakeTransport (tests, returns canned responses)

Lifecycle:
    open() → post_json() ... → aclose()

    aclose() must be safe to call more than once and after a failed
    open(); callers release in ``finally`` blocks.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

import httpx


@runtime_checkable
class JsonRpcTransport(Protocol):
    """Async transport for JSON-RPC POST requests over a held connection."""

    async def open(self) -> None:
        """Acquire the underlying connection."""
        ...

    async def post_json(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Send a JSON-RPC request and return the parsed response.

        Raises:
            Exception: On transport-level failures (connection refused,
                timeout, TLS error, non-2xx status). Callers decide
                whether to propagate or swallow.
        """
        ...

    async def aclose(self) -> None:
        """Release the underlying connection. Idempotent."""
        ...


class HttpxTransport:
    """Default transport using a single httpx.AsyncClient.

    The client (and its keep-alive pool) lives from open() to aclose(),
    so every request of one ledger session reuses the same connection.
    """

    def __init__(self, timeout: float = 30.0) -> None:
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    @property
    def is_open(self) -> bool:
        return self._client is not None

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)

    async def post_json(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Send JSON-RPC request via the held client."""
        if self._client is None:
            raise RuntimeError("transport is not open")

        response = await self._client.post(
            url,
            json=payload,
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()
        result: dict[str, Any] = response.json()
        return result

    async def aclose(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()
