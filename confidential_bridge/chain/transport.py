"""
Transport protocol for EVM JSON-RPC calls.

Defines the seam where the HTTP implementation plugs in. The chain
client depends on this protocol, not on httpx directly, so tests can
hand it canned responses without a network.

Failure mapping at this layer:
    - connect errors, timeouts, HTTP 429 and 5xx  -> TransientError
    - any other non-2xx status                    -> ChainRejected
JSON-RPC level errors (``{"error": ...}`` bodies) are returned as-is;
the client interprets them.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from confidential_bridge.errors import ChainRejected, TransientError


@runtime_checkable
class JsonRpcTransport(Protocol):
    """Async transport for JSON-RPC POST requests."""

    async def post_json(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Send a JSON-RPC request and return the parsed response.

        Raises:
            TransientError: The endpoint is unreachable, slow or rate limiting.
            ChainRejected: The endpoint answered with a non-retryable HTTP error.
        """
        ...


class HttpxTransport:
    """Default transport using httpx.AsyncClient.

    Lazily imports httpx so that importing the package does not pull in
    the HTTP stack until a request is actually made.
    """

    def __init__(self, timeout: float = 30.0) -> None:
        self._timeout = timeout

    async def post_json(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Send JSON-RPC request via httpx."""
        import httpx

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                )
        except httpx.TransportError as exc:
            raise TransientError(f"network error: {type(exc).__name__}") from exc

        status = response.status_code
        if status == 429:
            raise TransientError("429 rate limited")
        if status >= 500:
            raise TransientError(f"HTTP {status} from endpoint")
        if status >= 400:
            raise ChainRejected(f"HTTP {status} from endpoint", code=status)

        try:
            result: dict[str, Any] = response.json()
        except ValueError as exc:
            raise TransientError("malformed JSON-RPC response") from exc
        return result
