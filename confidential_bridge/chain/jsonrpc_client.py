"""
EVM JSON-RPC client — real network implementation of ChainClient.

Translates reads into ``eth_call``, writes into ``eth_sendTransaction``
(the endpoint is a wallet-backed provider that signs for ``from``) and
confirmation into ``eth_getTransactionReceipt`` polling. Uses an
injectable transport (JsonRpcTransport) so tests can serve canned
responses.

Endpoints are tried in order. A transient failure on one endpoint moves
on to the next; anything else is returned to the caller immediately.

JSON-RPC error mapping:
    - code 4001 / "user rejected"           -> UserRejected
    - code -32005 / 429 / "rate limit"      -> TransientError (next endpoint)
    - everything else                       -> ChainRejected
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from confidential_bridge.addresses import checksum, normalize_address
from confidential_bridge.chain.abi import decode_result, encode_call
from confidential_bridge.chain.client import TxHandle, TxReceipt
from confidential_bridge.chain.transport import HttpxTransport, JsonRpcTransport
from confidential_bridge.errors import (
    ChainRejected,
    ErrorCategory,
    TransientError,
    UserRejected,
    classify_error_message,
    sanitize_detail,
)

logger = logging.getLogger(__name__)

_LIMIT_EXCEEDED = -32005


class JsonRpcChainClient:
    """ChainClient over one or more JSON-RPC endpoints.

    Args:
        urls: Endpoints in preference order.
        transport: Injectable transport. Defaults to HttpxTransport.
        poll_interval: Seconds between receipt polls.
        confirmation_timeout: Seconds before ``wait_for_confirmation`` gives up.
        sleep: Awaitable sleep, injectable for tests.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        urls: Sequence[str],
        transport: JsonRpcTransport | None = None,
        *,
        poll_interval: float = 2.0,
        confirmation_timeout: float = 180.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not urls:
            raise ValueError("at least one endpoint URL is required")
        self._urls = tuple(urls)
        self._transport = transport or HttpxTransport()
        self._poll_interval = poll_interval
        self._confirmation_timeout = confirmation_timeout
        self._sleep = sleep
        self._clock = clock
        self._request_ids = itertools.count(1)

    @property
    def urls(self) -> tuple[str, ...]:
        return self._urls

    # -----------------------------------------------------------------
    # ChainClient protocol methods
    # -----------------------------------------------------------------

    async def read(
        self,
        contract: str,
        method: str,
        args: Sequence[Any] = (),
        *,
        caller: str | None = None,
    ) -> Any:
        call: dict[str, Any] = {"to": checksum(contract), "data": encode_call(method, args)}
        if caller is not None:
            call["from"] = checksum(caller)
        result = await self._request("eth_call", [call, "latest"])
        if not isinstance(result, str):
            raise ChainRejected(f"unexpected eth_call result for {method}")
        return decode_result(method, result)

    async def write(
        self,
        contract: str,
        method: str,
        args: Sequence[Any] = (),
        *,
        sender: str,
        value: int = 0,
    ) -> TxHandle:
        tx: dict[str, Any] = {
            "from": checksum(sender),
            "to": checksum(contract),
            "data": encode_call(method, args),
        }
        if value:
            tx["value"] = hex(value)
        result = await self._request("eth_sendTransaction", [tx])
        if not isinstance(result, str) or not result.startswith("0x"):
            raise ChainRejected(f"unexpected eth_sendTransaction result for {method}")
        logger.info("submitted %s on %s: %s", method, contract, result)
        return TxHandle(tx_hash=result, contract=normalize_address(contract), method=method)

    async def wait_for_confirmation(self, tx: TxHandle) -> TxReceipt:
        deadline = self._clock() + self._confirmation_timeout
        while True:
            try:
                raw = await self._request("eth_getTransactionReceipt", [tx.tx_hash])
            except TransientError as exc:
                logger.debug("receipt poll for %s failed: %s", tx.tx_hash, exc)
                raw = None
            if raw is not None:
                receipt = _parse_receipt(tx.tx_hash, raw)
                if not receipt.success:
                    logger.warning("transaction %s reverted", tx.tx_hash)
                return receipt
            if self._clock() >= deadline:
                raise TransientError(f"confirmation timed out for {tx.tx_hash}")
            await self._sleep(self._poll_interval)

    # -----------------------------------------------------------------
    # Request plumbing
    # -----------------------------------------------------------------

    async def _request(self, method: str, params: list[Any]) -> Any:
        last_error: TransientError | None = None
        for url in self._urls:
            payload = {
                "jsonrpc": "2.0",
                "method": method,
                "params": params,
                "id": next(self._request_ids),
            }
            try:
                response = await self._transport.post_json(url, payload)
                return _parse_rpc_response(response)
            except TransientError as exc:
                logger.warning("%s failed on endpoint, trying next: %s", method, exc)
                last_error = exc
        if last_error is None:
            raise TransientError(f"{method}: no endpoint answered")
        raise last_error


# =====================================================================
# Response parsing (pure functions, no I/O)
# =====================================================================


def _parse_rpc_response(response: dict[str, Any]) -> Any:
    """Return ``result`` or raise the mapped error for an ``error`` body."""
    error = response.get("error")
    if error is None:
        return response.get("result")

    if isinstance(error, dict):
        code = error.get("code")
        message = str(error.get("message", ""))
        data = error.get("data")
        if isinstance(data, str) and data:
            message = f"{message}: {data}"
    else:
        code = None
        message = str(error)

    if code == 4001:
        raise UserRejected(sanitize_detail(message) or "user rejected the request")

    category = classify_error_message(message)
    if code == _LIMIT_EXCEEDED or category is ErrorCategory.TEMPORARILY_UNAVAILABLE:
        raise TransientError(sanitize_detail(message))
    if category is ErrorCategory.CANCELLED:
        raise UserRejected(sanitize_detail(message))
    raise ChainRejected(message, code=code if isinstance(code, int) else None)


def _parse_receipt(tx_hash: str, raw: dict[str, Any]) -> TxReceipt:
    status = raw.get("status")
    return TxReceipt(
        tx_hash=raw.get("transactionHash", tx_hash),
        success=status in ("0x1", 1, "1"),
        block_number=_hex_int(raw.get("blockNumber")),
        gas_used=_hex_int(raw.get("gasUsed")),
    )


def _hex_int(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(value, 16)
