"""
Chain access: client protocol, JSON-RPC implementation, ABI table and
cached reads.
"""

from confidential_bridge.chain.client import ChainClient, TxHandle, TxReceipt
from confidential_bridge.chain.jsonrpc_client import JsonRpcChainClient
from confidential_bridge.chain.reader import CachedReader
from confidential_bridge.chain.transport import HttpxTransport, JsonRpcTransport

__all__ = [
    "CachedReader",
    "ChainClient",
    "HttpxTransport",
    "JsonRpcChainClient",
    "JsonRpcTransport",
    "TxHandle",
    "TxReceipt",
]
