"""
Contract method table and ABI coding.

Only the methods the bridge calls are described. Selectors are derived
from the canonical signature with keccak; arguments and results are
coded with ``eth_abi``.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector, to_checksum_address


@dataclass(frozen=True)
class MethodSpec:
    name: str
    inputs: tuple[str, ...]
    outputs: tuple[str, ...] = ()
    view: bool = False

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.inputs)})"

    @property
    def selector(self) -> bytes:
        return function_signature_to_4byte_selector(self.signature)


# Confidential token
GET_ENCRYPTED_BALANCE = "getEncryptedBalance"
IS_OPERATOR = "isOperator"
SET_OPERATOR = "setOperator"
# Public token
BALANCE_OF = "balanceOf"
WRAP = "wrap"
# Operator contract (pull side)
SWAP_CONFIDENTIAL_TO_ERC20 = "swapConfidentialToERC20"

METHODS: dict[str, MethodSpec] = {
    spec.name: spec
    for spec in (
        MethodSpec(GET_ENCRYPTED_BALANCE, ("address",), ("bytes32",), view=True),
        MethodSpec(IS_OPERATOR, ("address", "address"), ("bool",), view=True),
        MethodSpec(SET_OPERATOR, ("address", "uint48")),
        MethodSpec(BALANCE_OF, ("address",), ("uint256",), view=True),
        MethodSpec(WRAP, ("address", "uint256")),
        MethodSpec(SWAP_CONFIDENTIAL_TO_ERC20, ("address", "bytes32", "bytes")),
    )
}


def method_spec(name: str) -> MethodSpec:
    try:
        return METHODS[name]
    except KeyError:
        raise KeyError(f"unknown contract method: {name}") from None


def encode_call(name: str, args: Sequence[Any]) -> str:
    """0x-hex calldata for ``name(args...)``."""
    spec = method_spec(name)
    if len(args) != len(spec.inputs):
        raise ValueError(
            f"{spec.signature} takes {len(spec.inputs)} arguments, got {len(args)}"
        )
    coerced = [_coerce(t, a) for t, a in zip(spec.inputs, args)]
    return "0x" + (spec.selector + encode(list(spec.inputs), coerced)).hex()


def decode_result(name: str, data: str) -> Any:
    """Decode ``eth_call`` return data. Single outputs are unwrapped.

    Empty return data (``0x``) decodes to the zero value of the output,
    which is what a call against a fresh account yields on some nodes.
    """
    spec = method_spec(name)
    raw = bytes.fromhex(data[2:] if data.startswith("0x") else data)
    if not raw:
        values: tuple[Any, ...] = tuple(_zero(t) for t in spec.outputs)
    else:
        values = tuple(decode(list(spec.outputs), raw))
    if len(values) == 1:
        return values[0]
    return values


def _coerce(abi_type: str, value: Any) -> Any:
    if abi_type == "address":
        return to_checksum_address(value)
    if abi_type.startswith("bytes") and isinstance(value, str):
        return bytes.fromhex(value[2:] if value.startswith("0x") else value)
    return value


def _zero(abi_type: str) -> Any:
    if abi_type == "bool":
        return False
    if abi_type.startswith(("uint", "int")):
        return 0
    if abi_type == "bytes32":
        return b"\x00" * 32
    if abi_type == "address":
        return "0x" + "00" * 20
    return b""
