"""
Tests for BridgeConfig and the contract method table.
"""

import pytest
from eth_abi import decode

from confidential_bridge.chain import abi
from confidential_bridge.config import DEFAULT_RPC_URLS, BridgeConfig
from tests.fakes import CWETH, OWNER, SWAPPER


class TestBridgeConfig:
    def test_defaults(self) -> None:
        config = BridgeConfig()
        assert config.rpc_urls == DEFAULT_RPC_URLS
        assert config.credential_duration_days == 365
        assert config.operator_grant_seconds == 3600
        assert config.cache_ttls["encrypted_data"] == 60

    def test_from_env(self) -> None:
        config = BridgeConfig.from_env(
            {
                "BRIDGE_RPC_URLS": "https://a.example, https://b.example,",
                "BRIDGE_CHAIN_ID": "1",
                "BRIDGE_RETRY_BASE_DELAY": "0.25",
                "BRIDGE_CREDENTIAL_DB": "",
            }
        )
        assert config.rpc_urls == ("https://a.example", "https://b.example")
        assert config.chain_id == 1
        assert config.retry_base_delay == 0.25
        assert config.credential_db == "credentials.db"

    def test_from_env_bad_value_names_variable(self) -> None:
        with pytest.raises(ValueError, match="BRIDGE_RETRY_ATTEMPTS"):
            BridgeConfig.from_env({"BRIDGE_RETRY_ATTEMPTS": "three"})

    @pytest.mark.parametrize(
        "overrides",
        [
            {"rpc_urls": ()},
            {"credential_duration_days": 0},
            {"operator_grant_seconds": -1},
            {"retry_attempts": 0},
        ],
    )
    def test_validation(self, overrides: dict) -> None:
        with pytest.raises(ValueError):
            BridgeConfig(**overrides)


class TestAbi:
    def test_known_selectors(self) -> None:
        assert abi.method_spec(abi.BALANCE_OF).selector.hex() == "70a08231"
        assert abi.method_spec(abi.SET_OPERATOR).signature == "setOperator(address,uint48)"

    def test_encode_set_operator(self) -> None:
        data = abi.encode_call(abi.SET_OPERATOR, [SWAPPER, 1_700_003_600])
        body = bytes.fromhex(data[10:])
        operator, until = decode(["address", "uint48"], body)
        assert operator.lower() == SWAPPER
        assert until == 1_700_003_600

    def test_encode_swap_accepts_hex_handles(self) -> None:
        handle = "0x" + "cd" * 32
        data = abi.encode_call(abi.SWAP_CONFIDENTIAL_TO_ERC20, [CWETH, handle, b"\x01\x02"])
        token, raw_handle, proof = decode(["address", "bytes32", "bytes"], bytes.fromhex(data[10:]))
        assert token.lower() == CWETH
        assert raw_handle == b"\xcd" * 32
        assert proof == b"\x01\x02"

    def test_argument_count_checked(self) -> None:
        with pytest.raises(ValueError):
            abi.encode_call(abi.IS_OPERATOR, [OWNER])

    def test_unknown_method(self) -> None:
        with pytest.raises(KeyError):
            abi.method_spec("transferFrom")
