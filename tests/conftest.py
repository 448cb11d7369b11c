"""
Pytest fixtures for the Paymaster SDK tests.
"""
import pytest
from web3.providers.rpc import HTTPProvider

from paymaster_sdk._rate_limited_log import reset_rate_limited_log
from paymaster_sdk.config import NetworkConfig
from paymaster_sdk.entry_point import DEFAULT_ENTRY_POINT_ADDRESS, EntryPoint
from paymaster_sdk.models import UserOperation
from paymaster_sdk.paymaster import VerifyingPaymaster
from paymaster_sdk.service import SponsorService
from paymaster_sdk.signer import LocalSigner

# Constants for testing
TEST_RPC_URL = "https://rpc.example.com"
TEST_API_URL = "https://paymaster.example.com"
TEST_CHAIN_ID = 1337
TEST_PAYMASTER = "0x1234567890123456789012345678901234567890"
TEST_ENTRY_POINT = DEFAULT_ENTRY_POINT_ADDRESS
TEST_OWNER = "0x2345678901234567890123456789012345678901"
TEST_SENDER = "0x3456789012345678901234567890123456789012"
TEST_OTHER_SENDER = "0x4567890123456789012345678901234567890123"
TEST_BENEFICIARY = "0x5678901234567890123456789012345678901234"
TEST_PRIV_KEY = "0x0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"
TEST_WRONG_PRIV_KEY = "0x" + "22" * 32

GWEI = 10**9
ETHER = 10**18

# Validity window used by most validation scenarios
VALID_AFTER = 0x1234
VALID_UNTIL = 0xdeadbeef
FUNDED_ID = 1
UNFUNDED_ID = 2


@pytest.fixture(autouse=True)
def _patch_http_provider(monkeypatch):
    """
    Stub every Web3 HTTP call so no DNS / network traffic is triggered.
    Works for all tests because it is autouse.
    """
    def _dummy(self, method, params=None, _=None):      # signature match
        if method in {"eth_chainId"}:
            return {"jsonrpc": "2.0", "id": 1, "result": hex(TEST_CHAIN_ID)}
        if method in {"eth_gasPrice"}:
            return {"jsonrpc": "2.0", "id": 1, "result": "0x3b9aca00"}  # 1 gwei
        return {"jsonrpc": "2.0", "id": 1, "result": "0x0"}

    monkeypatch.setattr(HTTPProvider, "make_request", _dummy, raising=True)


@pytest.fixture(autouse=True)
def _reset_shared_state():
    """Rate-limit memory and the network cache are module level."""
    reset_rate_limited_log()
    NetworkConfig._networks_cache = None
    yield
    reset_rate_limited_log()
    NetworkConfig._networks_cache = None


@pytest.fixture
def verifier():
    """The trusted off-chain signer"""
    return LocalSigner(TEST_PRIV_KEY)


@pytest.fixture
def wrong_signer():
    """A well-formed signer the paymaster does not trust"""
    return LocalSigner(TEST_WRONG_PRIV_KEY)


@pytest.fixture
def user_op():
    """An operation without paymaster data"""
    return UserOperation(
        sender=TEST_SENDER,
        nonce=0,
        callData="0xb61d27f6",
        callGasLimit=100_000,
        verificationGasLimit=150_000,
        preVerificationGas=21_000,
        maxFeePerGas=GWEI,
        maxPriorityFeePerGas=GWEI,
    )


@pytest.fixture
def paymaster(verifier):
    """A paymaster trusting ``verifier`` with identity 1 funded with 2 ETH"""
    pm = VerifyingPaymaster(
        address=TEST_PAYMASTER,
        entry_point=TEST_ENTRY_POINT,
        verifying_signer=verifier.address,
        owner=TEST_OWNER,
        chain_id=TEST_CHAIN_ID,
    )
    pm.deposit_for(FUNDED_ID, 2 * ETHER)
    return pm


@pytest.fixture
def sponsor_service(verifier):
    return SponsorService(verifier, TEST_PAYMASTER, TEST_CHAIN_ID)


@pytest.fixture
def rogue_service(wrong_signer):
    """Service signing with a key the paymaster does not trust"""
    return SponsorService(wrong_signer, TEST_PAYMASTER, TEST_CHAIN_ID)


@pytest.fixture
def entry_point(paymaster):
    """EntryPoint with the paymaster registered and staked with 1 ETH"""
    ep = EntryPoint(address=TEST_ENTRY_POINT, chain_id=TEST_CHAIN_ID, clock=lambda: 10_000)
    ep.register_paymaster(paymaster)
    ep.deposit_to(paymaster.address, ETHER)
    return ep
