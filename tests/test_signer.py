"""
Tests for the local signer and ECDSA recovery.
"""
import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from paymaster_sdk.exceptions import ECDSAError
from paymaster_sdk.signer import LocalSigner, recover_signer, to_eth_signed_message_hash
from paymaster_sdk.signer.ec_constants import SECP256K1_N
from conftest import TEST_PRIV_KEY

DIGEST = bytes(Web3.keccak(text="sponsor me"))


def test_local_signer_address():
    signer = LocalSigner(TEST_PRIV_KEY)
    assert signer.address == Account.from_key(TEST_PRIV_KEY).address


def test_local_signer_invalid_key():
    with pytest.raises(ValueError):
        LocalSigner("0x1234")


def test_sign_hash_shape(verifier):
    signature = verifier.sign_hash(DIGEST)
    assert len(signature) == 65
    assert signature[64] in (27, 28)


def test_sign_hash_is_personal_message(verifier):
    """The signature verifies as an EIP-191 message over the raw digest"""
    signature = verifier.sign_hash(DIGEST)
    recovered = Account.recover_message(encode_defunct(primitive=DIGEST), signature=signature)
    assert recovered == verifier.address


def test_sign_hash_rejects_wrong_length(verifier):
    with pytest.raises(ValueError, match="32-byte"):
        verifier.sign_hash(DIGEST[:31])


def test_to_eth_signed_message_hash():
    expected = Web3.keccak(b"\x19Ethereum Signed Message:\n32" + DIGEST)
    assert to_eth_signed_message_hash(DIGEST) == bytes(expected)


def test_recover_signer_roundtrip(verifier, wrong_signer):
    assert recover_signer(DIGEST, verifier.sign_hash(DIGEST)) == verifier.address
    assert recover_signer(DIGEST, wrong_signer.sign_hash(DIGEST)) == wrong_signer.address


def test_recover_signer_other_digest_gives_other_address(verifier):
    """A valid signature over another hash recovers, just not to the signer"""
    other = bytes(Web3.keccak(text="something else"))
    assert recover_signer(other, verifier.sign_hash(DIGEST)) != verifier.address


@pytest.mark.parametrize("length", [0, 2, 64, 66])
def test_recover_signer_length(length):
    with pytest.raises(ECDSAError) as exc_info:
        recover_signer(DIGEST, b"\x01" * length)
    assert exc_info.value.error_name == "ECDSAInvalidSignatureLength"


def test_recover_signer_high_s(verifier):
    """The malleable twin of a valid signature is rejected"""
    signature = verifier.sign_hash(DIGEST)
    s = int.from_bytes(signature[32:64], "big")
    flipped_v = 55 - signature[64]
    malleable = signature[:32] + (SECP256K1_N - s).to_bytes(32, "big") + bytes([flipped_v])
    with pytest.raises(ECDSAError) as exc_info:
        recover_signer(DIGEST, malleable)
    assert exc_info.value.error_name == "ECDSAInvalidSignatureS"


def test_recover_signer_all_zero():
    with pytest.raises(ECDSAError, match="ECDSAInvalidSignature"):
        recover_signer(DIGEST, b"\x00" * 65)


def test_recover_signer_bad_v(verifier):
    signature = verifier.sign_hash(DIGEST)
    with pytest.raises(ECDSAError) as exc_info:
        recover_signer(DIGEST, signature[:64] + b"\x1d")
    assert exc_info.value.error_name == "ECDSAInvalidSignature"


def test_recover_signer_zero_r(verifier):
    signature = verifier.sign_hash(DIGEST)
    with pytest.raises(ECDSAError) as exc_info:
        recover_signer(DIGEST, b"\x00" * 32 + signature[32:])
    assert exc_info.value.error_name == "ECDSAInvalidSignature"
