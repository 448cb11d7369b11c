"""
Signature recovery matching the on-chain ECDSA library.

Recovery either yields an address or raises ``ECDSAError``. A recovered
address that differs from the expected signer is not an error here;
deciding what a mismatch means is up to the caller.
"""
from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError
from web3 import Web3

from ..exceptions import ECDSAError
from .ec_constants import SECP256K1_HALF_N, SECP256K1_N, VALID_V_VALUES

_PERSONAL_MESSAGE_PREFIX = b"\x19Ethereum Signed Message:\n32"


def to_eth_signed_message_hash(digest: bytes) -> bytes:
    """Apply the EIP-191 personal-message wrap to a 32-byte hash."""
    if len(digest) != 32:
        raise ValueError(f"Expected a 32-byte hash, got {len(digest)} bytes")
    return bytes(Web3.keccak(_PERSONAL_MESSAGE_PREFIX + bytes(digest)))


def recover_signer(digest: bytes, signature: bytes) -> str:
    """
    Recover the address that signed the personal-message wrap of ``digest``.

    Args:
        digest: The unwrapped 32-byte hash
        signature: 65-byte r || s || v signature

    Returns:
        Checksummed signer address

    Raises:
        ECDSAError: ``ECDSAInvalidSignatureLength`` for a signature that is not
            65 bytes, ``ECDSAInvalidSignatureS`` for a malleable (high) s value,
            ``ECDSAInvalidSignature`` when no public key can be recovered
    """
    signature = bytes(signature)
    if len(signature) != 65:
        raise ECDSAError("ECDSAInvalidSignatureLength", f"length {len(signature)}")

    r = int.from_bytes(signature[0:32], "big")
    s = int.from_bytes(signature[32:64], "big")
    v = signature[64]

    if s > SECP256K1_HALF_N:
        raise ECDSAError("ECDSAInvalidSignatureS")
    if v not in VALID_V_VALUES or not 0 < r < SECP256K1_N or s == 0:
        raise ECDSAError("ECDSAInvalidSignature")

    message_hash = to_eth_signed_message_hash(digest)
    try:
        public_key = keys.Signature(vrs=(v - 27, r, s)).recover_public_key_from_msg_hash(message_hash)
    except (BadSignature, ValidationError) as e:
        raise ECDSAError("ECDSAInvalidSignature", str(e)) from e
    return public_key.to_checksum_address()
