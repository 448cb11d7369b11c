"""
Local private-key signer.
"""
import logging
from typing import Any, Dict

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount

logger = logging.getLogger(__name__)


class LocalSigner:
    """
    Signer backed by a private key held in process memory.

    Holds no state besides the key, so one instance can serve concurrent
    signing requests.
    """

    def __init__(self, private_key: str):
        """
        Args:
            private_key: Hex encoded secp256k1 private key (with or without 0x)

        Raises:
            ValueError: If the key is not a valid secp256k1 private key
        """
        self._account: LocalAccount = Account.from_key(private_key)
        self.address: str = self._account.address

    def sign_hash(self, digest: bytes) -> bytes:
        """
        Sign ``"\\x19Ethereum Signed Message:\\n32" || digest``.

        Args:
            digest: 32-byte hash to attest to

        Returns:
            65-byte signature laid out as r || s || v with v in {27, 28}
        """
        if len(digest) != 32:
            raise ValueError(f"Expected a 32-byte hash, got {len(digest)} bytes")
        signed = self._account.sign_message(encode_defunct(primitive=bytes(digest)))
        logger.debug("Signed hash 0x%s… with %s", bytes(digest).hex()[:8], self.address)
        return bytes(signed.signature)

    def sign_transaction(self, transaction_dict: Dict[str, Any]) -> Any:
        return self._account.sign_transaction(transaction_dict)
