"""
Signers for the Paymaster SDK.

A signer holds the trusted paymaster key off-chain. It attests to an
operation hash by signing its personal-message wrap and may also sign the
transactions the on-chain client sends.
"""
from typing import Any, Dict, Protocol

from .ecdsa import recover_signer, to_eth_signed_message_hash
from .local import LocalSigner

__all__ = ["Signer", "LocalSigner", "recover_signer", "to_eth_signed_message_hash"]


class Signer(Protocol):
    """Protocol for custom signers"""
    address: str

    def sign_hash(self, digest: bytes) -> bytes:
        """Sign the personal-message wrap of a 32-byte hash, returning 65 bytes"""
        ...

    def sign_transaction(self, transaction_dict: Dict[str, Any]) -> Any:
        """Sign transaction and return signed tx object"""
        ...
