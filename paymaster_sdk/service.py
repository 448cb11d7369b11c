"""
Off-chain sponsorship service.

Builds the paymaster payload for an operation, has the trusted signer attest
to it and returns the blob to attach as ``paymasterAndData``.
"""
import logging
from typing import Optional, Union

from web3 import Web3

from . import encoding
from .models import SponsorResult, UserOperation
from .signer import Signer

logger = logging.getLogger(__name__)

DEFAULT_PAYMASTER_VERIFICATION_GAS_LIMIT = 300_000
DEFAULT_PAYMASTER_POST_OP_GAS_LIMIT = 20_000


class SponsorService:
    """
    Signs sponsorship attestations for one paymaster deployment.

    The service keeps no mutable state beyond its configuration, so a single
    instance may be shared across threads.
    """

    def __init__(
        self,
        signer: Signer,
        paymaster_address: str,
        chain_id: int,
        verification_gas_limit: int = DEFAULT_PAYMASTER_VERIFICATION_GAS_LIMIT,
        post_op_gas_limit: int = DEFAULT_PAYMASTER_POST_OP_GAS_LIMIT,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the service

        Args:
            signer: Holder of the trusted paymaster key
            paymaster_address: Deployed paymaster address (part of the signed hash)
            chain_id: Chain id (part of the signed hash)
            verification_gas_limit: Default paymaster verification gas limit
            post_op_gas_limit: Default paymaster post-op gas limit
            logger: Optional logger instance
        """
        if not Web3.is_address(paymaster_address):
            raise ValueError(f"Invalid paymaster address: {paymaster_address!r}")
        self.signer = signer
        self.paymaster_address = Web3.to_checksum_address(paymaster_address)
        self.chain_id = chain_id
        self.verification_gas_limit = verification_gas_limit
        self.post_op_gas_limit = post_op_gas_limit
        self.logger = logger or logging.getLogger(__name__)

    def sponsor(
        self,
        user_op: UserOperation,
        paymaster_id: Union[int, str],
        valid_until: int,
        valid_after: int = 0,
        verification_gas_limit: Optional[int] = None,
        post_op_gas_limit: Optional[int] = None,
    ) -> SponsorResult:
        """
        Sign a sponsorship for ``user_op``.

        Any ``paymasterAndData`` already on the operation is replaced; the
        paymaster gas limits that end up in the result are the ones covered
        by the signature.

        Args:
            user_op: Operation to sponsor
            paymaster_id: Paymaster identity, or a label to derive it from
            valid_until: Expiry timestamp (0 for no expiry)
            valid_after: Timestamp from which the sponsorship is usable
            verification_gas_limit: Override of the paymaster verification gas limit
            post_op_gas_limit: Override of the paymaster post-op gas limit

        Returns:
            SponsorResult carrying the hash, the signature and the completed blobs

        Raises:
            ValueError: If the identity is zero or a field is out of range
        """
        if isinstance(paymaster_id, str):
            paymaster_id = encoding.paymaster_id_from_label(paymaster_id)
        if paymaster_id == 0:
            raise ValueError("Paymaster Id cannot be zero")

        gas_prefix = encoding.pack_paymaster_and_data(
            self.paymaster_address,
            self.verification_gas_limit if verification_gas_limit is None else verification_gas_limit,
            self.post_op_gas_limit if post_op_gas_limit is None else post_op_gas_limit,
        )
        unsigned = user_op.with_paymaster_and_data(
            gas_prefix + encoding.encode_paymaster_data(paymaster_id, valid_until, valid_after)
        )

        digest = encoding.get_hash(
            unsigned, paymaster_id, valid_until, valid_after,
            chain_id=self.chain_id, paymaster=self.paymaster_address,
        )
        signature = self.signer.sign_hash(digest)
        paymaster_data = encoding.encode_paymaster_data(paymaster_id, valid_until, valid_after, signature)

        self.logger.info(
            "Sponsored op from %s (nonce %d) for paymasterId %d, window [%d, %d]",
            user_op.sender, user_op.nonce, paymaster_id, valid_after, valid_until,
        )
        return SponsorResult(
            paymasterId=paymaster_id,
            validUntil=valid_until,
            validAfter=valid_after,
            hash="0x" + digest.hex(),
            signature="0x" + signature.hex(),
            paymasterData="0x" + paymaster_data.hex(),
            paymasterAndData="0x" + (gas_prefix + paymaster_data).hex(),
        )

    def sponsored_user_op(self, user_op: UserOperation, *args, **kwargs) -> UserOperation:
        """Return ``user_op`` with a freshly signed ``paymasterAndData`` attached."""
        result = self.sponsor(user_op, *args, **kwargs)
        return user_op.with_paymaster_and_data(bytes.fromhex(result.paymaster_and_data[2:]))
