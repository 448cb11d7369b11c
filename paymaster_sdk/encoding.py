"""
Encoding helpers for verifying-paymaster operations.

This module covers the byte layouts shared by the off-chain signer and the
on-chain paymaster:

* the ``paymasterAndData`` blob attached to a UserOperation,
* the hash the trusted signer attests to,
* the packed ``validationData`` word returned from validation,
* the convention for deriving a paymaster identity from a label.
"""
import logging
from dataclasses import dataclass
from typing import Union

from eth_abi import decode as abi_decode, encode as abi_encode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from .exceptions import PaymasterDataError
from .models import UINT128_FIELDS, UINT256_MAX, UserOperation

logger = logging.getLogger(__name__)

# paymasterAndData layout (EntryPoint v0.7)
PAYMASTER_VALIDATION_GAS_OFFSET = 20
PAYMASTER_POSTOP_GAS_OFFSET = 36
PAYMASTER_DATA_OFFSET = 52
VALID_TIMESTAMP_OFFSET = PAYMASTER_DATA_OFFSET
# abi.encode(uint48 paymasterId, uint48 validUntil, uint48 validAfter)
PAYMASTER_FIELDS_LENGTH = 96
SIGNATURE_OFFSET = VALID_TIMESTAMP_OFFSET + PAYMASTER_FIELDS_LENGTH
SIGNATURE_LENGTH = 65

UINT48_MAX = (1 << 48) - 1
UINT128_MAX = (1 << 128) - 1

SIG_VALIDATION_SUCCESS = 0
SIG_VALIDATION_FAILED = 1

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


@dataclass(frozen=True)
class ParsedPaymasterData:
    """Fields decoded from a ``paymasterAndData`` blob."""
    paymaster: str
    verification_gas_limit: int
    post_op_gas_limit: int
    paymaster_id: int
    valid_until: int
    valid_after: int
    signature: bytes


@dataclass(frozen=True)
class ValidationData:
    """Unpacked ``validationData`` word."""
    aggregator: str
    valid_until: int
    valid_after: int

    @property
    def sig_failed(self) -> bool:
        return int(self.aggregator, 16) == SIG_VALIDATION_FAILED


def _require_uint(name: str, value: int, maximum: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0 or value > maximum:
        raise ValueError(f"{name} must be an unsigned integer not above {maximum}, got {value!r}")


def encode_paymaster_data(
    paymaster_id: int,
    valid_until: int,
    valid_after: int,
    signature: bytes = b"\x00" * SIGNATURE_LENGTH,
) -> bytes:
    """
    Encode the paymaster-specific payload (identity, window, signature).

    The default signature is a 65-byte zero placeholder, used while the
    operation is being filled in before it is signed.
    """
    _require_uint("paymaster_id", paymaster_id, UINT48_MAX)
    _require_uint("valid_until", valid_until, UINT48_MAX)
    _require_uint("valid_after", valid_after, UINT48_MAX)
    fields = abi_encode(["uint48", "uint48", "uint48"], [paymaster_id, valid_until, valid_after])
    return fields + bytes(signature)


def pack_paymaster_and_data(
    paymaster: str,
    verification_gas_limit: int,
    post_op_gas_limit: int,
    paymaster_data: bytes = b"",
) -> bytes:
    """Concatenate paymaster address, the two gas limits and the payload."""
    _require_uint("verification_gas_limit", verification_gas_limit, UINT128_MAX)
    _require_uint("post_op_gas_limit", post_op_gas_limit, UINT128_MAX)
    return (
        bytes.fromhex(Web3.to_checksum_address(paymaster)[2:])
        + verification_gas_limit.to_bytes(16, "big")
        + post_op_gas_limit.to_bytes(16, "big")
        + bytes(paymaster_data)
    )


def parse_paymaster_and_data(paymaster_and_data: bytes) -> ParsedPaymasterData:
    """
    Decode a ``paymasterAndData`` blob.

    The signature is returned as-is whatever its length; checking it is part
    of validation, not parsing.

    Raises:
        PaymasterDataError: If the blob is too short or the window fields
            are not valid ``uint48`` words
    """
    blob = bytes(paymaster_and_data)
    if len(blob) < SIGNATURE_OFFSET:
        raise PaymasterDataError(
            f"invalid paymasterAndData length: expected at least {SIGNATURE_OFFSET} bytes, got {len(blob)}"
        )
    try:
        paymaster_id, valid_until, valid_after = abi_decode(
            ["uint48", "uint48", "uint48"],
            blob[VALID_TIMESTAMP_OFFSET:SIGNATURE_OFFSET],
        )
    except DecodingError as e:
        raise PaymasterDataError(f"invalid paymasterAndData encoding: {e}") from e

    return ParsedPaymasterData(
        paymaster=Web3.to_checksum_address(blob[:PAYMASTER_VALIDATION_GAS_OFFSET]),
        verification_gas_limit=int.from_bytes(
            blob[PAYMASTER_VALIDATION_GAS_OFFSET:PAYMASTER_POSTOP_GAS_OFFSET], "big"
        ),
        post_op_gas_limit=int.from_bytes(
            blob[PAYMASTER_POSTOP_GAS_OFFSET:PAYMASTER_DATA_OFFSET], "big"
        ),
        paymaster_id=paymaster_id,
        valid_until=valid_until,
        valid_after=valid_after,
        signature=blob[SIGNATURE_OFFSET:],
    )


def check_user_op_ranges(user_op: UserOperation) -> None:
    """
    Check that the operation's quantities fit their packed widths.

    Models built through validation already satisfy this; copies made with
    ``model_copy(update=...)`` skip validation and are caught here.

    Raises:
        PaymasterDataError: If a gas or fee value exceeds uint128 or the
            nonce exceeds uint256
    """
    if not 0 <= user_op.nonce <= UINT256_MAX:
        raise PaymasterDataError(f"nonce does not fit in uint256: {user_op.nonce}")
    for name in UINT128_FIELDS:
        value = getattr(user_op, name)
        if not 0 <= value <= UINT128_MAX:
            raise PaymasterDataError(f"{name} does not fit in uint128: {value}")


def get_hash(
    user_op: UserOperation,
    paymaster_id: int,
    valid_until: int,
    valid_after: int,
    chain_id: int,
    paymaster: str,
) -> bytes:
    """
    Compute the hash the trusted signer attests to.

    Covers every gas-relevant field of the operation, the paymaster gas
    limits, the chain id and paymaster address (so a signature cannot be
    replayed against another chain or contract) and the identity and window.
    The paymaster payload itself, signature included, is never hashed.

    Returns:
        32-byte keccak256 digest
    """
    _require_uint("paymaster_id", paymaster_id, UINT48_MAX)
    _require_uint("valid_until", valid_until, UINT48_MAX)
    _require_uint("valid_after", valid_after, UINT48_MAX)
    check_user_op_ranges(user_op)

    if len(user_op.paymaster_and_data) < PAYMASTER_DATA_OFFSET:
        raise PaymasterDataError(
            f"invalid paymasterAndData length: expected at least {PAYMASTER_DATA_OFFSET} bytes, "
            f"got {len(user_op.paymaster_and_data)}"
        )
    paymaster_gas_limits = int.from_bytes(
        user_op.paymaster_and_data[PAYMASTER_VALIDATION_GAS_OFFSET:PAYMASTER_DATA_OFFSET], "big"
    )

    encoded = abi_encode(
        [
            "address", "uint256", "bytes32", "bytes32", "bytes32", "uint256",
            "uint256", "bytes32", "uint256", "address", "uint48", "uint48", "uint48",
        ],
        [
            user_op.sender,
            user_op.nonce,
            Web3.keccak(user_op.init_code),
            Web3.keccak(user_op.call_data),
            user_op.account_gas_limits,
            paymaster_gas_limits,
            user_op.pre_verification_gas,
            user_op.gas_fees,
            chain_id,
            Web3.to_checksum_address(paymaster),
            paymaster_id,
            valid_until,
            valid_after,
        ],
    )
    return bytes(Web3.keccak(encoded))


def user_op_hash(user_op: UserOperation, entry_point: str, chain_id: int) -> bytes:
    """Compute the EntryPoint v0.7 hash of an operation (signature excluded)."""
    check_user_op_ranges(user_op)
    packed = abi_encode(
        ["address", "uint256", "bytes32", "bytes32", "bytes32", "uint256", "bytes32", "bytes32"],
        [
            user_op.sender,
            user_op.nonce,
            Web3.keccak(user_op.init_code),
            Web3.keccak(user_op.call_data),
            user_op.account_gas_limits,
            user_op.pre_verification_gas,
            user_op.gas_fees,
            Web3.keccak(user_op.paymaster_and_data),
        ],
    )
    return bytes(Web3.keccak(abi_encode(
        ["bytes32", "address", "uint256"],
        [Web3.keccak(packed), Web3.to_checksum_address(entry_point), chain_id],
    )))


def pack_validation_data(sig_failed: Union[bool, int], valid_until: int, valid_after: int) -> int:
    """Pack ``(sigFailed, validUntil, validAfter)`` into one validationData word."""
    _require_uint("valid_until", valid_until, UINT48_MAX)
    _require_uint("valid_after", valid_after, UINT48_MAX)
    return (
        (SIG_VALIDATION_FAILED if sig_failed else SIG_VALIDATION_SUCCESS)
        | (valid_until << 160)
        | (valid_after << (160 + 48))
    )


def parse_validation_data(validation_data: int) -> ValidationData:
    """
    Unpack a validationData word.

    A ``validUntil`` of zero means "no expiry" and is returned as the
    maximum ``uint48`` value.
    """
    aggregator = validation_data & ((1 << 160) - 1)
    valid_until = (validation_data >> 160) & UINT48_MAX
    valid_after = (validation_data >> (160 + 48)) & UINT48_MAX
    if valid_until == 0:
        valid_until = UINT48_MAX
    return ValidationData(
        aggregator=Web3.to_checksum_address(aggregator.to_bytes(20, "big")),
        valid_until=valid_until,
        valid_after=valid_after,
    )


def paymaster_id_from_label(label: str) -> int:
    """
    Derive a paymaster identity from a human-readable label.

    The identity is ``uint48(uint256(keccak256(utf8(label))))``: the low
    48 bits of the keccak256 digest of the UTF-8 encoded label.

    Raises:
        ValueError: If the label is empty or maps to the reserved identity zero
    """
    if not label:
        raise ValueError("Label cannot be empty")
    digest = Web3.keccak(text=label)
    paymaster_id = int.from_bytes(digest, "big") & UINT48_MAX
    if paymaster_id == 0:
        raise ValueError(f"Label {label!r} maps to the reserved paymaster id 0")
    logger.debug("Derived paymaster id %d from label", paymaster_id)
    return paymaster_id
