"""
Data models for the Paymaster SDK.
"""
from typing import Dict, Any, Optional, List

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from web3 import Web3

_BYTES_FIELDS = ("init_code", "call_data", "paymaster_and_data", "signature")
_INT_FIELDS = (
    "nonce",
    "call_gas_limit",
    "verification_gas_limit",
    "pre_verification_gas",
    "max_fee_per_gas",
    "max_priority_fee_per_gas",
)

# Gas and fee quantities are bounded to uint128, the nonce to uint256
UINT128_FIELDS = _INT_FIELDS[1:]
UINT128_MAX = (1 << 128) - 1
UINT256_MAX = (1 << 256) - 1


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        text = value[2:] if value.startswith(("0x", "0X")) else value
        return bytes.fromhex(text)
    raise TypeError(f"Expected bytes or hex string, got {type(value).__name__}")


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError("Booleans are not valid quantities")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        if value.startswith(("0x", "0X")):
            return int(value, 16) if len(value) > 2 else 0
        return int(value)
    raise TypeError(f"Expected int or numeric string, got {type(value).__name__}")


class UserOperation(BaseModel):
    """
    Packed ERC-4337 UserOperation (EntryPoint v0.7).

    Instances are frozen: any change to a hashed field must go through
    ``model_copy(update=...)`` and invalidates signatures made over the
    previous value.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    sender: str
    nonce: int = 0
    init_code: bytes = Field(b"", alias="initCode")
    call_data: bytes = Field(b"", alias="callData")
    call_gas_limit: int = Field(0, alias="callGasLimit")
    verification_gas_limit: int = Field(150_000, alias="verificationGasLimit")
    pre_verification_gas: int = Field(21_000, alias="preVerificationGas")
    max_fee_per_gas: int = Field(0, alias="maxFeePerGas")
    max_priority_fee_per_gas: int = Field(1_000_000_000, alias="maxPriorityFeePerGas")
    paymaster_and_data: bytes = Field(b"", alias="paymasterAndData")
    signature: bytes = b""

    @field_validator("sender", mode="before")
    @classmethod
    def _checksum_sender(cls, value: Any) -> str:
        if not isinstance(value, str) or not Web3.is_address(value):
            raise ValueError(f"Invalid sender address: {value!r}")
        return Web3.to_checksum_address(value)

    @field_validator(*_BYTES_FIELDS, mode="before")
    @classmethod
    def _coerce_bytes(cls, value: Any) -> bytes:
        return _to_bytes(value)

    @field_validator(*_INT_FIELDS, mode="before")
    @classmethod
    def _coerce_int(cls, value: Any, info: ValidationInfo) -> int:
        result = _to_int(value)
        if result < 0:
            raise ValueError("Quantities must be non-negative")
        maximum = UINT128_MAX if info.field_name in UINT128_FIELDS else UINT256_MAX
        if result > maximum:
            raise ValueError(f"{info.field_name} must not exceed {maximum}, got {result}")
        return result

    @property
    def account_gas_limits(self) -> bytes:
        """bytes32: verificationGasLimit (16 bytes) followed by callGasLimit (16 bytes)"""
        return (
            self.verification_gas_limit.to_bytes(16, "big")
            + self.call_gas_limit.to_bytes(16, "big")
        )

    @property
    def gas_fees(self) -> bytes:
        """bytes32: maxPriorityFeePerGas (16 bytes) followed by maxFeePerGas (16 bytes)"""
        return (
            self.max_priority_fee_per_gas.to_bytes(16, "big")
            + self.max_fee_per_gas.to_bytes(16, "big")
        )

    def with_paymaster_and_data(self, paymaster_and_data: bytes) -> "UserOperation":
        """Return a copy carrying a new ``paymasterAndData`` blob."""
        return self.model_copy(update={"paymaster_and_data": bytes(paymaster_and_data)})

    def to_rpc_dict(self) -> Dict[str, str]:
        """Serialize to the camelCase hex form used by bundlers and paymaster APIs."""
        result: Dict[str, str] = {"sender": self.sender}
        for name in _INT_FIELDS:
            result[type(self).model_fields[name].alias or name] = hex(getattr(self, name))
        for name in _BYTES_FIELDS:
            result[type(self).model_fields[name].alias or name] = "0x" + getattr(self, name).hex()
        return result


class SponsorResult(BaseModel):
    """Output of the off-chain signer service for one operation."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    paymaster_id: int = Field(..., alias="paymasterId")
    valid_until: int = Field(..., alias="validUntil")
    valid_after: int = Field(..., alias="validAfter")
    op_hash: str = Field(..., alias="hash")
    signature: str
    paymaster_data: str = Field(..., alias="paymasterData")
    paymaster_and_data: str = Field(..., alias="paymasterAndData")


class TxReceipt(BaseModel):
    """Transaction receipt from the blockchain"""
    model_config = ConfigDict(populate_by_name=True)

    tx_hash: str = Field(..., alias="transactionHash")
    block_number: int = Field(..., alias="blockNumber")
    block_hash: str = Field(..., alias="blockHash")
    status: int
    gas_used: int = Field(..., alias="gasUsed")
    from_address: Optional[str] = Field(None, alias="from")
    to_address: Optional[str] = Field(None, alias="to")
    logs: List[Dict[str, Any]]
