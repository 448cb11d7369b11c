"""
Exceptions for the Paymaster SDK.

Every exception here is a hard failure: the call that raised it must be
treated as reverted. A signature that is well formed but comes from the
wrong key is not an error and is reported as data instead (see
``paymaster_sdk.paymaster.SignatureMismatch``).
"""
from typing import Optional


class PaymasterError(Exception):
    """Base exception for all paymaster-related errors."""
    pass


class PaymasterDataError(PaymasterError):
    """Raised when ``paymasterAndData`` cannot be parsed."""
    pass


class ECDSAError(PaymasterError):
    """
    Raised when a signature cannot be recovered at all.

    ``error_name`` carries the name of the underlying ECDSA error
    (``ECDSAInvalidSignature``, ``ECDSAInvalidSignatureS``,
    ``ECDSAInvalidSignatureLength``) so callers can surface it unchanged.
    """

    def __init__(self, error_name: str, detail: Optional[str] = None):
        self.error_name = error_name
        message = error_name if not detail else f"{error_name}: {detail}"
        super().__init__(message)


class InsufficientBalanceError(PaymasterError):
    """Raised when a paymaster identity cannot cover a charge."""

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient balance in paymasterId, required: {required}, available: {available}"
        )


class UnauthorizedError(PaymasterError):
    """Raised when a non-owner calls an owner-only operation."""

    def __init__(self, account: str, message: Optional[str] = None):
        self.account = account
        super().__init__(message or f"OwnableUnauthorizedAccount({account})")


class ZeroValueError(PaymasterError):
    """Raised when an identity, amount or address is zero where it may not be."""
    pass


class PostOpGasError(PaymasterError):
    """Raised when the post-op gas limit cannot cover settlement."""
    pass


class FailedOp(PaymasterError):
    """
    Raised by the EntryPoint when an operation in a batch fails validation.

    Mirrors the EntryPoint's ``FailedOp(opIndex, reason)`` error; ``reason``
    starts with an ``AAxx`` code.
    """

    def __init__(self, op_index: int, reason: str):
        self.op_index = op_index
        self.reason = reason
        super().__init__(f"FailedOp({op_index}, {reason})")


class PaymasterApiError(PaymasterError):
    """Raised when the remote paymaster service fails or answers badly."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class TransactionError(PaymasterError):
    """Raised when an on-chain transaction cannot be built, signed or sent."""
    pass
