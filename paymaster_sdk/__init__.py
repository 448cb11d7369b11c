"""
Verifying Paymaster SDK.

Off-chain signing and encoding for ERC-4337 verifying paymasters, an
executable model of the paymaster's validation protocol and deposit ledger,
and clients for deployed paymasters and hosted paymaster services.
"""
from .version import __version__
from .api_client import PaymasterApiClient
from .client import PaymasterClient
from .config import NetworkConfig
from .encoding import (
    ParsedPaymasterData, ValidationData, encode_paymaster_data, get_hash,
    pack_paymaster_and_data, pack_validation_data, parse_paymaster_and_data,
    parse_validation_data, paymaster_id_from_label, user_op_hash,
)
from .entry_point import EntryPoint, ExecutionResult, ReturnInfo, ValidationResult
from .exceptions import (
    PaymasterError, PaymasterDataError, ECDSAError, InsufficientBalanceError,
    UnauthorizedError, ZeroValueError, PostOpGasError, FailedOp,
    PaymasterApiError, TransactionError,
)
from .ledger import LedgerEvent, PaymasterLedger
from .models import SponsorResult, TxReceipt, UserOperation
from .paymaster import (
    Approved, Fatal, PostOpMode, SignatureMismatch, ValidationOutcome, VerifyingPaymaster,
)
from .service import SponsorService
from .signer import LocalSigner, Signer, recover_signer

__all__ = [
    "__version__",
    "PaymasterApiClient",
    "PaymasterClient",
    "NetworkConfig",
    "ParsedPaymasterData",
    "ValidationData",
    "encode_paymaster_data",
    "get_hash",
    "pack_paymaster_and_data",
    "pack_validation_data",
    "parse_paymaster_and_data",
    "parse_validation_data",
    "paymaster_id_from_label",
    "user_op_hash",
    "EntryPoint",
    "ExecutionResult",
    "ReturnInfo",
    "ValidationResult",
    "PaymasterError",
    "PaymasterDataError",
    "ECDSAError",
    "InsufficientBalanceError",
    "UnauthorizedError",
    "ZeroValueError",
    "PostOpGasError",
    "FailedOp",
    "PaymasterApiError",
    "TransactionError",
    "LedgerEvent",
    "PaymasterLedger",
    "SponsorResult",
    "TxReceipt",
    "UserOperation",
    "Approved",
    "Fatal",
    "PostOpMode",
    "SignatureMismatch",
    "ValidationOutcome",
    "VerifyingPaymaster",
    "SponsorService",
    "LocalSigner",
    "Signer",
    "recover_signer",
]
