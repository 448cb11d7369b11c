"""
Executable model of the verifying paymaster contract.

The paymaster sponsors an operation when the trusted off-chain signer has
attested to it for a given paymaster identity and validity window, and the
identity's ledger balance covers the worst-case cost. Validation has three
outcomes:

* ``Approved``: every check passed,
* ``SignatureMismatch``: a well-formed signature from the wrong key; this is
  returned as data so a bundler can drop the operation without penalizing
  anyone,
* ``Fatal``: malformed data, an unrecoverable signature or missing funds;
  the validation call reverts.
"""
import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Tuple, Union

from eth_abi import decode as abi_decode, encode as abi_encode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from . import encoding
from .encoding import ParsedPaymasterData, SIGNATURE_LENGTH, ZERO_ADDRESS
from .exceptions import (
    PaymasterDataError, PaymasterError, PostOpGasError, InsufficientBalanceError,
    UnauthorizedError, ZeroValueError,
)
from .ledger import DEFAULT_UNACCOUNTED_GAS_OVERHEAD, PaymasterLedger
from .models import UserOperation
from .signer import recover_signer

logger = logging.getLogger(__name__)


class PostOpMode(IntEnum):
    """Execution outcome reported to ``post_op``."""
    OP_SUCCEEDED = 0
    OP_REVERTED = 1


@dataclass(frozen=True)
class Approved:
    """Validation passed; the caller still has to enforce the window."""
    context: bytes
    validation_data: int
    paymaster_id: int
    required_prefund: int


@dataclass(frozen=True)
class SignatureMismatch:
    """The signature is well formed but was not made by the trusted signer."""
    validation_data: int
    recovered: str


@dataclass(frozen=True)
class Fatal:
    """Validation reverts with ``error``."""
    error: PaymasterError

    @property
    def reason(self) -> str:
        return str(self.error)


ValidationOutcome = Union[Approved, SignatureMismatch, Fatal]


def compute_max_cost(user_op: UserOperation, parsed: ParsedPaymasterData) -> int:
    """Worst-case gas cost of an operation as the EntryPoint reserves it."""
    total_gas = (
        user_op.call_gas_limit
        + user_op.verification_gas_limit
        + user_op.pre_verification_gas
        + parsed.verification_gas_limit
        + parsed.post_op_gas_limit
    )
    return total_gas * user_op.max_fee_per_gas


class VerifyingPaymaster:
    """
    Verifying paymaster bound to one EntryPoint, chain and trusted signer.

    The trusted signer is fixed at construction; there is no way to rotate it.
    """

    def __init__(
        self,
        address: str,
        entry_point: str,
        verifying_signer: str,
        owner: str,
        chain_id: int,
        unaccounted_gas_overhead: int = DEFAULT_UNACCOUNTED_GAS_OVERHEAD,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the paymaster

        Args:
            address: Address the paymaster is deployed at
            entry_point: EntryPoint allowed to call validation and settlement
            verifying_signer: Address of the trusted off-chain signer
            owner: Owner of the deposit ledger
            chain_id: Chain the paymaster lives on
            unaccounted_gas_overhead: Initial gas overhead for cost projections
            logger: Optional logger instance

        Raises:
            ZeroValueError: If the verifying signer is the zero address
        """
        for name, value in (("address", address), ("entry_point", entry_point),
                            ("verifying_signer", verifying_signer)):
            if not isinstance(value, str) or not Web3.is_address(value):
                raise ValueError(f"{name} must be a valid address, got {value!r}")
        if Web3.to_checksum_address(verifying_signer) == ZERO_ADDRESS:
            raise ZeroValueError("VerifyingPaymaster: verifyingSigner cannot be address(0)")

        self._address = Web3.to_checksum_address(address)
        self._entry_point = Web3.to_checksum_address(entry_point)
        self._verifying_signer = Web3.to_checksum_address(verifying_signer)
        self._chain_id = chain_id
        self.logger = logger or logging.getLogger(__name__)
        self.ledger = PaymasterLedger(owner, unaccounted_gas_overhead, logger=self.logger)

    @property
    def address(self) -> str:
        return self._address

    @property
    def entry_point(self) -> str:
        return self._entry_point

    @property
    def verifying_signer(self) -> str:
        return self._verifying_signer

    @property
    def chain_id(self) -> int:
        return self._chain_id

    # Ledger entry points

    def deposit_for(self, paymaster_id: int, amount: int) -> None:
        self.ledger.deposit_for(paymaster_id, amount)

    def withdraw_to(self, caller: str, destination: str, amount: int, paymaster_id: int) -> None:
        self.ledger.withdraw_to(caller, destination, amount, paymaster_id)

    def get_balance(self, paymaster_id: int) -> int:
        return self.ledger.get_balance(paymaster_id)

    def set_unaccounted_gas_overhead(self, caller: str, value: int) -> None:
        self.ledger.set_unaccounted_gas_overhead(caller, value)

    # Views

    @staticmethod
    def parse_paymaster_and_data(paymaster_and_data: bytes) -> ParsedPaymasterData:
        return encoding.parse_paymaster_and_data(paymaster_and_data)

    def get_hash(self, user_op: UserOperation, paymaster_id: int, valid_until: int, valid_after: int) -> bytes:
        """Hash the trusted signer must sign for this paymaster."""
        return encoding.get_hash(
            user_op, paymaster_id, valid_until, valid_after,
            chain_id=self._chain_id, paymaster=self._address,
        )

    # Validation protocol

    def validate(self, user_op: UserOperation, max_cost: Optional[int] = None) -> ValidationOutcome:
        """
        Run the validation protocol without touching the ledger.

        Args:
            user_op: Operation carrying a complete ``paymasterAndData``
            max_cost: Worst-case cost reserved by the EntryPoint; computed
                from the operation's gas limits when omitted

        Returns:
            ``Approved``, ``SignatureMismatch`` or ``Fatal``
        """
        try:
            return self._validate(user_op, max_cost)
        except PaymasterError as e:
            self.logger.warning("Paymaster validation reverted for %s: %s", user_op.sender, e)
            return Fatal(e)

    def validate_paymaster_user_op(
        self,
        caller: str,
        user_op: UserOperation,
        user_op_hash: bytes,
        max_cost: int,
    ) -> Tuple[bytes, int]:
        """
        Contract-shaped validation entry point.

        Returns:
            ``(context, validation_data)``; a signer mismatch yields an empty
            context and validation data flagged as failed

        Raises:
            UnauthorizedError: If the caller is not the EntryPoint
            PaymasterError: For any fatal validation outcome
        """
        self._require_entry_point(caller)
        self.logger.debug("Validating op 0x%s for paymaster %s", bytes(user_op_hash).hex()[:8], self._address)
        outcome = self.validate(user_op, max_cost)
        if isinstance(outcome, Fatal):
            raise outcome.error
        if isinstance(outcome, SignatureMismatch):
            return b"", outcome.validation_data
        return outcome.context, outcome.validation_data

    def _validate(self, user_op: UserOperation, max_cost: Optional[int]) -> ValidationOutcome:
        parsed = encoding.parse_paymaster_and_data(user_op.paymaster_and_data)
        if len(parsed.signature) != SIGNATURE_LENGTH:
            raise PaymasterDataError(
                f"VerifyingPaymaster: invalid signature length in paymasterAndData "
                f"(expected {SIGNATURE_LENGTH} bytes, got {len(parsed.signature)})"
            )

        digest = self.get_hash(user_op, parsed.paymaster_id, parsed.valid_until, parsed.valid_after)
        recovered = recover_signer(digest, parsed.signature)
        if recovered != self._verifying_signer:
            self.logger.info(
                "Signature for paymasterId %d recovered to %s, not the verifying signer",
                parsed.paymaster_id, recovered,
            )
            return SignatureMismatch(
                validation_data=encoding.pack_validation_data(True, parsed.valid_until, parsed.valid_after),
                recovered=recovered,
            )

        overhead = self.ledger.unaccounted_gas_overhead
        if parsed.post_op_gas_limit < overhead:
            raise PostOpGasError(
                f"TokenPaymaster: gas too low for postOp (limit {parsed.post_op_gas_limit}, need {overhead})"
            )

        if max_cost is None:
            max_cost = compute_max_cost(user_op, parsed)
        required = max_cost + overhead * user_op.max_fee_per_gas
        available = self.ledger.get_balance(parsed.paymaster_id)
        if required > available:
            raise InsufficientBalanceError(required=required, available=available)

        self.logger.debug(
            "Approved op from %s for paymasterId %d (prefund %d)",
            user_op.sender, parsed.paymaster_id, required,
        )
        return Approved(
            context=abi_encode(["uint48"], [parsed.paymaster_id]),
            validation_data=encoding.pack_validation_data(False, parsed.valid_until, parsed.valid_after),
            paymaster_id=parsed.paymaster_id,
            required_prefund=required,
        )

    # Settlement

    def post_op(
        self,
        caller: str,
        mode: PostOpMode,
        context: bytes,
        actual_gas_cost: int,
        actual_user_op_fee_per_gas: int,
    ) -> int:
        """
        Charge the identity recorded in ``context`` for an executed operation.

        The charge is the actual gas cost plus the unaccounted overhead priced
        at the actual fee per gas. It is applied whether the operation's call
        succeeded or reverted, since the gas was spent either way.

        Returns:
            The amount charged

        Raises:
            UnauthorizedError: If the caller is not the EntryPoint
            PaymasterDataError: If the context cannot be decoded
            InsufficientBalanceError: If the identity cannot cover the charge;
                the ledger is left unchanged
        """
        self._require_entry_point(caller)
        try:
            (paymaster_id,) = abi_decode(["uint48"], bytes(context))
        except DecodingError as e:
            raise PaymasterDataError(f"invalid postOp context: {e}") from e

        charge = actual_gas_cost + self.ledger.unaccounted_gas_overhead * actual_user_op_fee_per_gas
        self.ledger.debit(paymaster_id, charge)
        self.logger.info(
            "Settled op for paymasterId %d (mode %s): charged %d wei",
            paymaster_id, PostOpMode(mode).name, charge,
        )
        return charge

    def _require_entry_point(self, caller: str) -> None:
        if not Web3.is_address(caller) or Web3.to_checksum_address(caller) != self._entry_point:
            raise UnauthorizedError(caller, "Sender not EntryPoint")
