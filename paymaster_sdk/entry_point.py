"""
EntryPoint model driving the verifying paymaster.

Implements the two call shapes a paymaster sees:

* ``simulate_validation``: a dry run that never commits anything and reports
  the paymaster's validation data as-is, signature failures included;
* ``handle_ops``: the committing path, which rejects signature failures and
  operations outside their validity window, executes the operations and
  settles them with the paymaster.

Any ``FailedOp`` raised while validating a batch rolls the whole batch back.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from web3 import Web3

from . import encoding
from .encoding import PAYMASTER_DATA_OFFSET, PAYMASTER_POSTOP_GAS_OFFSET, PAYMASTER_VALIDATION_GAS_OFFSET
from .exceptions import FailedOp, PaymasterDataError, PaymasterError
from .models import UserOperation
from .paymaster import PostOpMode, VerifyingPaymaster

logger = logging.getLogger(__name__)

DEFAULT_ENTRY_POINT_ADDRESS = "0x0000000071727De22E5E9d8BAf0edAc6f37da032"

# Executes the call of an operation and returns the gas it used
Executor = Callable[[UserOperation], int]
# Validates the account signature, returning packed validation data
AccountValidator = Callable[[UserOperation, bytes], int]


@dataclass(frozen=True)
class ReturnInfo:
    """Outcome of a successful validation dry run."""
    pre_op_gas: int
    prefund: int
    account_validation_data: int
    paymaster_validation_data: int
    paymaster_context: bytes


@dataclass(frozen=True)
class ValidationResult:
    return_info: ReturnInfo


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one operation in ``handle_ops``."""
    user_op_hash: bytes
    success: bool
    actual_gas_used: int
    actual_gas_cost: int
    post_op_revert_reason: Optional[str] = None


@dataclass
class _ValidatedOp:
    op: UserOperation
    op_hash: bytes
    paymaster: VerifyingPaymaster
    context: bytes
    prefund: int


class EntryPoint:
    """
    Singleton entry point for sponsored operations.

    Keeps per-sender nonces and per-paymaster deposits; paymasters must be
    registered before their operations can be handled.
    """

    def __init__(
        self,
        address: str = DEFAULT_ENTRY_POINT_ADDRESS,
        chain_id: int = 1,
        executor: Optional[Executor] = None,
        account_validator: Optional[AccountValidator] = None,
        base_fee: int = 0,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the EntryPoint

        Args:
            address: EntryPoint address
            chain_id: Chain id used in operation hashes
            executor: Runs an operation's call and returns the gas it used;
                defaults to charging the full call gas limit
            account_validator: Checks the account signature; defaults to
                accepting every operation
            base_fee: Block base fee used to price executed operations
            clock: Source of the current timestamp for window checks
            logger: Optional logger instance
        """
        self.address = Web3.to_checksum_address(address)
        self.chain_id = chain_id
        self.executor = executor or (lambda op: op.call_gas_limit)
        self.account_validator = account_validator
        self.base_fee = base_fee
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)

        self._deposits: Dict[str, int] = {}
        self._nonces: Dict[Tuple[str, int], int] = {}
        self._paymasters: Dict[str, VerifyingPaymaster] = {}

    # Deposits and nonces

    def register_paymaster(self, paymaster: VerifyingPaymaster) -> None:
        if paymaster.entry_point != self.address:
            raise ValueError(
                f"Paymaster {paymaster.address} is bound to EntryPoint {paymaster.entry_point}, not {self.address}"
            )
        self._paymasters[paymaster.address] = paymaster

    def deposit_to(self, account: str, amount: int) -> None:
        account = Web3.to_checksum_address(account)
        if amount <= 0:
            raise ValueError("Deposit amount must be positive")
        self._deposits[account] = self._deposits.get(account, 0) + amount

    def balance_of(self, account: str) -> int:
        return self._deposits.get(Web3.to_checksum_address(account), 0)

    def get_nonce(self, sender: str, key: int = 0) -> int:
        """Full nonce (key in the upper 192 bits, sequence in the lower 64)."""
        sequence = self._nonces.get((Web3.to_checksum_address(sender), key), 0)
        return (key << 64) | sequence

    def user_op_hash(self, user_op: UserOperation) -> bytes:
        return encoding.user_op_hash(user_op, self.address, self.chain_id)

    # Probe path

    def simulate_validation(self, user_op: UserOperation) -> ValidationResult:
        """
        Dry-run validation of a single operation.

        Nothing is committed: nonces, deposits and ledgers are unchanged
        afterwards. The paymaster validation data is returned even when it
        flags a signature failure, and the validity window is not enforced.

        Raises:
            FailedOp: If validation reverts (index 0)
        """
        validated, account_data, paymaster_data = self._validate_op(0, user_op, commit=False)
        return ValidationResult(return_info=ReturnInfo(
            pre_op_gas=user_op.pre_verification_gas + user_op.verification_gas_limit,
            prefund=validated.prefund,
            account_validation_data=account_data,
            paymaster_validation_data=paymaster_data,
            paymaster_context=validated.context,
        ))

    # Commit path

    def handle_ops(
        self,
        ops: List[UserOperation],
        beneficiary: str,
        now: Optional[int] = None,
    ) -> List[ExecutionResult]:
        """
        Validate, execute and settle a batch of operations.

        Args:
            ops: Operations to handle
            beneficiary: Address collecting the gas payments
            now: Block timestamp for window checks (defaults to the clock)

        Returns:
            One ExecutionResult per operation

        Raises:
            FailedOp: If any operation fails validation; nothing is committed
        """
        beneficiary = Web3.to_checksum_address(beneficiary)
        timestamp = int(self.clock()) if now is None else now

        saved_deposits = dict(self._deposits)
        saved_nonces = dict(self._nonces)
        try:
            validated_ops = []
            for index, op in enumerate(ops):
                validated, account_data, paymaster_data = self._validate_op(index, op, commit=True)
                self._check_validation_data(index, account_data, timestamp, "AA24", "AA22")
                self._check_validation_data(index, paymaster_data, timestamp, "AA34", "AA32")
                validated_ops.append(validated)
        except Exception as e:
            # Nothing from a failed batch survives, whatever the error
            self._deposits = saved_deposits
            self._nonces = saved_nonces
            self.logger.warning("handleOps reverted: %s", e)
            raise

        results = [self._execute(validated) for validated in validated_ops]
        collected = sum(result.actual_gas_cost for result in results)
        self._deposits[beneficiary] = self._deposits.get(beneficiary, 0) + collected
        self.logger.info("Handled %d ops, %d wei collected by %s", len(results), collected, beneficiary)
        return results

    # Internals

    def _validate_op(self, index: int, op: UserOperation, commit: bool) -> Tuple[_ValidatedOp, int, int]:
        blob = op.paymaster_and_data
        if not blob:
            raise FailedOp(index, "AA30 paymaster not deployed")
        if len(blob) < PAYMASTER_DATA_OFFSET:
            raise FailedOp(index, "AA93 invalid paymasterAndData")

        paymaster_address = Web3.to_checksum_address(blob[:PAYMASTER_VALIDATION_GAS_OFFSET])
        paymaster = self._paymasters.get(paymaster_address)
        if paymaster is None:
            raise FailedOp(index, "AA30 paymaster not deployed")

        try:
            encoding.check_user_op_ranges(op)
        except PaymasterDataError as e:
            raise FailedOp(index, "AA94 gas values overflow") from e

        key, sequence = op.nonce >> 64, op.nonce & ((1 << 64) - 1)
        nonce_key = (op.sender, key)
        if self._nonces.get(nonce_key, 0) != sequence:
            raise FailedOp(index, "AA25 invalid account nonce")

        verification_gas = int.from_bytes(blob[PAYMASTER_VALIDATION_GAS_OFFSET:PAYMASTER_POSTOP_GAS_OFFSET], "big")
        post_op_gas = int.from_bytes(blob[PAYMASTER_POSTOP_GAS_OFFSET:PAYMASTER_DATA_OFFSET], "big")
        prefund = (
            op.call_gas_limit + op.verification_gas_limit + op.pre_verification_gas
            + verification_gas + post_op_gas
        ) * op.max_fee_per_gas

        op_hash = self.user_op_hash(op)
        account_data = 0
        if self.account_validator:
            try:
                account_data = self.account_validator(op, op_hash)
            except Exception as e:
                raise FailedOp(index, f"AA23 reverted: {e}") from e

        deposit = self._deposits.get(paymaster.address, 0)
        if deposit < prefund:
            raise FailedOp(index, "AA31 paymaster deposit too low")

        try:
            context, paymaster_data = paymaster.validate_paymaster_user_op(self.address, op, op_hash, prefund)
        except PaymasterError as e:
            raise FailedOp(index, f"AA33 reverted: {e}") from e

        if commit:
            self._deposits[paymaster.address] = deposit - prefund
            self._nonces[nonce_key] = sequence + 1

        return _ValidatedOp(op, op_hash, paymaster, context, prefund), account_data, paymaster_data

    @staticmethod
    def _check_validation_data(index: int, validation_data: int, now: int, sig_code: str, window_code: str) -> None:
        data = encoding.parse_validation_data(validation_data)
        if int(data.aggregator, 16) != 0:
            raise FailedOp(index, f"{sig_code} signature error")
        # An inverted window (validAfter > validUntil) can never be satisfied
        if now < data.valid_after or now > data.valid_until:
            prefix = "" if sig_code == "AA24" else "paymaster "
            raise FailedOp(index, f"{window_code} {prefix}expired or not due")

    def _execute(self, validated: _ValidatedOp) -> ExecutionResult:
        op = validated.op
        try:
            call_gas = min(self.executor(op), op.call_gas_limit)
            mode = PostOpMode.OP_SUCCEEDED
        except Exception as e:
            # A reverting call still consumes its whole call gas limit
            self.logger.warning("Execution of op from %s reverted: %s", op.sender, e)
            call_gas = op.call_gas_limit
            mode = PostOpMode.OP_REVERTED

        fee_per_gas = min(op.max_fee_per_gas, op.max_priority_fee_per_gas + self.base_fee)
        gas_used = op.pre_verification_gas + op.verification_gas_limit + call_gas
        gas_cost = gas_used * fee_per_gas

        revert_reason = None
        if validated.context:
            try:
                validated.paymaster.post_op(self.address, mode, validated.context, gas_cost, fee_per_gas)
            except PaymasterError as e:
                revert_reason = str(e)
                self.logger.error("postOp reverted for op from %s: %s", op.sender, e)

        paymaster_address = validated.paymaster.address
        refund = max(validated.prefund - gas_cost, 0)
        self._deposits[paymaster_address] = self._deposits.get(paymaster_address, 0) + refund

        return ExecutionResult(
            user_op_hash=validated.op_hash,
            success=mode == PostOpMode.OP_SUCCEEDED and revert_reason is None,
            actual_gas_used=gas_used,
            actual_gas_cost=min(gas_cost, validated.prefund),
            post_op_revert_reason=revert_reason,
        )
