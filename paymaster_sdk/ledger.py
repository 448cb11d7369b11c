"""
Per-identity deposit ledger of the verifying paymaster.

Funds deposited with the paymaster are partitioned by paymaster identity.
Balances only grow through ``deposit_for`` and only shrink through
``withdraw_to`` (owner only) or settlement after an operation (``debit``).
No operation ever drives a balance below zero.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from web3 import Web3

from .encoding import UINT48_MAX, ZERO_ADDRESS
from .exceptions import InsufficientBalanceError, UnauthorizedError, ZeroValueError

logger = logging.getLogger(__name__)

DEFAULT_UNACCOUNTED_GAS_OVERHEAD = 12_000


@dataclass(frozen=True)
class LedgerEvent:
    """An event emitted by the ledger, named after its on-chain counterpart."""
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LedgerSnapshot:
    """Opaque copy of the ledger state, used to roll back a failed batch."""
    balances: Tuple[Tuple[int, int], ...]
    transfers: Tuple[Tuple[str, int], ...]
    events: Tuple[LedgerEvent, ...]
    unaccounted_gas_overhead: int
    owner: str


def _checksum(address: str) -> str:
    if not isinstance(address, str) or not Web3.is_address(address):
        raise ValueError(f"Invalid address: {address!r}")
    return Web3.to_checksum_address(address)


def _require_amount(amount: int) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
        raise ValueError(f"Amount must be a non-negative integer, got {amount!r}")


def _require_identity(paymaster_id: int) -> None:
    if not isinstance(paymaster_id, int) or isinstance(paymaster_id, bool) or paymaster_id < 0 \
            or paymaster_id > UINT48_MAX:
        raise ValueError(f"Paymaster id must be a uint48, got {paymaster_id!r}")


class PaymasterLedger:
    """
    Balance store keyed by paymaster identity.

    Mutations are serialized with a re-entrant lock; reads of a single
    balance need no lock.
    """

    def __init__(
        self,
        owner: str,
        unaccounted_gas_overhead: int = DEFAULT_UNACCOUNTED_GAS_OVERHEAD,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the ledger

        Args:
            owner: Address allowed to withdraw and change the gas overhead
            unaccounted_gas_overhead: Gas added to cost projections to cover
                work the EntryPoint does not meter (settlement itself)
            logger: Optional logger instance
        """
        _require_amount(unaccounted_gas_overhead)
        self._owner = _checksum(owner)
        self._unaccounted_gas_overhead = unaccounted_gas_overhead
        self._balances: Dict[int, int] = {}
        self._transfers: Dict[str, int] = {}
        self._events: List[LedgerEvent] = []
        self._lock = threading.RLock()
        self.logger = logger or logging.getLogger(__name__)

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def unaccounted_gas_overhead(self) -> int:
        return self._unaccounted_gas_overhead

    @property
    def events(self) -> List[LedgerEvent]:
        """Events emitted so far, oldest first."""
        with self._lock:
            return list(self._events)

    def transferred_to(self, destination: str) -> int:
        """Total amount withdrawn to ``destination``."""
        return self._transfers.get(_checksum(destination), 0)

    def get_balance(self, paymaster_id: int) -> int:
        """
        Get the balance of a paymaster identity

        Args:
            paymaster_id: Paymaster identity

        Returns:
            Balance in wei (zero for unknown identities)
        """
        return self._balances.get(paymaster_id, 0)

    def deposit_for(self, paymaster_id: int, amount: int) -> None:
        """
        Credit ``amount`` wei to a paymaster identity.

        Raises:
            ZeroValueError: If the identity or the amount is zero
        """
        _require_identity(paymaster_id)
        _require_amount(amount)
        if paymaster_id == 0:
            raise ZeroValueError("Paymaster Id cannot be zero")
        if amount == 0:
            raise ZeroValueError("Deposit value cannot be zero")

        with self._lock:
            self._balances[paymaster_id] = self._balances.get(paymaster_id, 0) + amount
            self._emit("GasDeposited", paymasterId=paymaster_id, value=amount)
        self.logger.info("Deposited %d wei for paymasterId %d", amount, paymaster_id)

    def withdraw_to(self, caller: str, destination: str, amount: int, paymaster_id: int) -> None:
        """
        Withdraw ``amount`` wei of a paymaster identity to ``destination``.

        Args:
            caller: Address performing the call, must be the owner
            destination: Recipient of the funds
            amount: Amount in wei
            paymaster_id: Identity to debit

        Raises:
            UnauthorizedError: If the caller is not the owner
            ZeroValueError: If the destination is the zero address
            InsufficientBalanceError: If the identity holds less than ``amount``
        """
        self._require_owner(caller)
        destination = _checksum(destination)
        _require_amount(amount)
        _require_identity(paymaster_id)
        if destination == ZERO_ADDRESS:
            raise ZeroValueError("Withdraw address cannot be zero")

        with self._lock:
            balance = self._balances.get(paymaster_id, 0)
            if amount > balance:
                raise InsufficientBalanceError(required=amount, available=balance)
            self._balances[paymaster_id] = balance - amount
            self._transfers[destination] = self._transfers.get(destination, 0) + amount
            self._emit("GasWithdrawn", paymasterId=paymaster_id, to=destination, amount=amount)
        self.logger.info("Withdrew %d wei of paymasterId %d to %s", amount, paymaster_id, destination)

    def debit(self, paymaster_id: int, amount: int) -> None:
        """
        Charge the actual cost of an operation to a paymaster identity.

        Raises:
            InsufficientBalanceError: If the charge exceeds the balance; the
                balance is left untouched
        """
        _require_identity(paymaster_id)
        _require_amount(amount)
        with self._lock:
            balance = self._balances.get(paymaster_id, 0)
            if amount > balance:
                raise InsufficientBalanceError(required=amount, available=balance)
            self._balances[paymaster_id] = balance - amount
            self._emit("GasBalanceDeducted", paymasterId=paymaster_id, charge=amount)
        self.logger.debug("Charged %d wei to paymasterId %d", amount, paymaster_id)

    def set_unaccounted_gas_overhead(self, caller: str, value: int) -> None:
        """
        Change the gas overhead added to cost projections (owner only).

        Raises:
            UnauthorizedError: If the caller is not the owner
        """
        self._require_owner(caller)
        _require_amount(value)
        with self._lock:
            old_value = self._unaccounted_gas_overhead
            self._unaccounted_gas_overhead = value
            self._emit("EPGasOverheadChanged", oldValue=old_value, newValue=value)
        self.logger.info("Unaccounted gas overhead changed from %d to %d", old_value, value)

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        """
        Hand the owner role to another address.

        Raises:
            UnauthorizedError: If the caller is not the owner
            ZeroValueError: If ``new_owner`` is the zero address
        """
        self._require_owner(caller)
        new_owner = _checksum(new_owner)
        if new_owner == ZERO_ADDRESS:
            raise ZeroValueError("New owner cannot be zero")
        with self._lock:
            previous = self._owner
            self._owner = new_owner
            self._emit("OwnershipTransferred", previousOwner=previous, newOwner=new_owner)

    def snapshot(self) -> LedgerSnapshot:
        with self._lock:
            return LedgerSnapshot(
                balances=tuple(self._balances.items()),
                transfers=tuple(self._transfers.items()),
                events=tuple(self._events),
                unaccounted_gas_overhead=self._unaccounted_gas_overhead,
                owner=self._owner,
            )

    def restore(self, snapshot: LedgerSnapshot) -> None:
        with self._lock:
            self._balances = dict(snapshot.balances)
            self._transfers = dict(snapshot.transfers)
            self._events = list(snapshot.events)
            self._unaccounted_gas_overhead = snapshot.unaccounted_gas_overhead
            self._owner = snapshot.owner

    def _require_owner(self, caller: str) -> None:
        if _checksum(caller) != self._owner:
            raise UnauthorizedError(caller)

    def _emit(self, name: str, **args: Any) -> None:
        self._events.append(LedgerEvent(name=name, args=args))
