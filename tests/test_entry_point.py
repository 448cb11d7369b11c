"""
Tests for the EntryPoint model driving the paymaster.
"""
import pytest
from web3 import Web3

from paymaster_sdk.entry_point import EntryPoint
from paymaster_sdk.exceptions import FailedOp
from paymaster_sdk.paymaster import VerifyingPaymaster
from conftest import (
    ETHER, FUNDED_ID, GWEI, TEST_BENEFICIARY, TEST_CHAIN_ID, TEST_OTHER_SENDER, TEST_OWNER, TEST_PAYMASTER,
    UNFUNDED_ID, VALID_AFTER, VALID_UNTIL,
)

# preVerificationGas + verificationGasLimit + callGasLimit of the user_op fixture
GAS_USED = 21_000 + 150_000 + 100_000
PREFUND = (GAS_USED + 300_000 + 20_000) * GWEI
OVERHEAD_CHARGE = 12_000 * GWEI


def _sponsor(service, user_op, paymaster_id=FUNDED_ID, valid_until=VALID_UNTIL, valid_after=VALID_AFTER):
    return service.sponsored_user_op(user_op, paymaster_id, valid_until, valid_after)


def test_register_paymaster_checks_binding(verifier):
    other = VerifyingPaymaster(TEST_PAYMASTER, "0x" + "77" * 20, verifier.address, TEST_OWNER, TEST_CHAIN_ID)
    ep = EntryPoint(chain_id=TEST_CHAIN_ID)
    with pytest.raises(ValueError, match="bound to EntryPoint"):
        ep.register_paymaster(other)


def test_deposit_to_requires_positive_amount(entry_point):
    with pytest.raises(ValueError):
        entry_point.deposit_to(TEST_PAYMASTER, 0)


def test_get_nonce_encodes_key(entry_point, user_op):
    assert entry_point.get_nonce(user_op.sender) == 0
    assert entry_point.get_nonce(user_op.sender, key=3) == 3 << 64


def test_simulate_validation_success(entry_point, paymaster, sponsor_service, user_op):
    op = _sponsor(sponsor_service, user_op)
    info = entry_point.simulate_validation(op).return_info

    assert info.prefund == PREFUND
    assert info.pre_op_gas == 21_000 + 150_000
    assert info.paymaster_validation_data & 1 == 0
    assert info.paymaster_context
    # Nothing committed
    assert entry_point.get_nonce(op.sender) == 0
    assert entry_point.balance_of(paymaster.address) == ETHER


def test_simulate_validation_reports_signature_failure(entry_point, rogue_service, user_op):
    """The dry run returns the failure flag instead of reverting"""
    info = entry_point.simulate_validation(_sponsor(rogue_service, user_op)).return_info
    assert info.paymaster_validation_data & 1 == 1
    assert info.paymaster_context == b""


def test_simulate_validation_does_not_enforce_window(entry_point, sponsor_service, user_op):
    op = _sponsor(sponsor_service, user_op, valid_until=100, valid_after=50)
    info = entry_point.simulate_validation(op).return_info
    assert info.paymaster_validation_data >> 208 == 50


def test_simulate_validation_revert(entry_point, sponsor_service, user_op):
    with pytest.raises(FailedOp) as exc_info:
        entry_point.simulate_validation(_sponsor(sponsor_service, user_op, UNFUNDED_ID))
    assert exc_info.value.op_index == 0
    assert exc_info.value.reason.startswith("AA33 reverted: Insufficient balance in paymasterId")


def test_handle_ops_settles(entry_point, paymaster, sponsor_service, user_op):
    op = _sponsor(sponsor_service, user_op)
    (result,) = entry_point.handle_ops([op], TEST_BENEFICIARY)

    gas_cost = GAS_USED * GWEI
    assert result.success
    assert result.actual_gas_used == GAS_USED
    assert result.actual_gas_cost == gas_cost
    assert result.user_op_hash == entry_point.user_op_hash(op)
    # Identity charged for cost plus overhead
    assert paymaster.get_balance(FUNDED_ID) == 2 * ETHER - gas_cost - OVERHEAD_CHARGE
    # Paymaster stake refunded down to the actual cost
    assert entry_point.balance_of(paymaster.address) == ETHER - gas_cost
    assert entry_point.balance_of(TEST_BENEFICIARY) == gas_cost
    assert entry_point.get_nonce(op.sender) == 1


def test_handle_ops_replay_rejected(entry_point, sponsor_service, user_op):
    op = _sponsor(sponsor_service, user_op)
    entry_point.handle_ops([op], TEST_BENEFICIARY)
    with pytest.raises(FailedOp, match="AA25 invalid account nonce"):
        entry_point.handle_ops([op], TEST_BENEFICIARY)


def test_handle_ops_wrong_signer(entry_point, rogue_service, user_op):
    with pytest.raises(FailedOp) as exc_info:
        entry_point.handle_ops([_sponsor(rogue_service, user_op)], TEST_BENEFICIARY)
    assert exc_info.value.reason == "AA34 signature error"


def test_handle_ops_not_due(entry_point, sponsor_service, user_op):
    op = _sponsor(sponsor_service, user_op)
    with pytest.raises(FailedOp, match="AA32 paymaster expired or not due"):
        entry_point.handle_ops([op], TEST_BENEFICIARY, now=VALID_AFTER - 1)


def test_handle_ops_expired(entry_point, sponsor_service, user_op):
    op = _sponsor(sponsor_service, user_op)
    with pytest.raises(FailedOp, match="AA32"):
        entry_point.handle_ops([op], TEST_BENEFICIARY, now=VALID_UNTIL + 1)


def test_handle_ops_window_bounds_inclusive(entry_point, sponsor_service, user_op):
    op = _sponsor(sponsor_service, user_op)
    entry_point.handle_ops([op], TEST_BENEFICIARY, now=VALID_UNTIL)


def test_handle_ops_inverted_window(entry_point, sponsor_service, user_op):
    op = _sponsor(sponsor_service, user_op, valid_until=5_000, valid_after=20_000)
    with pytest.raises(FailedOp, match="AA32"):
        entry_point.handle_ops([op], TEST_BENEFICIARY, now=10_000)


def test_handle_ops_no_expiry(entry_point, sponsor_service, user_op):
    op = _sponsor(sponsor_service, user_op, valid_until=0, valid_after=0)
    (result,) = entry_point.handle_ops([op], TEST_BENEFICIARY, now=2**40)
    assert result.success


def test_handle_ops_unknown_paymaster(entry_point, user_op):
    op = user_op.with_paymaster_and_data(bytes.fromhex("77" * 20) + b"\x00" * 32)
    with pytest.raises(FailedOp, match="AA30"):
        entry_point.handle_ops([op], TEST_BENEFICIARY)


def test_handle_ops_short_paymaster_and_data(entry_point, user_op):
    with pytest.raises(FailedOp, match="AA93"):
        entry_point.handle_ops([user_op.with_paymaster_and_data(b"\x01" * 30)], TEST_BENEFICIARY)


def test_handle_ops_deposit_too_low(paymaster, sponsor_service, user_op):
    ep = EntryPoint(chain_id=TEST_CHAIN_ID, clock=lambda: 10_000)
    ep.register_paymaster(paymaster)
    ep.deposit_to(paymaster.address, PREFUND - 1)
    with pytest.raises(FailedOp, match="AA31 paymaster deposit too low"):
        ep.handle_ops([_sponsor(sponsor_service, user_op)], TEST_BENEFICIARY)


def test_handle_ops_rolls_back_batch(entry_point, paymaster, sponsor_service, rogue_service, user_op):
    """One bad operation reverts the whole batch"""
    good = _sponsor(sponsor_service, user_op)
    bad = _sponsor(rogue_service, user_op.model_copy(update={"sender": Web3.to_checksum_address(TEST_OTHER_SENDER)}))

    with pytest.raises(FailedOp) as exc_info:
        entry_point.handle_ops([good, bad], TEST_BENEFICIARY)

    assert exc_info.value.op_index == 1
    assert entry_point.get_nonce(good.sender) == 0
    assert entry_point.balance_of(paymaster.address) == ETHER
    assert paymaster.get_balance(FUNDED_ID) == 2 * ETHER


def test_handle_ops_batch(entry_point, paymaster, sponsor_service, user_op):
    first = _sponsor(sponsor_service, user_op)
    second = _sponsor(sponsor_service, user_op.model_copy(update={"nonce": 1}))
    results = entry_point.handle_ops([first, second], TEST_BENEFICIARY)
    assert [r.success for r in results] == [True, True]
    assert entry_point.get_nonce(user_op.sender) == 2
    assert entry_point.balance_of(TEST_BENEFICIARY) == 2 * GAS_USED * GWEI


def test_handle_ops_reverted_call_still_charged(paymaster, sponsor_service, user_op):
    def executor(op):
        raise RuntimeError("execution reverted")

    ep = EntryPoint(chain_id=TEST_CHAIN_ID, executor=executor, clock=lambda: 10_000)
    ep.register_paymaster(paymaster)
    ep.deposit_to(paymaster.address, ETHER)

    (result,) = ep.handle_ops([_sponsor(sponsor_service, user_op)], TEST_BENEFICIARY)
    assert not result.success
    assert result.post_op_revert_reason is None
    assert paymaster.get_balance(FUNDED_ID) == 2 * ETHER - GAS_USED * GWEI - OVERHEAD_CHARGE


def test_handle_ops_executor_gas_used(paymaster, sponsor_service, user_op):
    ep = EntryPoint(chain_id=TEST_CHAIN_ID, executor=lambda op: 40_000, base_fee=0, clock=lambda: 10_000)
    ep.register_paymaster(paymaster)
    ep.deposit_to(paymaster.address, ETHER)
    (result,) = ep.handle_ops([_sponsor(sponsor_service, user_op)], TEST_BENEFICIARY)
    assert result.actual_gas_used == 21_000 + 150_000 + 40_000


def test_handle_ops_settlement_shortfall(paymaster, sponsor_service, user_op):
    """Funds drained during execution make settlement fail without touching the ledger"""
    def drain(op):
        paymaster.withdraw_to(TEST_OWNER, TEST_BENEFICIARY, paymaster.get_balance(FUNDED_ID), FUNDED_ID)
        return op.call_gas_limit

    ep = EntryPoint(chain_id=TEST_CHAIN_ID, executor=drain, clock=lambda: 10_000)
    ep.register_paymaster(paymaster)
    ep.deposit_to(paymaster.address, ETHER)

    (result,) = ep.handle_ops([_sponsor(sponsor_service, user_op)], TEST_BENEFICIARY)
    assert not result.success
    assert "Insufficient balance in paymasterId" in result.post_op_revert_reason
    assert paymaster.get_balance(FUNDED_ID) == 0


def test_handle_ops_account_validator(paymaster, sponsor_service, user_op):
    ep = EntryPoint(
        chain_id=TEST_CHAIN_ID,
        account_validator=lambda op, op_hash: 1,
        clock=lambda: 10_000,
    )
    ep.register_paymaster(paymaster)
    ep.deposit_to(paymaster.address, ETHER)
    with pytest.raises(FailedOp, match="AA24 signature error"):
        ep.handle_ops([_sponsor(sponsor_service, user_op)], TEST_BENEFICIARY)


def test_handle_ops_account_validator_raises(paymaster, sponsor_service, user_op):
    """A validator error on a later op reverts the ops already validated"""
    def validator(op, op_hash):
        if op.nonce == 1:
            raise RuntimeError("account code reverted")
        return 0

    ep = EntryPoint(chain_id=TEST_CHAIN_ID, account_validator=validator, clock=lambda: 10_000)
    ep.register_paymaster(paymaster)
    ep.deposit_to(paymaster.address, ETHER)
    first = _sponsor(sponsor_service, user_op)
    second = _sponsor(sponsor_service, user_op.model_copy(update={"nonce": 1}))

    with pytest.raises(FailedOp) as exc_info:
        ep.handle_ops([first, second], TEST_BENEFICIARY)

    assert exc_info.value.op_index == 1
    assert exc_info.value.reason == "AA23 reverted: account code reverted"
    assert ep.get_nonce(user_op.sender) == 0
    assert ep.balance_of(paymaster.address) == ETHER


def test_handle_ops_rolls_back_on_unexpected_error(entry_point, paymaster, sponsor_service, user_op, monkeypatch):
    first = _sponsor(sponsor_service, user_op)
    second = _sponsor(sponsor_service, user_op.model_copy(update={"nonce": 1}))
    original = entry_point._check_validation_data
    calls = []

    def check(index, *args):
        calls.append(index)
        if index == 1:
            raise ArithmeticError("unexpected")
        return original(index, *args)

    monkeypatch.setattr(entry_point, "_check_validation_data", check)
    with pytest.raises(ArithmeticError):
        entry_point.handle_ops([first, second], TEST_BENEFICIARY)

    assert 1 in calls
    assert entry_point.get_nonce(user_op.sender) == 0
    assert entry_point.balance_of(paymaster.address) == ETHER


def test_handle_ops_gas_values_overflow(entry_point, sponsor_service, user_op):
    op = _sponsor(sponsor_service, user_op).model_copy(update={"call_gas_limit": 1 << 128})
    with pytest.raises(FailedOp) as exc_info:
        entry_point.handle_ops([op], TEST_BENEFICIARY)
    assert exc_info.value.reason == "AA94 gas values overflow"
    assert entry_point.get_nonce(user_op.sender) == 0
