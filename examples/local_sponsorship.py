#!/usr/bin/env python3
"""
Example of sponsoring an operation end to end against the local models.

This example shows how to:
1. Fund a paymaster identity derived from a label
2. Sign a sponsorship with the trusted signer
3. Probe it with simulate_validation
4. Execute and settle it with handle_ops
"""
import logging
import os
import time

from paymaster_sdk import (
    EntryPoint,
    LocalSigner,
    SponsorService,
    UserOperation,
    VerifyingPaymaster,
    paymaster_id_from_label,
)

CHAIN_ID = 31337
PAYMASTER = "0xc49d6e93bB127A2FDf349FAdBD90De6853Bf40ff"
OWNER = "0x2345678901234567890123456789012345678901"
SENDER = "0x3456789012345678901234567890123456789012"
BENEFICIARY = "0x5678901234567890123456789012345678901234"


def main():
    logging.basicConfig(level=logging.INFO)

    signer = LocalSigner(os.environ.get("PRIVATE_KEY", "0x" + "01" * 32))
    print(f"Trusted signer: {signer.address}")

    entry_point = EntryPoint(chain_id=CHAIN_ID)
    paymaster = VerifyingPaymaster(PAYMASTER, entry_point.address, signer.address, OWNER, CHAIN_ID)
    entry_point.register_paymaster(paymaster)
    entry_point.deposit_to(paymaster.address, 10**18)

    paymaster_id = paymaster_id_from_label("example-dapp")
    paymaster.deposit_for(paymaster_id, 10**17)
    print(f"Funded paymasterId {paymaster_id} with {paymaster.get_balance(paymaster_id)} wei")

    op = UserOperation(sender=SENDER, callGasLimit=100_000, maxFeePerGas=2 * 10**9)
    service = SponsorService(signer, paymaster.address, CHAIN_ID)
    sponsored = service.sponsored_user_op(op, paymaster_id, valid_until=int(time.time()) + 600)

    info = entry_point.simulate_validation(sponsored).return_info
    print(f"Prefund reserved: {info.prefund} wei")

    (result,) = entry_point.handle_ops([sponsored], BENEFICIARY)
    print(f"Executed: success={result.success}, gas cost={result.actual_gas_cost} wei")
    print(f"Remaining balance: {paymaster.get_balance(paymaster_id)} wei")


if __name__ == "__main__":
    main()
