"""
PaymasterClient - RPC client for a deployed verifying paymaster.
"""
import logging
import urllib.parse
from typing import Any, Dict, Optional

from web3 import Web3
from web3.exceptions import Web3Exception
from web3.types import TxReceipt as Web3TxReceipt

from . import encoding
from .config import NetworkConfig
from .exceptions import TransactionError
from .models import TxReceipt, UserOperation
from .signer import LocalSigner, Signer
from .version import USER_AGENT

_PACKED_USER_OP_COMPONENTS = [
    {"internalType": "address", "name": "sender", "type": "address"},
    {"internalType": "uint256", "name": "nonce", "type": "uint256"},
    {"internalType": "bytes", "name": "initCode", "type": "bytes"},
    {"internalType": "bytes", "name": "callData", "type": "bytes"},
    {"internalType": "bytes32", "name": "accountGasLimits", "type": "bytes32"},
    {"internalType": "uint256", "name": "preVerificationGas", "type": "uint256"},
    {"internalType": "bytes32", "name": "gasFees", "type": "bytes32"},
    {"internalType": "bytes", "name": "paymasterAndData", "type": "bytes"},
    {"internalType": "bytes", "name": "signature", "type": "bytes"},
]


class PaymasterClient:
    """
    Client for a VerifyingPaymaster contract deployed on an EVM chain.

    Read calls need only an RPC endpoint; deposits, withdrawals and overhead
    changes also need a signer (withdrawals and overhead changes must come
    from the contract owner).
    """

    VERIFYING_PAYMASTER_ABI = [
        {
            "inputs": [{"internalType": "uint48", "name": "paymasterId", "type": "uint48"}],
            "name": "depositFor",
            "outputs": [],
            "stateMutability": "payable",
            "type": "function"
        },
        {
            "inputs": [
                {"internalType": "address payable", "name": "withdrawAddress", "type": "address"},
                {"internalType": "uint256", "name": "amount", "type": "uint256"},
                {"internalType": "uint48", "name": "paymasterId", "type": "uint48"}
            ],
            "name": "withdrawTo",
            "outputs": [],
            "stateMutability": "nonpayable",
            "type": "function"
        },
        {
            "inputs": [{"internalType": "uint48", "name": "paymasterId", "type": "uint48"}],
            "name": "getBalance",
            "outputs": [{"internalType": "uint256", "name": "balance", "type": "uint256"}],
            "stateMutability": "view",
            "type": "function"
        },
        {
            "inputs": [
                {"components": _PACKED_USER_OP_COMPONENTS, "internalType": "struct PackedUserOperation",
                 "name": "userOp", "type": "tuple"},
                {"internalType": "uint48", "name": "paymasterId", "type": "uint48"},
                {"internalType": "uint48", "name": "validUntil", "type": "uint48"},
                {"internalType": "uint48", "name": "validAfter", "type": "uint48"}
            ],
            "name": "getHash",
            "outputs": [{"internalType": "bytes32", "name": "", "type": "bytes32"}],
            "stateMutability": "view",
            "type": "function"
        },
        {
            "inputs": [{"internalType": "bytes", "name": "paymasterAndData", "type": "bytes"}],
            "name": "parsePaymasterAndData",
            "outputs": [
                {"internalType": "uint48", "name": "paymasterId", "type": "uint48"},
                {"internalType": "uint48", "name": "validUntil", "type": "uint48"},
                {"internalType": "uint48", "name": "validAfter", "type": "uint48"},
                {"internalType": "bytes", "name": "signature", "type": "bytes"}
            ],
            "stateMutability": "pure",
            "type": "function"
        },
        {
            "inputs": [],
            "name": "verifyingSigner",
            "outputs": [{"internalType": "address", "name": "", "type": "address"}],
            "stateMutability": "view",
            "type": "function"
        },
        {
            "inputs": [],
            "name": "unaccountedEPGasOverhead",
            "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
            "stateMutability": "view",
            "type": "function"
        },
        {
            "inputs": [{"internalType": "uint256", "name": "value", "type": "uint256"}],
            "name": "setUnaccountedEPGasOverhead",
            "outputs": [],
            "stateMutability": "nonpayable",
            "type": "function"
        }
    ]

    DEFAULT_GAS = 300000

    def __init__(
        self,
        rpc_url: str,
        paymaster_address: str,
        priv_key: Optional[str] = None,
        signer: Optional[Signer] = None,
        timeout: int = 30,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the PaymasterClient

        Args:
            rpc_url: Ethereum RPC endpoint URL
            paymaster_address: VerifyingPaymaster contract address
            priv_key: Private key for transactions (ignored if signer provided)
            signer: Custom signer object
            timeout: Timeout for RPC requests in seconds
            logger: Optional logger instance to use for debug/info logging

        Raises:
            ValueError: If the URL doesn't use https (unless it's localhost/127.0.0.1)
            ValueError: If the paymaster address is invalid
        """
        parsed = urllib.parse.urlparse(rpc_url)
        host = parsed.netloc.split(':')[0]
        is_local = host in ('localhost', '127.0.0.1')
        if parsed.scheme != 'https' and not is_local:
            raise ValueError(f"rpc_url must use https:// for security (got: {parsed.scheme}://)")
        if not Web3.is_address(paymaster_address):
            raise ValueError(f"Invalid paymaster address: {paymaster_address!r}")

        self.rpc_url = rpc_url
        self.paymaster_address = Web3.to_checksum_address(paymaster_address)
        self.logger = logger or logging.getLogger(__name__)

        if signer is None and priv_key:
            signer = LocalSigner(priv_key)
        self.signer = signer

        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        self.w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout, "headers": headers}))
        self.contract = self.w3.eth.contract(
            address=self.paymaster_address,
            abi=self.VERIFYING_PAYMASTER_ABI
        )

    @classmethod
    def from_network(cls, network: str, rpc_url: Optional[str] = None, **kwargs: Any) -> "PaymasterClient":
        """
        Create a client for a network defined in the packaged network configuration

        Args:
            network: Network name (e.g. "arbitrum-sepolia")
            rpc_url: Optional RPC URL overriding the configured one
            **kwargs: Passed through to the constructor
        """
        return cls(
            rpc_url=NetworkConfig.get_rpc_url(network, rpc_url),
            paymaster_address=NetworkConfig.get_paymaster_address(network),
            **kwargs
        )

    @property
    def address(self) -> str:
        """
        Get the signer address

        Raises:
            ValueError: If no signer is available
        """
        if not self.signer:
            raise ValueError("No signer available")
        return self.signer.address

    # Calls

    def get_balance(self, paymaster_id: int) -> int:
        return self.contract.functions.getBalance(paymaster_id).call()

    def verifying_signer(self) -> str:
        return self.contract.functions.verifyingSigner().call()

    def unaccounted_gas_overhead(self) -> int:
        return self.contract.functions.unaccountedEPGasOverhead().call()

    def get_hash(self, user_op: UserOperation, paymaster_id: int, valid_until: int, valid_after: int) -> bytes:
        """Ask the deployed contract for the hash the trusted signer must sign."""
        packed = (
            user_op.sender,
            user_op.nonce,
            user_op.init_code,
            user_op.call_data,
            user_op.account_gas_limits,
            user_op.pre_verification_gas,
            user_op.gas_fees,
            user_op.paymaster_and_data,
            user_op.signature,
        )
        return bytes(self.contract.functions.getHash(packed, paymaster_id, valid_until, valid_after).call())

    def parse_paymaster_and_data(self, paymaster_and_data: bytes) -> encoding.ParsedPaymasterData:
        """
        Parse ``paymasterAndData`` with the deployed contract.

        The address and gas limits are decoded locally; the contract only
        reports the payload fields.
        """
        paymaster_id, valid_until, valid_after, signature = (
            self.contract.functions.parsePaymasterAndData(bytes(paymaster_and_data)).call()
        )
        blob = bytes(paymaster_and_data)
        return encoding.ParsedPaymasterData(
            paymaster=Web3.to_checksum_address(blob[:encoding.PAYMASTER_VALIDATION_GAS_OFFSET]),
            verification_gas_limit=int.from_bytes(
                blob[encoding.PAYMASTER_VALIDATION_GAS_OFFSET:encoding.PAYMASTER_POSTOP_GAS_OFFSET], "big"
            ),
            post_op_gas_limit=int.from_bytes(
                blob[encoding.PAYMASTER_POSTOP_GAS_OFFSET:encoding.PAYMASTER_DATA_OFFSET], "big"
            ),
            paymaster_id=paymaster_id,
            valid_until=valid_until,
            valid_after=valid_after,
            signature=bytes(signature),
        )

    # Transactions

    def deposit_for(self, paymaster_id: int, amount_wei: int, **kwargs: Any) -> TxReceipt:
        """
        Deposit ``amount_wei`` for a paymaster identity

        Raises:
            ValueError: If the identity or the amount is zero
            TransactionError: If the transaction fails
        """
        if paymaster_id == 0:
            raise ValueError("Paymaster Id cannot be zero")
        if amount_wei <= 0:
            raise ValueError("Deposit value cannot be zero")
        return self._send_transaction(
            self.contract.functions.depositFor(paymaster_id), value=amount_wei, **kwargs
        )

    def withdraw_to(self, withdraw_address: str, amount_wei: int, paymaster_id: int, **kwargs: Any) -> TxReceipt:
        """
        Withdraw funds of a paymaster identity (owner only)

        Raises:
            ValueError: If the withdraw address is the zero address
            TransactionError: If the transaction fails
        """
        if not Web3.is_address(withdraw_address):
            raise ValueError(f"Invalid withdraw address: {withdraw_address!r}")
        withdraw_address = Web3.to_checksum_address(withdraw_address)
        if withdraw_address == encoding.ZERO_ADDRESS:
            raise ValueError("Withdraw address cannot be zero")
        return self._send_transaction(
            self.contract.functions.withdrawTo(withdraw_address, amount_wei, paymaster_id), **kwargs
        )

    def set_unaccounted_gas_overhead(self, value: int, **kwargs: Any) -> TxReceipt:
        return self._send_transaction(self.contract.functions.setUnaccountedEPGasOverhead(value), **kwargs)

    def _send_transaction(
        self,
        fn: Any,
        value: int = 0,
        gas: Optional[int] = None,
        gas_price_override: Optional[int] = None,
        poll_interval: Optional[float] = None,
        wait_for_receipt: bool = True
    ) -> TxReceipt:
        """
        Build, sign and send a contract transaction

        Args:
            fn: Bound contract function
            value: Wei to send with the call
            gas: Gas limit to use (if None, will be estimated)
            gas_price_override: Gas price to use (if None, will use current network price)
            poll_interval: How often to poll for receipt (in seconds, default=0.1)
            wait_for_receipt: Whether to wait for the transaction receipt

        Raises:
            TransactionError: If the transaction cannot be built, signed or sent
            Web3Exception: If the node rejects the call
        """
        if not self.signer:
            raise ValueError("No signer available")

        from_address = self.signer.address
        try:
            nonce = self.w3.eth.get_transaction_count(from_address)

            if gas is None:
                try:
                    gas = int(fn.estimate_gas({'from': from_address, 'value': value}) * 1.1)
                    self.logger.debug(f"Estimated gas: {gas}")
                except Web3Exception:
                    raise
                except Exception as e:
                    gas = self.DEFAULT_GAS
                    self.logger.warning(f"Gas estimation failed, using default: {gas}. Error: {e}")

            tx_params: Dict[str, Any] = {
                'from': from_address,
                'nonce': nonce,
                'gas': gas,
                'value': value,
                'gasPrice': gas_price_override if gas_price_override is not None else self.w3.eth.gas_price,
            }
            tx = fn.build_transaction(tx_params)

            try:
                signed_tx = self.signer.sign_transaction(tx)
            except Exception as e:
                self.logger.error(f"Transaction signing failed: {e}")
                raise TransactionError(f"Failed to sign transaction: {str(e)}") from e

            tx_hash = self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
            self.logger.info(f"Transaction sent: {tx_hash.hex()}")

            if not wait_for_receipt:
                return TxReceipt(
                    transactionHash=tx_hash.hex() if isinstance(tx_hash, bytes) else tx_hash,
                    blockNumber=0,
                    blockHash="0x" + "00" * 32,
                    status=0,
                    gasUsed=0,
                    logs=[]
                )

            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=120,
                poll_latency=poll_interval or 0.1
            )
            return self._convert_receipt(receipt)
        except (TransactionError, Web3Exception):
            raise
        except Exception as e:
            self.logger.error(f"Unexpected error while sending transaction: {e}")
            raise TransactionError(f"Transaction failed: {str(e)}") from e

    def _convert_receipt(self, web3_receipt: Web3TxReceipt) -> TxReceipt:
        """
        Convert Web3 receipt to our TxReceipt model
        """
        receipt_dict = dict(web3_receipt)

        for key, value in list(receipt_dict.items()):
            if isinstance(value, bytes):
                receipt_dict[key] = '0x' + value.hex()
        receipt_dict['logs'] = [dict(log) for log in receipt_dict.get('logs', [])]

        receipt = TxReceipt.model_validate(receipt_dict)
        if receipt.status != 1:
            raise TransactionError(f"Transaction {receipt.tx_hash} reverted")
        return receipt
