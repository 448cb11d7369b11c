"""
HTTP client for a hosted verifying-paymaster service.

The service holds the trusted signer key. Given an operation and a validity
window it answers with the signed paymaster payload, which the caller
attaches to the operation before submitting it.
"""
import logging
import urllib.parse
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from . import encoding
from ._rate_limited_log import rate_limited_log
from .exceptions import PaymasterApiError
from .models import UserOperation
from .service import DEFAULT_PAYMASTER_POST_OP_GAS_LIMIT, DEFAULT_PAYMASTER_VERIFICATION_GAS_LIMIT
from .version import USER_AGENT

VALIDATE_PATH = "/verifying-paymaster/validate"


def _uint48_hex(value: int) -> str:
    if value < 0 or value > encoding.UINT48_MAX:
        raise ValueError(f"Value does not fit in uint48: {value}")
    return "0x" + value.to_bytes(8, "big").hex()


class PaymasterApiClient:
    """
    Client for the ``/verifying-paymaster/validate`` endpoint.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        chain_id: int,
        paymaster_address: Optional[str] = None,
        extra_headers: Optional[Dict[str, str]] = None,
        retry_count: int = 3,
        timeout: int = 30,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the client

        Args:
            base_url: Service URL (https required unless localhost/127.0.0.1)
            api_key: API key sent in the ``apiKey`` header
            chain_id: Chain id sent in the ``x-project-chain-id`` header
            paymaster_address: Paymaster address, needed when the service
                answers with ``paymasterData`` only
            extra_headers: Additional headers (consumer routing headers, etc.)
            retry_count: Number of retries for 5xx responses and connection errors
            timeout: Timeout for HTTP requests in seconds
            logger: Optional logger instance

        Raises:
            ValueError: If the URL doesn't use https and is not local
            ValueError: If the API key is empty
        """
        parsed = urllib.parse.urlparse(base_url)
        host = parsed.netloc.split(':')[0]
        is_local = host in ('localhost', '127.0.0.1')
        if parsed.scheme != 'https' and not is_local:
            raise ValueError(f"base_url must use https:// for security (got: {parsed.scheme}://)")
        if not api_key:
            raise ValueError("api_key must be provided")

        self.base_url = base_url.rstrip('/')
        self.chain_id = chain_id
        self.paymaster_address = paymaster_address
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

        self._headers = {
            "apiKey": api_key,
            "x-project-chain-id": str(chain_id),
            "User-Agent": USER_AGENT,
            **(extra_headers or {}),
        }

        self.session = requests.Session()
        retries = Retry(
            total=retry_count,
            backoff_factor=0.5,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["POST"],
            raise_on_status=False,
            connect=retry_count,
            read=retry_count,
            other=retry_count
        )
        self.session.mount("http://", HTTPAdapter(max_retries=retries))
        self.session.mount("https://", HTTPAdapter(max_retries=retries))

    def validate(
        self,
        user_op: UserOperation,
        valid_until: int,
        valid_after: int,
        paymaster_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Request a sponsorship for ``user_op``

        Args:
            user_op: Operation to sponsor
            valid_until: Expiry timestamp (0 for no expiry)
            valid_after: Timestamp from which the sponsorship is usable
            paymaster_id: Identity to bill; the service picks one when omitted

        Returns:
            The ``result`` object of the response, containing
            ``paymasterData`` and/or ``paymasterAndData``

        Raises:
            PaymasterApiError: On transport errors, error responses, invalid
                JSON or a response without paymaster data
        """
        body: Dict[str, Any] = {
            "userOperation": user_op.to_rpc_dict(),
            "validUntil": _uint48_hex(valid_until),
            "validAfter": _uint48_hex(valid_after),
        }
        if paymaster_id is not None:
            body["paymasterId"] = _uint48_hex(paymaster_id)

        url = f"{self.base_url}{VALIDATE_PATH}"
        self.logger.debug(f"Requesting sponsorship for {user_op.sender} (nonce {user_op.nonce})")
        try:
            response = self.session.post(url, json=body, headers=self._headers, timeout=self.timeout)
        except requests.RequestException as e:
            rate_limited_log(f"Paymaster service unreachable at {self.base_url}: {e}", logger_instance=self.logger)
            raise PaymasterApiError(f"Paymaster request failed: {str(e)}") from e

        if response.status_code >= 500:
            rate_limited_log(
                f"Paymaster service at {self.base_url} returned {response.status_code}",
                logger_instance=self.logger,
            )
        if response.status_code >= 400:
            raise PaymasterApiError(
                f"Paymaster service returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise PaymasterApiError(f"Invalid JSON response from paymaster service: {str(e)}") from e

        result = payload.get("result") if isinstance(payload, dict) else None
        if not isinstance(result, dict) or not (result.get("paymasterAndData") or result.get("paymasterData")):
            raise PaymasterApiError(f"Missing paymaster data in response: {payload}")
        return result

    def sponsor_user_op(
        self,
        user_op: UserOperation,
        valid_until: int,
        valid_after: int,
        paymaster_id: Optional[int] = None,
    ) -> UserOperation:
        """
        Return ``user_op`` with the paymaster payload from the service attached.

        When the service answers with ``paymasterData`` only, it is prefixed
        with the configured paymaster address and the default paymaster gas
        limits.
        """
        result = self.validate(user_op, valid_until, valid_after, paymaster_id)
        if result.get("paymasterAndData"):
            blob = bytes.fromhex(result["paymasterAndData"].removeprefix("0x"))
        else:
            if not self.paymaster_address:
                raise PaymasterApiError("Service returned paymasterData only and no paymaster_address is configured")
            blob = encoding.pack_paymaster_and_data(
                self.paymaster_address,
                DEFAULT_PAYMASTER_VERIFICATION_GAS_LIMIT,
                DEFAULT_PAYMASTER_POST_OP_GAS_LIMIT,
                bytes.fromhex(result["paymasterData"].removeprefix("0x")),
            )
        return user_op.with_paymaster_and_data(blob)
