"""
Network configuration for the Paymaster SDK.

Network definitions ship with the package in ``networks.json``. RPC URLs and
paymaster addresses can be overridden per network through environment
variables named after the network (upper-cased, dashes replaced by
underscores), e.g. ``PAYMASTER_RPC_URL_BASE_SEPOLIA``.
"""
import importlib.resources
import json
import logging
import os
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def _env_suffix(network: str) -> str:
    return network.upper().replace("-", "_")


class NetworkConfig:
    """Access to the packaged network definitions."""

    _networks_cache: Optional[Dict[str, Dict[str, Any]]] = None

    @classmethod
    def load_networks(cls) -> Dict[str, Dict[str, Any]]:
        """
        Load all network definitions (cached after the first call)

        Returns:
            Mapping of network name to its configuration
        """
        if cls._networks_cache is None:
            resource = importlib.resources.files("paymaster_sdk").joinpath("networks.json")
            with resource.open("r", encoding="utf-8") as f:
                cls._networks_cache = json.load(f)
            logger.debug("Loaded %d network definitions", len(cls._networks_cache))
        return cls._networks_cache

    @classmethod
    def get_network(cls, network: str) -> Dict[str, Any]:
        """
        Get the configuration of one network

        Raises:
            ValueError: If the network is unknown
        """
        networks = cls.load_networks()
        if network not in networks:
            available = ", ".join(sorted(networks))
            raise ValueError(f"Unknown network: {network}. Available networks: {available}")
        return networks[network]

    @classmethod
    def get_chain_id(cls, network: str) -> int:
        return int(cls.get_network(network)["chainId"])

    @classmethod
    def get_rpc_url(cls, network: str, override: Optional[str] = None) -> str:
        """RPC URL for a network: explicit override, then environment, then the packaged value."""
        if override:
            return override
        env_value = os.environ.get(f"PAYMASTER_RPC_URL_{_env_suffix(network)}")
        if env_value:
            return env_value
        return cls.get_network(network)["rpc"]

    @classmethod
    def get_entry_point(cls, network: str) -> str:
        return cls.get_network(network)["entryPoint"]

    @classmethod
    def get_paymaster_address(cls, network: str) -> str:
        """
        Paymaster address for a network

        Raises:
            ValueError: If no paymaster is deployed on the network and no
                ``PAYMASTER_ADDRESS_<NETWORK>`` variable is set
        """
        env_value = os.environ.get(f"PAYMASTER_ADDRESS_{_env_suffix(network)}")
        if env_value:
            return env_value
        address = cls.get_network(network).get("verifyingPaymaster")
        if not address:
            raise ValueError(f"No verifying paymaster configured for network: {network}")
        return address
