"""ContractUtility: Web3 initialization and contract loading from the registry."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any, Sequence

from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware

from .KeeperConfig import get_network

if TYPE_CHECKING:
    from web3.contract import Contract

    from .DeploymentRegistry import DeploymentRecord

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def same_address(a: str | None, b: str | None) -> bool:
    """Compare two addresses ignoring checksum casing.

    :param a: First address or None.
    :param b: Second address or None.
    :returns: True if both are set and refer to the same account.
    """
    if not a or not b:
        return False
    return a.lower() == b.lower()


def encode_call(target: Contract, method: str, args: Sequence[Any]) -> Any:
    """ABI-encode a contract call without touching the network.

    :param target: Contract the call is addressed to.
    :param method: Contract function name.
    :param args: Positional function arguments.
    :returns: Encoded call data.
    """
    return target.encode_abi(method, args=list(args))


class ContractUtility:
    """Utility for Web3 connection and contract instantiation.

    :ivar network: Network RPC URL.
    :ivar w3: Configured Web3 instance.
    """

    def __init__(self, network_name: str) -> None:
        """Initialize the contract utility.

        :param network_name: Name of the network to connect to.
        """
        network = get_network(network_name)
        # RPC_URL env var overrides the default for the network
        self.network = os.environ.get("RPC_URL") or network.rpc_url

        self.w3 = Web3(Web3.HTTPProvider(self.network))
        if network.poa:
            self.w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

    def get_contract(self, record: DeploymentRecord) -> Contract:
        """Instantiate a contract from a deployment record.

        Struct return values are decoded into named tuples so fields such as
        ``trusted`` can be read by name.

        :param record: Deployment record with address and ABI.
        :returns: Web3 contract instance.
        """
        return self.w3.eth.contract(
            address=Web3.to_checksum_address(record.address),
            abi=record.abi,
            decode_tuples=True,
        )
