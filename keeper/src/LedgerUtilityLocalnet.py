"""LedgerUtilityLocalnet: Ledger utility for local forks and hardhat nodes."""

from __future__ import annotations

import logging
import os

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3

from .KeeperConfig import DEPLOYER_ROLE, MANAGER_ROLE
from .LedgerUtilityWeb3 import LedgerUtilityWeb3

logger = logging.getLogger(__name__)

# Well-known hardhat test accounts #0 and #1
LOCALNET_KEYS = {
    DEPLOYER_ROLE: "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80",
    MANAGER_ROLE: "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d",
}


class LedgerUtilityLocalnet(LedgerUtilityWeb3):
    """Ledger implementation for local development networks.

    Falls back to the hardhat test keys for any role without an explicit
    key, and supports fast-forwarding time for timelock execution.
    """

    def __init__(
        self,
        w3: Web3 | None = None,
        accounts: dict[str, LocalAccount] | None = None,
        fallback_gas_limit: int = 3_000_000,
    ) -> None:
        """Initialize the localnet utility.

        :param w3: Optional Web3 instance. Creates default if not provided.
        :param accounts: Optional role accounts overriding the test keys.
        :param fallback_gas_limit: Gas limit used when estimation reverts.
        """
        if w3 is None:
            rpc_url = os.environ.get("RPC_URL", "http://localhost:8545")
            w3 = Web3(Web3.HTTPProvider(rpc_url))

        merged: dict[str, LocalAccount] = {
            role: Account.from_key(key) for role, key in LOCALNET_KEYS.items()
        }
        merged.update(accounts or {})
        super().__init__(w3, merged, fallback_gas_limit=fallback_gas_limit)

    def increase_time(self, seconds: int) -> None:
        """Fast-forward the node clock and mine a block."""
        logger.info(f"Fast-forwarding ledger time by {seconds}s")
        self.w3.provider.make_request("evm_increaseTime", [int(seconds)])
        self.w3.provider.make_request("evm_mine", [])
