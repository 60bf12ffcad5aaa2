"""Keeper: Main orchestrator for vault governance runs.

Wires the ledger, fee services, submitter, timelock and registry together
and exposes the operations the CLI runs:

    - run_migrations: install or migrate every configured strategy
    - upgrade_vault: point the vault beacon at the deployed implementation
    - rebalance: nudge a strategy when a dry run says it is needed
    - gas_price: report the fee the submitter would use
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from eth_account import Account
from eth_account.signers.local import LocalAccount

from .ContractUtility import ContractUtility
from .DeploymentRegistry import DeploymentRegistry
from .GasPriceOracle import GasPriceOracle
from .KeeperConfig import DEPLOYER_ROLE, MANAGER_ROLE, ConfigError, KeeperConfig
from .LedgerUtility import LedgerUtility
from .LedgerUtilityLocalnet import LedgerUtilityLocalnet
from .LedgerUtilityWeb3 import LedgerUtilityWeb3
from .MigrationPlanner import MigrationPlan
from .StrategyMigrator import StrategyMigrator
from .TimelockScheduler import ScheduledAction, TimelockScheduler
from .TxSubmitter import TxSubmitter
from .VaultUpgrader import VaultUpgrader
from .gas import BaseGasFetcher, get_available_gas_fetchers, get_gas_fetcher

if TYPE_CHECKING:
    from web3.contract import Contract
    from web3.types import TxReceipt

    from .DeploymentRegistry import DeploymentRecord

logger = logging.getLogger(__name__)

TIMELOCK_NAME = "ScionTimelock"
VAULT_FACTORY_NAME = "ScionVaultFactory"
BEACON_NAME = "UpgradeableBeacon"
VAULT_IMPLEMENTATION_NAME = "VaultUpgradable"

# Role -> environment variable holding its private key
ROLE_KEY_ENV = {
    DEPLOYER_ROLE: "DEPLOYER_PRIVATE_KEY",
    MANAGER_ROLE: "MANAGER_PRIVATE_KEY",
}


def load_accounts(roles: tuple[str, ...]) -> dict[str, LocalAccount]:
    """Load signer accounts for roles from environment variables.

    :param roles: Roles to look up.
    :returns: Dict mapping role to account, for roles with a key set.
    """
    accounts = {}
    for role in roles:
        key = os.environ.get(ROLE_KEY_ENV.get(role, f"{role.upper()}_PRIVATE_KEY"))
        if key:
            accounts[role] = Account.from_key(key)
    return accounts


class Keeper:
    """Main orchestrator for keeper runs.

    :ivar config: Keeper configuration.
    :ivar ledger: Ledger utility holding the signers.
    :ivar registry: Deployment registry for the configured network.
    :ivar gas_oracle: Fee oracle.
    :ivar submitter: Transaction submitter.
    """

    def __init__(
        self,
        config: KeeperConfig,
        sources: list[str] | None = None,
        api_keys: dict[str, str] | None = None,
        ledger: LedgerUtility | None = None,
        contract_factory: Callable[[DeploymentRecord], Contract] | None = None,
    ) -> None:
        """Initialize the keeper.

        :param config: Keeper configuration.
        :param sources: Fee services to query (default: all registered).
        :param api_keys: Dict mapping fee service names to API keys.
        :param ledger: Optional ledger utility. Built from the network if not
            provided.
        :param contract_factory: Optional contract builder. Uses the network's
            Web3 instance if not provided.
        :raises ConfigError: If a fee source is unknown or a live network has
            no signer keys.
        """
        self.config = config
        api_keys = api_keys or {}

        available = get_available_gas_fetchers()
        sources = sources if sources is not None else available
        invalid = [s for s in sources if s not in available]
        if invalid:
            raise ConfigError(f"Unknown fee sources: {invalid}. Available: {available}")

        if ledger is None or contract_factory is None:
            contract_utility = ContractUtility(config.network)
            if ledger is None:
                ledger = self._create_ledger(contract_utility)
            if contract_factory is None:
                contract_factory = contract_utility.get_contract
        self.ledger = ledger
        self.contract_factory = contract_factory

        self.fetchers: dict[str, BaseGasFetcher] = {
            source: get_gas_fetcher(
                source, api_key=api_keys.get(source), timeout=config.fee_timeout
            )
            for source in sources
        }
        self.gas_oracle = GasPriceOracle(
            self.fetchers, self.ledger, fetch_timeout=config.fee_timeout
        )
        self.submitter = TxSubmitter(config, self.ledger, self.gas_oracle)
        self.registry = DeploymentRegistry(config.deployments_dir, config.network)

        self._scheduler: TimelockScheduler | None = None
        self._migrator: StrategyMigrator | None = None

        logger.info(
            f"Keeper initialized: network={config.network}, "
            f"fee_chain={config.fee_chain or 'none'}, live={config.is_live}, "
            f"sources={sources}"
        )

    def _create_ledger(self, contract_utility: ContractUtility) -> LedgerUtility:
        accounts = load_accounts(self.config.roles)
        if not self.config.is_live:
            return LedgerUtilityLocalnet(
                contract_utility.w3,
                accounts,
                fallback_gas_limit=self.config.fallback_gas_limit,
            )
        if not accounts:
            raise ConfigError(
                f"No signer keys configured for {self.config.network}; set "
                f"{', '.join(ROLE_KEY_ENV.values())}"
            )
        return LedgerUtilityWeb3(
            contract_utility.w3,
            accounts,
            fallback_gas_limit=self.config.fallback_gas_limit,
        )

    @property
    def scheduler(self) -> TimelockScheduler:
        """Timelock scheduler for the network's timelock deployment.

        :raises DeploymentNotFoundError: If the timelock is not deployed.
        """
        if self._scheduler is None:
            timelock = self.contract_factory(self.registry.get(TIMELOCK_NAME))
            self._scheduler = TimelockScheduler(
                self.config, timelock, self.submitter, self.ledger
            )
        return self._scheduler

    @property
    def migrator(self) -> StrategyMigrator:
        if self._migrator is None:
            self._migrator = StrategyMigrator(
                self.config,
                self.registry,
                self.ledger,
                self.submitter,
                self.scheduler,
                self.contract_factory,
            )
        return self._migrator

    async def gas_price(self, tier: str = "normal") -> int:
        """Fee the submitter would use for a call in the given tier."""
        return await self.gas_oracle.get_fee_price(self.config.fee_chain, tier)

    async def run_migrations(
        self,
        vault_name: str,
        candidates_dir: str | Path,
        symbols: list[str] | None = None,
    ) -> dict[str, MigrationPlan]:
        """Install or migrate strategies to their freshly deployed records.

        Candidates are read from a registry rooted at candidates_dir (the
        deploy tooling's output); the keeper's own registry holds what is
        currently live.

        :param vault_name: Registry name of the vault.
        :param candidates_dir: Root of the candidate deployments.
        :param symbols: Strategies to process (default: every candidate).
        :returns: Dict mapping symbol to the executed plan.
        :raises MigrationError: If a required step reverts.
        """
        vault = self.contract_factory(self.registry.get(vault_name))
        candidates = DeploymentRegistry(candidates_dir, self.config.network)
        if symbols is None:
            symbols = candidates.names()

        plans: dict[str, MigrationPlan] = {}
        for symbol in symbols:
            candidate = candidates.get(symbol)
            previous = self.registry.get_or_none(symbol)
            if previous is None:
                logger.info(f"New deployment of {symbol}")
            plans[symbol] = await self.migrator.plan_and_execute(vault, candidate, previous)

        summary = ", ".join(f"{s}={p.action.value}" for s, p in plans.items())
        logger.info(f"Migration run complete: {summary or 'nothing to do'}")
        return plans

    async def upgrade_vault(self) -> ScheduledAction | None:
        """Upgrade the vault beacon to the deployed implementation.

        :returns: The scheduled action, or None if already up to date.
        """
        factory = self.contract_factory(self.registry.get(VAULT_FACTORY_NAME))
        beacon = self.contract_factory(self.registry.get(BEACON_NAME))
        implementation = self.registry.get(VAULT_IMPLEMENTATION_NAME)

        if not self.config.is_live:
            # Local forks may still have the beacon owned by the deployer
            await self.migrator.ensure_owner(beacon, self.scheduler.timelock.address)

        return await VaultUpgrader(self.scheduler).upgrade_implementation(
            factory, beacon, implementation
        )

    async def rebalance(self, symbol: str) -> TxReceipt | None:
        """Rebalance a strategy if a dry run says it is necessary.

        :param symbol: Strategy registry name.
        :returns: Receipt, or None if no rebalance was needed.
        """
        strategy = self.contract_factory(self.registry.get(symbol))
        return await self.submitter.submit_if_needed(
            strategy, "rebalance", [], role=MANAGER_ROLE, tier="fast"
        )

    async def close(self) -> None:
        """Release the shared HTTP client."""
        await BaseGasFetcher.close_shared_client()
