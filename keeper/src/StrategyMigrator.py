"""StrategyMigrator: Installs new strategies and migrates upgraded ones.

Invoked once per configured strategy per run. Every step is guarded by a
ledger read so the whole flow can be interrupted and re-run safely:

    1. Post-init checks: managers and vault back-reference on the strategy
    2. Archive the superseded registry record as "<symbol>-prev"
    3. Snapshot the vault and plan (see MigrationPlanner)
    4. INSTALL: trust the candidate and queue it for withdrawals
       MIGRATE: schedule vault.migrateStrategy through the timelock and settle
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING, Callable

from web3.types import TxReceipt

from .ContractUtility import same_address
from .DeploymentRegistry import archive_name
from .KeeperConfig import DEPLOYER_ROLE, MANAGER_ROLE, ConfigError
from .MigrationPlanner import LedgerSnapshot, MigrationPlan, PlanAction, plan_migration
from .TxSubmitter import is_success

if TYPE_CHECKING:
    from web3.contract import Contract

    from .DeploymentRegistry import DeploymentRecord, DeploymentRegistry
    from .KeeperConfig import KeeperConfig
    from .LedgerUtility import LedgerUtility
    from .TimelockScheduler import TimelockScheduler
    from .TxSubmitter import TxSubmitter

logger = logging.getLogger(__name__)


class MigrationError(Exception):
    """Raised when a required migration step reverts on-chain."""

    pass


class StrategyMigrator:
    """Decides and executes strategy installs and migrations.

    :ivar config: Keeper configuration.
    :ivar registry: Deployment registry for the target network.
    :ivar ledger: Ledger used to resolve signer addresses.
    :ivar submitter: Submitter for direct privileged calls.
    :ivar scheduler: Timelock scheduler for governed calls.
    :ivar contract_factory: Builds a contract from a deployment record.
    """

    def __init__(
        self,
        config: KeeperConfig,
        registry: DeploymentRegistry,
        ledger: LedgerUtility,
        submitter: TxSubmitter,
        scheduler: TimelockScheduler,
        contract_factory: Callable[[DeploymentRecord], Contract],
    ) -> None:
        self.config = config
        self.registry = registry
        self.ledger = ledger
        self.submitter = submitter
        self.scheduler = scheduler
        self.contract_factory = contract_factory

    async def plan_and_execute(
        self,
        vault: Contract,
        candidate: DeploymentRecord,
        previous: DeploymentRecord | None = None,
    ) -> MigrationPlan:
        """Bring one strategy up to its candidate deployment.

        :param vault: Vault contract.
        :param candidate: Deployment that should be active after this run.
        :param previous: Registry record current before this run, if any.
        :returns: The plan that was executed.
        :raises MigrationError: If a required call reverts.
        """
        symbol = candidate.name
        strategy = self.contract_factory(candidate)

        await self.init_strategy(vault, strategy, symbol)

        if previous is not None and not same_address(previous.address, candidate.address):
            archived = self.registry.save(archive_name(symbol), previous)
            self.registry.save(symbol, replace(candidate, predecessor=archived.name))
            logger.info(f"{symbol}: archived {previous.address} as {archived.name}")

        snapshot = self.read_snapshot(vault, candidate, previous)
        plan = plan_migration(snapshot)
        logger.info(f"{symbol}: {plan.action.value} ({plan.reason})")

        if plan.action is PlanAction.INSTALL:
            await self._install(vault, plan)
            self.registry.save(symbol, candidate)
        elif plan.action is PlanAction.MIGRATE:
            await self._migrate(vault, plan)

        return plan

    def read_snapshot(
        self,
        vault: Contract,
        candidate: DeploymentRecord,
        previous: DeploymentRecord | None,
    ) -> LedgerSnapshot:
        """Read the vault and registry state a plan depends on.

        :param vault: Vault contract.
        :param candidate: Candidate deployment.
        :param previous: Registry record current before this run, if any.
        :returns: LedgerSnapshot.
        """
        archived = None
        archived_vault = None
        archived_trusted = False
        if previous is not None:
            archived = self.registry.get_or_none(archive_name(candidate.name))
            if archived is not None and not same_address(archived.address, candidate.address):
                archived_vault = self.contract_factory(archived).functions.vault().call()
                archived_trusted = self._is_trusted(vault, archived.address)

        return LedgerSnapshot(
            symbol=candidate.name,
            vault=vault.address,
            candidate=candidate.address,
            previous=previous.address if previous is not None else None,
            archived=archived.address if archived is not None else None,
            archived_vault=archived_vault,
            candidate_trusted=self._is_trusted(vault, candidate.address),
            archived_trusted=archived_trusted,
            withdrawal_queue=tuple(vault.functions.getWithdrawalQueue().call()),
        )

    async def init_strategy(self, vault: Contract, strategy: Contract, symbol: str) -> None:
        """Grant manager roles and point the strategy at the vault.

        Only runs while the deployer still owns the strategy; once ownership
        moved to the timelock these calls have to be governed.
        """
        deployer = self.ledger.get_address(DEPLOYER_ROLE)
        owner = strategy.functions.owner().call()
        if not same_address(owner, deployer):
            logger.info(f"Deployer is not the owner of {symbol}, skipping role checks")
            return

        managers = [self.ledger.get_address(MANAGER_ROLE)]
        if self.config.team_address:
            managers.append(self.config.team_address)

        for manager in managers:
            if not strategy.functions.isManager(manager).call():
                receipt = await self.submitter.submit(
                    strategy, "setManager", [manager, True], role=DEPLOYER_ROLE
                )
                self._require(receipt, f"{symbol}.setManager({manager})")

        if not same_address(strategy.functions.vault().call(), vault.address):
            receipt = await self.submitter.submit(
                strategy, "setVault", [vault.address], role=DEPLOYER_ROLE
            )
            self._require(receipt, f"{symbol}.setVault")

    async def ensure_owner(self, contract: Contract, new_owner: str) -> TxReceipt | None:
        """Hand ownership of a contract to new_owner if we control it.

        :param contract: Ownable contract.
        :param new_owner: Desired owner.
        :returns: Receipt of the transfer, or None if nothing was sent.
        """
        owner = contract.functions.owner().call()
        if same_address(owner, new_owner):
            return None
        if same_address(owner, self.scheduler.timelock.address):
            logger.info(f"{contract.address} is owned by the timelock, not transferring")
            return None

        role = self._role_for(owner)
        if role is None:
            logger.warning(
                f"Cannot transfer ownership of {contract.address}: "
                f"owner {owner} is not one of our signers"
            )
            return None

        receipt = await self.submitter.submit(
            contract, "transferOwnership", [new_owner], role=role
        )
        self._require(receipt, f"transferOwnership({new_owner})")
        return receipt

    async def _install(self, vault: Contract, plan: MigrationPlan) -> None:
        if plan.needs_trust:
            receipt = await self.submitter.submit(
                vault, "trustStrategy", [plan.candidate], role=DEPLOYER_ROLE
            )
            self._require(receipt, f"{plan.symbol}: trustStrategy")

        if plan.needs_queue:
            receipt = await self.submitter.submit(
                vault, "pushToWithdrawalQueue", [plan.candidate], role=MANAGER_ROLE
            )
            self._require(receipt, f"{plan.symbol}: pushToWithdrawalQueue")

    async def _migrate(self, vault: Contract, plan: MigrationPlan) -> None:
        logger.info(
            f"{plan.symbol}: migrating {plan.previous} to {plan.candidate} "
            f"at withdrawal queue index {plan.index}"
        )
        action = await self.scheduler.schedule(
            vault, "migrateStrategy", [plan.previous, plan.candidate, plan.index]
        )
        if await self.scheduler.settle(action):
            logger.info(f"{plan.symbol}: migration executed")

    def _is_trusted(self, vault: Contract, address: str) -> bool:
        return bool(vault.functions.getStrategyData(address).call().trusted)

    def _role_for(self, address: str) -> str | None:
        for role in self.config.roles:
            try:
                if same_address(self.ledger.get_address(role), address):
                    return role
            except ConfigError:
                continue
        return None

    @staticmethod
    def _require(receipt: TxReceipt, step: str) -> None:
        if not is_success(receipt):
            raise MigrationError(f"{step} reverted (status={receipt.get('status')})")
