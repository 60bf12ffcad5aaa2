"""Unit tests for StrategyMigrator."""

import asyncio
from dataclasses import replace

import pytest

from keeper.src.DeploymentRegistry import DeploymentRecord, DeploymentRegistry
from keeper.src.GasPriceOracle import GasPriceOracle
from keeper.src.MigrationPlanner import PlanAction
from keeper.src.StrategyMigrator import MigrationError, StrategyMigrator
from keeper.src.TimelockScheduler import TimelockScheduler
from keeper.src.TxSubmitter import TxSubmitter
from keeper.tests.fakes import (
    DEPLOYER,
    MANAGER,
    OUTSIDER,
    TEAM,
    THREE_DAYS,
    FakeRevert,
    FakeStrategy,
    FakeTimelock,
    FakeVault,
)

SYMBOL = "USDCmovrSUSHIsolar"
TIMELOCK = "0x7100000000000000000000000000000000000020"
VAULT = "0xFa00000000000000000000000000000000000021"
OTHER_VAULT = "0xFb00000000000000000000000000000000000031"
STRAT_A = "0xA000000000000000000000000000000000000022"
STRAT_B = "0xB000000000000000000000000000000000000023"
STRAT_X = "0xC000000000000000000000000000000000000024"
STRAT_Y = "0xD000000000000000000000000000000000000025"


class LockedVault(FakeVault):
    """Vault that refuses to trust new strategies."""

    def tx_trustStrategy(self, sender, strategy):
        raise FakeRevert("UNAUTHORIZED")


class Setup:
    """A vault with three queued strategies, a timelock and a registry."""

    def __init__(self, config, ledger, tmp_path, vault_cls=FakeVault):
        self.config = config
        self.ledger = ledger
        self.timelock = FakeTimelock(ledger, TIMELOCK)
        self.vault = vault_cls(
            ledger,
            VAULT,
            owner=TIMELOCK,
            queue=[STRAT_X, STRAT_A, STRAT_Y],
            trusted=[STRAT_X, STRAT_A, STRAT_Y],
        )
        self.strat_a = FakeStrategy(ledger, STRAT_A, vault=VAULT, managers=[MANAGER])
        self.registry = DeploymentRegistry(tmp_path, "localhost")

        submitter = TxSubmitter(config, ledger, GasPriceOracle({}, ledger))
        scheduler = TimelockScheduler(config, self.timelock, submitter, ledger)
        self.migrator = StrategyMigrator(
            config,
            self.registry,
            ledger,
            submitter,
            scheduler,
            lambda record: ledger.contract(record.address),
        )

    def run(self, candidate, previous=None):
        return asyncio.run(self.migrator.plan_and_execute(self.vault, candidate, previous))


@pytest.fixture
def setup(config, ledger, tmp_path) -> Setup:
    return Setup(config, ledger, tmp_path)


def record(address: str) -> DeploymentRecord:
    return DeploymentRecord(name=SYMBOL, address=address, abi=[])


class TestFreshInstall:
    """Test symbols without a previous deployment."""

    def test_trusts_and_queues_without_proposals(self, setup, ledger) -> None:
        """A new strategy is trusted and appended with no timelock proposal."""
        FakeStrategy(ledger, STRAT_B, vault=VAULT, managers=[MANAGER])

        plan = setup.run(record(STRAT_B))

        assert plan.action is PlanAction.INSTALL
        assert STRAT_B.lower() in setup.vault.trusted
        assert setup.vault.queue == [STRAT_X, STRAT_A, STRAT_Y, STRAT_B]
        assert setup.timelock.scheduled == []
        assert ledger.mutating_calls() == [
            (VAULT, "trustStrategy"),
            (VAULT, "pushToWithdrawalQueue"),
        ]
        assert setup.registry.get(SYMBOL).address == STRAT_B

    def test_install_signers(self, setup, ledger) -> None:
        """Trust comes from the deployer, queueing from the manager."""
        FakeStrategy(ledger, STRAT_B, vault=VAULT, managers=[MANAGER])

        setup.run(record(STRAT_B))

        assert [tx["from"] for tx in ledger.mined] == [DEPLOYER, MANAGER]

    def test_install_revert_keeps_registry_unchanged(self, config, ledger, tmp_path) -> None:
        """A reverted install step fails the run before recording the candidate."""
        setup = Setup(config, ledger, tmp_path, vault_cls=LockedVault)
        FakeStrategy(ledger, STRAT_B, vault=VAULT, managers=[MANAGER])

        with pytest.raises(MigrationError, match="trustStrategy"):
            setup.run(record(STRAT_B))

        assert not setup.registry.exists(SYMBOL)
        assert setup.vault.queue == [STRAT_X, STRAT_A, STRAT_Y]


class TestInitStrategy:
    """Test post-init role checks."""

    def test_grants_managers_and_vault(self, config, ledger, tmp_path) -> None:
        """Missing managers and vault back-reference are fixed by the deployer."""
        setup = Setup(replace(config, team_address=TEAM), ledger, tmp_path)
        strategy = FakeStrategy(ledger, STRAT_B, vault=OTHER_VAULT)

        setup.run(record(STRAT_B))

        assert strategy.view_isManager(MANAGER)
        assert strategy.view_isManager(TEAM)
        assert strategy.vault == VAULT
        assert ledger.mutating_calls()[:3] == [
            (STRAT_B, "setManager"),
            (STRAT_B, "setManager"),
            (STRAT_B, "setVault"),
        ]

    def test_skipped_when_deployer_is_not_owner(self, setup, ledger) -> None:
        """Strategies owned elsewhere are not touched."""
        strategy = FakeStrategy(ledger, STRAT_B, vault=OTHER_VAULT, owner=TIMELOCK)

        asyncio.run(setup.migrator.init_strategy(setup.vault, strategy, SYMBOL))

        assert not strategy.view_isManager(MANAGER)
        assert ledger.sent == []


class TestNoop:
    """Test runs that change nothing."""

    def test_identical_candidate(self, setup, ledger) -> None:
        """Re-deploying to the same address issues no mutating calls."""
        plan = setup.run(record(STRAT_A), previous=record(STRAT_A))

        assert plan.action is PlanAction.NOOP
        assert ledger.sent == []
        assert not setup.registry.exists(f"{SYMBOL}-prev")

    def test_predecessor_of_other_vault(self, setup, ledger) -> None:
        """A predecessor attached to another vault is skipped."""
        setup.strat_a.vault = OTHER_VAULT
        FakeStrategy(ledger, STRAT_B, vault=VAULT, managers=[MANAGER])

        plan = setup.run(record(STRAT_B), previous=record(STRAT_A))

        assert plan.action is PlanAction.SKIP
        assert ledger.sent == []


class TestMigrate:
    """Test governed migrations."""

    def test_preserves_queue_position(self, setup, ledger) -> None:
        """The candidate replaces the predecessor at the same index."""
        FakeStrategy(ledger, STRAT_B, vault=VAULT, managers=[MANAGER])

        plan = setup.run(record(STRAT_B), previous=record(STRAT_A))

        assert plan.action is PlanAction.MIGRATE
        assert plan.index == 1
        assert setup.vault.queue == [STRAT_X, STRAT_B, STRAT_Y]
        assert STRAT_B.lower() in setup.vault.trusted
        assert STRAT_A.lower() not in setup.vault.trusted
        assert setup.vault.migrations == [(STRAT_A, STRAT_B, 1)]
        assert len(setup.timelock.scheduled) == 1

    def test_archives_predecessor(self, setup, ledger) -> None:
        """The superseded record is archived and referenced."""
        FakeStrategy(ledger, STRAT_B, vault=VAULT, managers=[MANAGER])

        setup.run(record(STRAT_B), previous=record(STRAT_A))

        archived = setup.registry.get(f"{SYMBOL}-prev")
        current = setup.registry.get(SYMBOL)
        assert archived.address == STRAT_A
        assert current.address == STRAT_B
        assert current.predecessor == f"{SYMBOL}-prev"

    def test_idempotent(self, setup, ledger) -> None:
        """Running twice migrates once; the second run sends nothing."""
        FakeStrategy(ledger, STRAT_B, vault=VAULT, managers=[MANAGER])

        first = setup.run(record(STRAT_B), previous=record(STRAT_A))
        sent = len(ledger.sent)
        second = setup.run(record(STRAT_B), previous=setup.registry.get(SYMBOL))

        assert first.action is PlanAction.MIGRATE
        assert second.action is PlanAction.NOOP
        assert len(ledger.sent) == sent
        assert setup.vault.migrations == [(STRAT_A, STRAT_B, 1)]

    def test_live_migration_completes_in_later_run(self, config, ledger, tmp_path) -> None:
        """On live networks the proposal is executed once its delay elapsed."""
        setup = Setup(replace(config, live=True), ledger, tmp_path)
        FakeStrategy(ledger, STRAT_B, vault=VAULT, managers=[MANAGER])

        first = setup.run(record(STRAT_B), previous=record(STRAT_A))
        assert first.action is PlanAction.MIGRATE
        assert setup.vault.migrations == []

        ledger.increase_time(THREE_DAYS)
        second = setup.run(record(STRAT_B), previous=setup.registry.get(SYMBOL))
        third = setup.run(record(STRAT_B), previous=setup.registry.get(SYMBOL))

        assert second.action is PlanAction.MIGRATE
        assert third.action is PlanAction.NOOP
        assert setup.vault.migrations == [(STRAT_A, STRAT_B, 1)]
        assert len(setup.timelock.scheduled) == 1


class TestEnsureOwner:
    """Test ownership handoff."""

    def test_transfers_from_our_signer(self, setup, ledger) -> None:
        """A contract owned by one of our signers is handed over."""
        strategy = FakeStrategy(ledger, STRAT_B)

        receipt = asyncio.run(setup.migrator.ensure_owner(strategy, TIMELOCK))

        assert receipt["status"] == 1
        assert strategy.owner == TIMELOCK

    def test_already_owned(self, setup, ledger) -> None:
        """Nothing is sent when the owner is already right."""
        strategy = FakeStrategy(ledger, STRAT_B, owner=MANAGER)

        assert asyncio.run(setup.migrator.ensure_owner(strategy, MANAGER.lower())) is None
        assert ledger.sent == []

    def test_owned_by_timelock(self, setup, ledger) -> None:
        """Timelock-owned contracts are never transferred directly."""
        strategy = FakeStrategy(ledger, STRAT_B, owner=TIMELOCK)

        assert asyncio.run(setup.migrator.ensure_owner(strategy, DEPLOYER)) is None
        assert ledger.sent == []

    def test_foreign_owner(self, setup, ledger) -> None:
        """Contracts owned by unknown accounts are left alone."""
        strategy = FakeStrategy(ledger, STRAT_B, owner=OUTSIDER)

        assert asyncio.run(setup.migrator.ensure_owner(strategy, TIMELOCK)) is None
        assert ledger.sent == []
