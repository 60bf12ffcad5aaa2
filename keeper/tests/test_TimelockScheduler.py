"""Unit tests for TimelockScheduler."""

import asyncio
from dataclasses import replace

import pytest

from keeper.src.GasPriceOracle import GasPriceOracle
from keeper.src.KeeperConfig import MANAGER_ROLE
from keeper.src.TimelockScheduler import (
    ZERO_BYTES32,
    TimelockExecutionError,
    TimelockNotReadyError,
    TimelockScheduleError,
    TimelockScheduler,
    operation_salt,
)
from keeper.src.TxSubmitter import TxSubmitter
from keeper.tests.fakes import THREE_DAYS, FakeTimelock, FakeVault

TIMELOCK = "0x7100000000000000000000000000000000000020"
VAULT = "0xFa00000000000000000000000000000000000021"
STRAT_A = "0xA000000000000000000000000000000000000022"
STRAT_B = "0xB000000000000000000000000000000000000023"


@pytest.fixture
def timelock(ledger) -> FakeTimelock:
    return FakeTimelock(ledger, TIMELOCK)


@pytest.fixture
def vault(ledger) -> FakeVault:
    return FakeVault(ledger, VAULT, owner=TIMELOCK, queue=[STRAT_A], trusted=[STRAT_A])


def make_scheduler(config, ledger, timelock, role=None) -> TimelockScheduler:
    submitter = TxSubmitter(config, ledger, GasPriceOracle({}, ledger))
    if role is None:
        return TimelockScheduler(config, timelock, submitter, ledger)
    return TimelockScheduler(config, timelock, submitter, ledger, role=role)


class TestSchedule:
    """Test proposing actions."""

    def test_schedule_proposes_with_min_delay(self, config, ledger, timelock, vault) -> None:
        """Scheduling should propose once, executable after the delay."""
        scheduler = make_scheduler(config, ledger, timelock)
        now = ledger.latest_timestamp()

        action = asyncio.run(
            scheduler.schedule(vault, "migrateStrategy", [STRAT_A, STRAT_B, 0])
        )

        assert action.ready_at == now + THREE_DAYS
        assert action.receipt is not None
        assert not action.executed
        assert len(timelock.scheduled) == 1
        assert vault.migrations == []

    def test_schedule_is_idempotent(self, config, ledger, timelock, vault) -> None:
        """Scheduling the same call twice reuses the existing proposal."""
        scheduler = make_scheduler(config, ledger, timelock)

        async def run():
            first = await scheduler.schedule(vault, "migrateStrategy", [STRAT_A, STRAT_B, 0])
            second = await scheduler.schedule(vault, "migrateStrategy", [STRAT_A, STRAT_B, 0])
            return first, second

        first, second = asyncio.run(run())

        assert first.operation_id == second.operation_id
        assert second.ready_at == first.ready_at
        assert second.receipt is None
        assert len(timelock.scheduled) == 1
        assert len(ledger.sent) == 1

    def test_schedule_revert(self, config, ledger, timelock, vault) -> None:
        """A signer without the proposer role cannot schedule."""
        scheduler = make_scheduler(config, ledger, timelock, role=MANAGER_ROLE)

        with pytest.raises(TimelockScheduleError) as exc_info:
            asyncio.run(scheduler.schedule(vault, "migrateStrategy", [STRAT_A, STRAT_B, 0]))

        assert "missing role" in exc_info.value.reason
        assert timelock.scheduled == []


class TestExecute:
    """Test executing proposals."""

    def test_execute_before_delay(self, config, ledger, timelock, vault) -> None:
        """Early execution surfaces the timelock's not-ready reason."""
        scheduler = make_scheduler(config, ledger, timelock)

        async def run():
            action = await scheduler.schedule(vault, "migrateStrategy", [STRAT_A, STRAT_B, 0])
            await scheduler.execute_scheduled(action)

        with pytest.raises(TimelockNotReadyError) as exc_info:
            asyncio.run(run())

        assert "operation is not ready" in exc_info.value.reason
        assert exc_info.value.receipt["status"] == 0
        assert vault.migrations == []

    def test_execute_after_delay(self, config, ledger, timelock, vault) -> None:
        """Once the delay elapsed the call reaches its target."""
        scheduler = make_scheduler(config, ledger, timelock)

        async def run():
            action = await scheduler.schedule(vault, "migrateStrategy", [STRAT_A, STRAT_B, 0])
            ledger.increase_time(THREE_DAYS)
            await scheduler.execute_scheduled(action)
            return action

        action = asyncio.run(run())

        assert action.executed
        assert scheduler.is_done(action)
        assert vault.queue == [STRAT_B]
        assert vault.migrations == [(STRAT_A, STRAT_B, 0)]

    def test_execute_substantive_revert(self, config, ledger, timelock, vault) -> None:
        """Target reverts are reported as execution errors, not timing."""
        scheduler = make_scheduler(config, ledger, timelock)

        async def run():
            # STRAT_B is not trusted, so migrating away from it reverts
            action = await scheduler.schedule(vault, "migrateStrategy", [STRAT_B, STRAT_A, 0])
            ledger.increase_time(THREE_DAYS)
            await scheduler.execute_scheduled(action)

        with pytest.raises(TimelockExecutionError) as exc_info:
            asyncio.run(run())

        assert "STRATEGY_NOT_TRUSTED" in exc_info.value.reason


class TestSettle:
    """Test driving proposals to completion."""

    def test_local_fast_forwards(self, config, ledger, timelock, vault) -> None:
        """On local networks time is advanced and the action executed."""
        scheduler = make_scheduler(config, ledger, timelock)
        start = ledger.latest_timestamp()

        async def run():
            action = await scheduler.schedule(vault, "migrateStrategy", [STRAT_A, STRAT_B, 0])
            return await scheduler.settle(action)

        assert asyncio.run(run()) is True
        assert ledger.latest_timestamp() > start + THREE_DAYS
        assert vault.migrations == [(STRAT_A, STRAT_B, 0)]

    def test_live_waits_for_delay(self, config, ledger, timelock, vault) -> None:
        """On live networks a pending action is left for a later run."""
        scheduler = make_scheduler(replace(config, live=True), ledger, timelock)
        start = ledger.latest_timestamp()

        async def first_run():
            action = await scheduler.schedule(vault, "migrateStrategy", [STRAT_A, STRAT_B, 0])
            return await scheduler.settle(action)

        assert asyncio.run(first_run()) is False
        assert ledger.latest_timestamp() == start
        assert vault.migrations == []

        ledger.increase_time(THREE_DAYS)

        assert asyncio.run(first_run()) is True
        assert vault.migrations == [(STRAT_A, STRAT_B, 0)]
        assert len(timelock.scheduled) == 1

    def test_executed_call_is_proposed_again(
        self, config, ledger, timelock, vault
    ) -> None:
        """Repeating an executed call schedules a new operation under a fresh salt."""
        scheduler = make_scheduler(config, ledger, timelock)

        async def run():
            first = await scheduler.schedule(vault, "migrateStrategy", [STRAT_A, STRAT_B, 0])
            await scheduler.settle(first)
            await scheduler.settle(
                await scheduler.schedule(vault, "migrateStrategy", [STRAT_B, STRAT_A, 0])
            )
            again = await scheduler.schedule(vault, "migrateStrategy", [STRAT_A, STRAT_B, 0])
            settled = await scheduler.settle(again)
            return first, again, settled

        first, again, settled = asyncio.run(run())

        assert again.salt != first.salt
        assert again.operation_id != first.operation_id
        assert again.receipt is not None
        assert settled is True
        assert len(timelock.scheduled) == 3
        assert vault.queue == [STRAT_B]
        assert vault.migrations == [
            (STRAT_A, STRAT_B, 0),
            (STRAT_B, STRAT_A, 0),
            (STRAT_A, STRAT_B, 0),
        ]


class TestOperationSalt:
    """Test salt derivation for repeated calls."""

    def test_first_salt_is_configured_salt(self) -> None:
        assert operation_salt(ZERO_BYTES32, 0) == ZERO_BYTES32

    def test_repeats_get_distinct_salts(self) -> None:
        salts = {operation_salt(ZERO_BYTES32, index) for index in range(4)}
        assert len(salts) == 4
        assert all(len(salt) == 66 and salt.startswith("0x") for salt in salts)
