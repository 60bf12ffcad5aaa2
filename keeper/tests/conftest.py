"""Shared fixtures for keeper tests."""

import pytest

from keeper.src.GasPriceOracle import GasPriceOracle
from keeper.src.KeeperConfig import KeeperConfig
from keeper.src.TxSubmitter import TxSubmitter
from keeper.tests.fakes import FakeLedger


@pytest.fixture
def config() -> KeeperConfig:
    """Local config with deadlines short enough for unit tests."""
    return KeeperConfig(
        network="localhost",
        chain="moonriver",
        max_tx_time=0.05,
        poll_interval=0.01,
        broadcast_backoff=0.001,
    )


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def submitter(config, ledger) -> TxSubmitter:
    # No fee services: every call is priced at the node's gas price
    return TxSubmitter(config, ledger, GasPriceOracle({}, ledger))
