"""Unit tests for GasPriceOracle."""

import asyncio

import pytest

from keeper.src.GasPriceOracle import FeeQuote, GasPriceError, GasPriceOracle, reduce_quotes
from keeper.src.gas import GasFetcherError
from keeper.tests.fakes import FakeLedger, StaticGasFetcher

GWEI = 10**9


def prices(slow: int, normal: int, fast: int) -> dict[str, int]:
    return {"slow": slow * GWEI, "normal": normal * GWEI, "fast": fast * GWEI}


class TestReduceQuotes:
    """Test quote reduction."""

    def test_maximum_wins(self) -> None:
        """The highest price should be chosen."""
        quotes = [
            FeeQuote("a", "fast", 10, 0.0),
            FeeQuote("b", "fast", 30, 0.0),
            FeeQuote("c", "fast", 20, 0.0),
        ]
        assert reduce_quotes(quotes) == 30

    def test_empty(self) -> None:
        """No quotes should reduce to None."""
        assert reduce_quotes([]) is None

    def test_non_positive_ignored(self) -> None:
        """Zero prices are not usable."""
        assert reduce_quotes([FeeQuote("a", "slow", 0, 0.0)]) is None


class TestGetFeePrice:
    """Test aggregation across services."""

    def test_max_of_services(self) -> None:
        """Result should be the maximum of present values for the tier."""
        oracle = GasPriceOracle(
            {
                "debank": StaticGasFetcher(prices(1, 2, 3)),
                "owlracle": StaticGasFetcher(prices(2, 3, 4)),
            },
            FakeLedger(),
        )

        assert asyncio.run(oracle.get_fee_price("moonriver", "slow")) == 2 * GWEI
        assert asyncio.run(oracle.get_fee_price("moonriver", "normal")) == 3 * GWEI
        assert asyncio.run(oracle.get_fee_price("moonriver", "fast")) == 4 * GWEI

    def test_routing_key(self) -> None:
        """Services should be queried with the chain's routing key."""
        fetcher = StaticGasFetcher(prices(1, 2, 3))
        oracle = GasPriceOracle({"debank": fetcher}, FakeLedger())

        asyncio.run(oracle.get_fee_price("avalanche", "normal"))

        assert fetcher.calls == ["avax"]

    def test_failed_service_is_absent(self) -> None:
        """A failing service should not affect the others."""
        oracle = GasPriceOracle(
            {
                "debank": StaticGasFetcher(error=GasFetcherError("boom")),
                "owlracle": StaticGasFetcher(prices(2, 3, 4)),
            },
            FakeLedger(),
        )

        assert asyncio.run(oracle.get_fee_price("moonriver", "fast")) == 4 * GWEI

    def test_error_payload_is_absent(self) -> None:
        """A service answering None should not affect the others."""
        oracle = GasPriceOracle(
            {
                "debank": StaticGasFetcher(prices(1, 2, 3)),
                "owlracle": StaticGasFetcher(None),
            },
            FakeLedger(),
        )

        assert asyncio.run(oracle.get_fee_price("moonriver", "normal")) == 2 * GWEI

    def test_slow_service_within_timeout_counts(self) -> None:
        """A delayed answer inside the timeout still contributes."""
        oracle = GasPriceOracle(
            {
                "debank": StaticGasFetcher(prices(1, 2, 3)),
                "owlracle": StaticGasFetcher(prices(5, 6, 7), delay=0.05),
            },
            FakeLedger(),
            fetch_timeout=1.0,
        )

        assert asyncio.run(oracle.get_fee_price("moonriver", "fast")) == 7 * GWEI

    def test_service_timeout(self) -> None:
        """A service slower than the timeout is treated as absent."""
        oracle = GasPriceOracle(
            {
                "debank": StaticGasFetcher(prices(1, 2, 3)),
                "owlracle": StaticGasFetcher(prices(5, 6, 7), delay=1.0),
            },
            FakeLedger(),
            fetch_timeout=0.05,
        )

        assert asyncio.run(oracle.get_fee_price("moonriver", "fast")) == 3 * GWEI

    def test_all_services_fail_uses_native(self) -> None:
        """With no service answering, the node's price is used."""
        ledger = FakeLedger(native_gas_price=25 * GWEI)
        oracle = GasPriceOracle(
            {
                "debank": StaticGasFetcher(error=GasFetcherError("down")),
                "owlracle": StaticGasFetcher(None),
            },
            ledger,
        )

        price = asyncio.run(oracle.get_fee_price("moonriver", "normal"))

        assert price == 25 * GWEI
        assert price > 0

    def test_unrouted_chain_uses_native(self) -> None:
        """Chains without a routing key skip the services."""
        fetcher = StaticGasFetcher(prices(1, 2, 3))
        oracle = GasPriceOracle({"debank": fetcher}, FakeLedger(native_gas_price=7))

        assert asyncio.run(oracle.get_fee_price("", "normal")) == 7
        assert fetcher.calls == []

    def test_native_failure_raises(self) -> None:
        """If the node cannot price gas either, GasPriceError is raised."""

        class BrokenLedger(FakeLedger):
            def gas_price(self) -> int:
                raise ConnectionError("node down")

        oracle = GasPriceOracle({}, BrokenLedger())

        with pytest.raises(GasPriceError, match="node down"):
            asyncio.run(oracle.get_fee_price("moonriver", "normal"))

    def test_native_zero_raises(self) -> None:
        """A zero native price is not usable."""
        oracle = GasPriceOracle({}, FakeLedger(native_gas_price=0))

        with pytest.raises(GasPriceError):
            asyncio.run(oracle.get_fee_price("moonriver", "normal"))

    def test_unknown_tier(self) -> None:
        """Unknown tiers are rejected."""
        oracle = GasPriceOracle({}, FakeLedger())

        with pytest.raises(ValueError, match="Unknown fee tier"):
            asyncio.run(oracle.get_fee_price("moonriver", "instant"))
