"""GasPriceOracle: Conservative gas price aggregation across fee services.

Algorithm:
    1. Query every configured fee service concurrently, each bounded by
       fetch_timeout
    2. Treat timeouts, HTTP errors and malformed/error payloads as absent
    3. Take the maximum of the present values for the requested tier
    4. If no service answered, fall back to the node's own gas price
    5. If that fails too, raise GasPriceError

Taking the maximum biases towards confirmation speed over cost.

.. code-block:: python

    oracle = GasPriceOracle(fetchers, ledger, fetch_timeout=5.0)
    price = await oracle.get_fee_price("moonriver", "fast")
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .KeeperConfig import FEE_ROUTING_KEYS, FEE_TIERS

if TYPE_CHECKING:
    from .gas import BaseGasFetcher
    from .LedgerUtility import LedgerUtility

logger = logging.getLogger(__name__)


class GasPriceError(Exception):
    """Raised when neither the fee services nor the node can price gas."""

    pass


@dataclass(frozen=True)
class FeeQuote:
    """A single service's price for one tier.

    :ivar source: Fee service name.
    :ivar tier: Speed tier ("slow", "normal", "fast").
    :ivar price: Suggested gas price in wei.
    :ivar fetched_at: Unix timestamp of the response.
    """

    source: str
    tier: str
    price: int
    fetched_at: float


def reduce_quotes(quotes: list[FeeQuote]) -> int | None:
    """Reduce quotes for one tier to a single price.

    :param quotes: Quotes from the services that answered.
    :returns: The highest positive price, or None if there is none.
    """
    prices = [q.price for q in quotes if q.price > 0]
    return max(prices) if prices else None


class GasPriceOracle:
    """Aggregates gas prices from independent fee-estimation services.

    :ivar fetchers: Dict mapping service names to fetcher instances.
    :ivar ledger: Ledger used for the native fee fallback.
    :ivar fetch_timeout: Per-service timeout in seconds.
    """

    def __init__(
        self,
        fetchers: dict[str, BaseGasFetcher],
        ledger: LedgerUtility,
        fetch_timeout: float = 5.0,
    ) -> None:
        """Initialize the oracle.

        :param fetchers: Dict mapping service names to fetcher instances.
        :param ledger: Ledger used for the native fee fallback.
        :param fetch_timeout: Per-service timeout in seconds (default: 5.0).
        """
        self.fetchers = fetchers
        self.ledger = ledger
        self.fetch_timeout = fetch_timeout

    async def fetch_quotes(self, chain: str, tier: str) -> list[FeeQuote]:
        """Query all services concurrently and collect quotes for a tier.

        :param chain: Chain name (e.g., "moonriver").
        :param tier: Speed tier.
        :returns: Quotes from the services that answered.
        :raises ValueError: If the tier is unknown.
        """
        if tier not in FEE_TIERS:
            raise ValueError(f"Unknown fee tier '{tier}'. Expected one of {FEE_TIERS}")

        chain_key = FEE_ROUTING_KEYS.get(chain)
        if chain_key is None or not self.fetchers:
            logger.debug(f"No fee services routed for chain '{chain}'")
            return []

        names = list(self.fetchers)
        results = await asyncio.gather(
            *(self._fetch_source(name, chain_key) for name in names)
        )

        quotes: list[FeeQuote] = []
        fetched_at = time.time()
        for name, prices in zip(names, results, strict=True):
            if prices is None or prices.get(tier) is None:
                continue
            quotes.append(
                FeeQuote(source=name, tier=tier, price=prices[tier], fetched_at=fetched_at)
            )
        return quotes

    async def _fetch_source(self, name: str, chain_key: str) -> dict[str, int] | None:
        """Fetch one service with timeout, mapping every failure to None.

        :param name: Service name.
        :param chain_key: Service routing key.
        :returns: Tier prices or None.
        """
        fetcher = self.fetchers[name]
        try:
            return await asyncio.wait_for(
                fetcher.fetch(chain_key),
                timeout=self.fetch_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"[{name}] Timeout fetching gas for {chain_key}")
            return None
        except Exception as e:
            logger.warning(f"[{name}] Error fetching gas for {chain_key}: {e}")
            return None

    async def get_fee_price(self, chain: str, tier: str = "normal") -> int:
        """Get the gas price to use for a tier.

        :param chain: Chain name (e.g., "moonriver").
        :param tier: Speed tier (default: "normal").
        :returns: Gas price in wei, strictly positive.
        :raises GasPriceError: If all services and the native fallback fail.
        """
        quotes = await self.fetch_quotes(chain, tier)
        price = reduce_quotes(quotes)
        if price is not None:
            logger.debug(
                f"Gas {chain}/{tier}: {price} "
                f"(max of {', '.join(f'{q.source}={q.price}' for q in quotes)})"
            )
            return price

        logger.info(f"No fee service answered for {chain}/{tier}, using node gas price")
        try:
            native = int(self.ledger.gas_price())
        except Exception as e:
            raise GasPriceError(f"Native gas price unavailable: {e}") from e

        if native <= 0:
            raise GasPriceError(f"Node returned non-positive gas price: {native}")
        return native
