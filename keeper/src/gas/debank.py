"""DeBank gas price fetcher.

Endpoint: https://api.debank.com/chain/gas_price_dict_v2?chain={key}
Auth: none
Units: wei
"""

import logging

from ..KeeperConfig import FEE_TIERS
from .base import BaseGasFetcher, GasFetcherError, register_gas_fetcher

logger = logging.getLogger(__name__)


@register_gas_fetcher
class DebankGasFetcher(BaseGasFetcher):
    """Fetcher for the DeBank gas price dictionary.

    Response shape::

        {"data": {"fast": {"price": 64000000000.0}, "normal": {...},
                  "slow": {...}}, "error_code": 0}
    """

    name = "debank"
    BASE_URL = "https://api.debank.com"

    async def fetch(self, chain_key: str) -> dict[str, int] | None:
        """Fetch tiered gas prices from DeBank.

        :param chain_key: DeBank chain id (e.g., "movr", "avax").
        :returns: Dict mapping tier to price in wei, or None on failure.
        """
        url = f"{self.BASE_URL}/chain/gas_price_dict_v2"

        try:
            response = await self._get(url, params={"chain": chain_key})
            data = response.json()

            if data.get("error_code", 0) != 0 or "data" not in data:
                logger.warning(f"[debank] Error payload for {chain_key}: {data}")
                return None

            return {tier: int(data["data"][tier]["price"]) for tier in FEE_TIERS}

        except GasFetcherError as e:
            logger.warning(f"[debank] Failed to fetch gas for {chain_key}: {e}")
            return None
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"[debank] Failed to parse response for {chain_key}: {e}")
            return None
