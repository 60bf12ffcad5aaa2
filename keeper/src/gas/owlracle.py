"""Owlracle gas price fetcher.

Endpoint: https://owlracle.info/{key}/gas?apikey={API_KEY}
Auth: API key (query parameter)
Units: gwei

Owlracle reports four speeds ordered by acceptance (35%, 60%, 90%, 100%).
"""

import logging

from .base import BaseGasFetcher, GasFetcherError, gwei_to_wei, register_gas_fetcher

logger = logging.getLogger(__name__)


@register_gas_fetcher
class OwlracleGasFetcher(BaseGasFetcher):
    """Fetcher for the Owlracle gas API.

    An invalid or missing key yields an error body such as
    ``{"status": 401, "error": "Unauthorized"}``, which is treated as absent.
    """

    name = "owlracle"
    BASE_URL = "https://owlracle.info"

    # Tier -> index into the "speeds" list
    TIER_SPEEDS = {
        "slow": 0,
        "normal": 1,
        "fast": 3,
    }

    async def fetch(self, chain_key: str) -> dict[str, int] | None:
        """Fetch tiered gas prices from Owlracle.

        :param chain_key: Owlracle network key (e.g., "movr", "avax").
        :returns: Dict mapping tier to price in wei, or None on failure.
        """
        url = f"{self.BASE_URL}/{chain_key}/gas"
        params = {"apikey": self.api_key} if self.has_api_key else None

        try:
            response = await self._get(url, params=params)
            data = response.json()

            speeds = data.get("speeds")
            if not speeds:
                logger.warning(f"[owlracle] No speeds for {chain_key}: {data}")
                return None

            return {
                tier: gwei_to_wei(speeds[index]["gasPrice"])
                for tier, index in self.TIER_SPEEDS.items()
            }

        except GasFetcherError as e:
            logger.warning(f"[owlracle] Failed to fetch gas for {chain_key}: {e}")
            return None
        except (KeyError, IndexError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"[owlracle] Failed to parse response for {chain_key}: {e}")
            return None
