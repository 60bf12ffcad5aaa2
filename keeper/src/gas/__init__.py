"""
Gas price fetchers for independent fee-estimation services.

Usage:
    from keeper.src.gas import get_gas_fetcher, get_available_gas_fetchers

    available = get_available_gas_fetchers()
    # ['debank', 'owlracle']

    fetcher = get_gas_fetcher("owlracle", api_key="your-api-key")
    prices = await fetcher.fetch("movr")
    # {'slow': ..., 'normal': ..., 'fast': ...}
"""

from .base import (
    GAS_FETCHER_REGISTRY,
    BaseGasFetcher,
    GasFetcherError,
    GasFetcherHTTPError,
    get_available_gas_fetchers,
    get_gas_fetcher,
    gwei_to_wei,
    register_gas_fetcher,
)

# Import all fetcher implementations to trigger registration
from .debank import DebankGasFetcher
from .owlracle import OwlracleGasFetcher

__all__ = [
    "BaseGasFetcher",
    "GasFetcherError",
    "GasFetcherHTTPError",
    "register_gas_fetcher",
    "get_gas_fetcher",
    "get_available_gas_fetchers",
    "gwei_to_wei",
    "GAS_FETCHER_REGISTRY",
    "DebankGasFetcher",
    "OwlracleGasFetcher",
]
