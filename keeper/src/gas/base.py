"""Base gas fetcher interface and shared HTTP client management.

All fee-estimation services inherit from BaseGasFetcher and implement the
fetch() method, returning one price (in wei) per speed tier. A shared
httpx.AsyncClient is used across all fetchers to avoid connection overhead.

.. code-block:: python

    @register_gas_fetcher
    class MyGasFetcher(BaseGasFetcher):
        name = "mygas"

        async def fetch(self, chain_key: str) -> dict[str, int] | None:
            response = await self._get(f"https://gas.example.com/{chain_key}")
            data = response.json()
            return {tier: int(data[tier]) for tier in FEE_TIERS}
"""

import logging
from abc import ABC, abstractmethod
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import ClassVar

import httpx

logger = logging.getLogger(__name__)

GWEI_DECIMALS = 9


class GasFetcherError(Exception):
    """Base exception for gas fetcher errors."""

    pass


class GasFetcherHTTPError(GasFetcherError):
    """Raised when an HTTP request to a fee service fails.

    :ivar status_code: HTTP status code from the failed request.
    """

    def __init__(self, status_code: int, message: str):
        """Initialize the HTTP error.

        :param status_code: HTTP status code.
        :param message: Error message from response.
        """
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {message}")


def gwei_to_wei(value: float | str) -> int:
    """Convert a gwei amount to wei without float rounding.

    Digits beyond nine decimal places are truncated.

    :param value: Amount in gwei (e.g., 63.384299915).
    :returns: Amount in wei.
    :raises ValueError: If the value is not numeric.

    .. code-block:: python

        >>> gwei_to_wei(63.384299915)
        63384299915
    """
    try:
        amount = Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Invalid gwei amount: {value!r}") from e
    quantized = amount.quantize(Decimal(1).scaleb(-GWEI_DECIMALS), rounding=ROUND_DOWN)
    return int(quantized.scaleb(GWEI_DECIMALS))


class BaseGasFetcher(ABC):
    """Abstract base class for fee-estimation services.

    Subclasses must implement:
        - name: Class variable identifying the service (e.g., "debank")
        - fetch(): Async method returning {tier: price_wei} for a chain

    :cvar name: Unique identifier for this fetcher.
    :cvar DEFAULT_TIMEOUT: Default HTTP request timeout in seconds.
    :ivar api_key: Optional API key for authenticated endpoints.
    :ivar timeout: Request timeout in seconds.
    """

    _shared_client: ClassVar[httpx.AsyncClient | None] = None

    name: ClassVar[str] = ""

    DEFAULT_TIMEOUT = 5.0

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        """Initialize the fetcher.

        :param api_key: Optional API key for authenticated endpoints.
        :param timeout: Request timeout in seconds (default: 5).
        """
        self.api_key = api_key
        self.timeout = timeout or self.DEFAULT_TIMEOUT

    @property
    def has_api_key(self) -> bool:
        """Check if this fetcher has an API key configured."""
        return self.api_key is not None and len(self.api_key) > 0

    @classmethod
    def get_shared_client(cls) -> httpx.AsyncClient:
        """Get or create the shared HTTP client.

        :returns: Shared httpx.AsyncClient instance.
        """
        if BaseGasFetcher._shared_client is None or BaseGasFetcher._shared_client.is_closed:
            BaseGasFetcher._shared_client = httpx.AsyncClient(
                timeout=httpx.Timeout(10.0, connect=5.0),
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
                follow_redirects=True,
            )
        return BaseGasFetcher._shared_client

    @classmethod
    def set_shared_client(cls, client: httpx.AsyncClient | None) -> None:
        """Replace the shared HTTP client (e.g., with a mock transport).

        :param client: Client to share, or None to reset.
        """
        BaseGasFetcher._shared_client = client

    @classmethod
    async def close_shared_client(cls) -> None:
        """Close the shared HTTP client."""
        client = BaseGasFetcher._shared_client
        if client is not None and not client.is_closed:
            await client.aclose()
        BaseGasFetcher._shared_client = None

    @abstractmethod
    async def fetch(self, chain_key: str) -> dict[str, int] | None:
        """Fetch the current fee suggestion for every tier.

        :param chain_key: Service routing key for the chain (e.g., "movr").
        :returns: Dict mapping tier ("slow", "normal", "fast") to price in wei,
            or None if the service could not answer.
        """
        pass

    async def _get(
        self,
        url: str,
        *,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> httpx.Response:
        """Make an HTTP GET request using the shared client.

        :param url: Request URL.
        :param params: Optional query parameters.
        :param headers: Optional request headers.
        :returns: httpx.Response object.
        :raises GasFetcherHTTPError: On non-2xx response.
        :raises GasFetcherError: On network/timeout errors.
        """
        client = self.get_shared_client()
        try:
            response = await client.get(
                url,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
            if not response.is_success:
                logger.debug(
                    "HTTP GET %s failed with status %s: %s",
                    url,
                    response.status_code,
                    response.text[:200],
                )
                raise GasFetcherHTTPError(response.status_code, response.text[:200])
            return response
        except httpx.TimeoutException as e:
            raise GasFetcherError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise GasFetcherError(f"Request failed: {e}") from e


# Registry of available gas fetchers (populated by subclass imports)
GAS_FETCHER_REGISTRY: dict[str, type[BaseGasFetcher]] = {}


def register_gas_fetcher(cls: type[BaseGasFetcher]) -> type[BaseGasFetcher]:
    """Decorator to register a gas fetcher class in the global registry.

    :param cls: Fetcher class to register.
    :returns: The registered class (unchanged).
    :raises ValueError: If fetcher has no name defined.
    """
    if not cls.name:
        raise ValueError(f"Gas fetcher {cls.__name__} must define a 'name' class variable")
    GAS_FETCHER_REGISTRY[cls.name] = cls
    return cls


def get_gas_fetcher(
    name: str, api_key: str | None = None, timeout: float | None = None
) -> BaseGasFetcher:
    """Get a gas fetcher instance by name.

    :param name: Fetcher name (e.g., "debank", "owlracle").
    :param api_key: Optional API key.
    :param timeout: Optional request timeout.
    :returns: Fetcher instance.
    :raises ValueError: If fetcher name is unknown.
    """
    if name not in GAS_FETCHER_REGISTRY:
        available = ", ".join(sorted(GAS_FETCHER_REGISTRY.keys()))
        raise ValueError(f"Unknown gas fetcher '{name}'. Available: {available}")
    return GAS_FETCHER_REGISTRY[name](api_key=api_key, timeout=timeout)


def get_available_gas_fetchers() -> list[str]:
    """Get list of available gas fetcher names.

    :returns: Sorted list of registered fetcher names.
    """
    return sorted(GAS_FETCHER_REGISTRY.keys())
