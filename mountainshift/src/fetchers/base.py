"""Price adapter contract, the shared HTTP client and the adapter registry.

An adapter only knows how to reach its provider and where the price sits in
the response: it implements :meth:`BaseFetcher.fetch_raw`, which returns the
raw field or raises :class:`FetcherError`. :meth:`BaseFetcher.fetch` wraps
that into the public contract, a :class:`PriceQuoteResult` that is never an
exception and never a sentinel number:

- unsupported pair, network error, non-2xx status, provider-reported error,
  unexpected response shape -> failed result with the reason
- missing, non-numeric or negative value -> failed result
- anything else -> ok result tagged with the adapter name

JSON bodies are decoded with floats as ``Decimal`` so no binary rounding
creeps in between the provider and the consensus mean.

.. code-block:: python

    @register_fetcher
    class MyFetcher(BaseFetcher):
        name = "myfetcher"

        async def fetch_raw(self, base: str, quote: str) -> Any:
            data = await self._get_json(f"https://api.example.com/{base}/{quote}")
            return data["price"]
"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, ClassVar

import httpx

from ..Price import Price, PriceQuoteResult, to_decimal

logger = logging.getLogger(__name__)

# Wrapped and bridged assets quoted under the symbol of the underlying asset
SYMBOL_ALIASES = {
    "rbtc": "btc",
    "wbtc": "btc",
    "weth": "eth",
}

# Upper bound for a request that does not pass its own timeout
DEFAULT_CLIENT_TIMEOUT = 30.0

# Response-shape errors an adapter may hit while digging out its field
SHAPE_ERRORS = (KeyError, IndexError, TypeError, AttributeError, ValueError)


def canonical_symbol(symbol: str) -> str:
    """Normalize a symbol to lowercase and resolve aliases.

    :param symbol: Asset symbol (e.g., "RBTC").
    :returns: Canonical lowercase symbol (e.g., "btc").
    """
    symbol = symbol.lower()
    return SYMBOL_ALIASES.get(symbol, symbol)


class FetcherError(Exception):
    """Raised by an adapter when its provider gave no usable answer."""

    pass


class FetcherHTTPError(FetcherError):
    """Raised when the provider answers with a non-success status.

    :ivar status_code: HTTP status code from the failed request.
    """

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {message}")


class BaseFetcher(ABC):
    """Abstract price adapter.

    Subclasses set ``name`` and implement :meth:`fetch_raw`; they may narrow
    :meth:`supports_pair`.

    :cvar name: Unique source identifier, also the tag on every result.
    :cvar DEFAULT_TIMEOUT: Request timeout in seconds when none is given.
    :ivar api_key: Optional API key for authenticated endpoints.
    :ivar timeout: Request timeout in seconds.
    """

    _shared_client: ClassVar[httpx.AsyncClient | None] = None

    name: ClassVar[str] = ""

    DEFAULT_TIMEOUT = 10.0

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        """Initialize the adapter.

        :param api_key: Optional API key.
        :param timeout: Request timeout in seconds (default: 10).
        """
        self.api_key = api_key or None
        self.timeout = timeout or self.DEFAULT_TIMEOUT

    @property
    def has_api_key(self) -> bool:
        """Check if an API key is configured."""
        return self.api_key is not None

    @classmethod
    def get_shared_client(cls) -> httpx.AsyncClient:
        """Return the HTTP client shared by every adapter, creating it on demand.

        One swap fans out to every source of its route at once, so the pool
        is sized for a few concurrent swaps rather than for throughput.
        """
        client = BaseFetcher._shared_client
        if client is None or client.is_closed:
            client = httpx.AsyncClient(
                timeout=httpx.Timeout(DEFAULT_CLIENT_TIMEOUT, connect=5.0),
                limits=httpx.Limits(max_connections=32, max_keepalive_connections=16),
                headers={"Accept": "application/json"},
                follow_redirects=True,
            )
            BaseFetcher._shared_client = client
        return client

    @classmethod
    def set_shared_client(cls, client: httpx.AsyncClient | None) -> None:
        """Install a client for every adapter (e.g., one on a mock transport).

        :param client: Client to share, or None to recreate lazily.
        """
        BaseFetcher._shared_client = client

    @classmethod
    async def close_shared_client(cls) -> None:
        """Close the shared HTTP client, if one is open."""
        client, BaseFetcher._shared_client = BaseFetcher._shared_client, None
        if client is not None and not client.is_closed:
            await client.aclose()

    async def supports_pair(self, base: str, quote: str) -> bool:
        """Check whether this source can price a pair (default: any pair)."""
        return True

    @abstractmethod
    async def fetch_raw(self, base: str, quote: str) -> Any:
        """Return the provider's raw price field for a pair.

        :param base: Base currency symbol (e.g., "arb", "rbtc").
        :param quote: Quote currency symbol (e.g., "usd").
        :returns: Raw price (str, int, Decimal) as found in the response.
        :raises FetcherError: If the provider gave no usable answer.
        """
        pass

    async def fetch(self, base: str, quote: str) -> PriceQuoteResult:
        """Fetch the current price for a trading pair. Never raises.

        :param base: Base currency symbol.
        :param quote: Quote currency symbol.
        :returns: Ok result with the price, or a failed result with the reason.
        """
        pair = f"{base}/{quote}"
        if not await self.supports_pair(base, quote):
            return self._failed(f"Unsupported pair {pair}")
        try:
            raw = await self.fetch_raw(base, quote)
        except FetcherError as e:
            return self._failed(f"{pair}: {e}")
        except SHAPE_ERRORS as e:
            return self._failed(f"{pair}: unexpected response: {e!r}")
        return self._ok(raw)

    def _ok(self, raw: Any) -> PriceQuoteResult:
        """Validate a raw price field; only present, finite, non-negative numbers pass."""
        try:
            value = to_decimal(raw)
        except ValueError as e:
            return self._failed(f"invalid price field: {e}")
        if value < 0:
            return self._failed(f"negative price: {value}")
        logger.debug(f"[{self.name}] {value}")
        return PriceQuoteResult.success(Price(value, self.name))

    def _failed(self, reason: str) -> PriceQuoteResult:
        logger.warning(f"[{self.name}] {reason}")
        return PriceQuoteResult.failed(self.name, reason)

    async def _get_json(
        self,
        url: str,
        *,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> Any:
        """GET a JSON document through the shared client.

        :param url: Request URL.
        :param params: Optional query parameters.
        :param headers: Optional request headers.
        :returns: Decoded body, floats as ``Decimal``.
        :raises FetcherHTTPError: On a non-2xx response.
        :raises FetcherError: On timeout, transport error or a non-JSON body.
        """
        try:
            response = await self.get_shared_client().get(
                url, params=params, headers=headers, timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            raise FetcherError(f"Request timeout after {self.timeout}s: {e}") from e
        except httpx.RequestError as e:
            raise FetcherError(f"Request failed: {e}") from e

        if not response.is_success:
            logger.debug(
                f"[{self.name}] GET {url} -> {response.status_code}: {response.text[:200]}"
            )
            raise FetcherHTTPError(response.status_code, response.text[:200])
        try:
            return response.json(parse_float=Decimal)
        except ValueError as e:
            raise FetcherError(f"Response is not JSON: {e}") from e


# Source name -> adapter class, filled by @register_fetcher at import time
FETCHER_REGISTRY: dict[str, type[BaseFetcher]] = {}


def register_fetcher(cls: type[BaseFetcher]) -> type[BaseFetcher]:
    """Class decorator adding an adapter to the registry under its ``name``.

    :raises ValueError: If the class defines no name or the name is taken.
    """
    if not cls.name:
        raise ValueError(f"Fetcher {cls.__name__} must define a 'name' class variable")
    existing = FETCHER_REGISTRY.get(cls.name)
    if existing is not None and existing is not cls:
        raise ValueError(f"Fetcher name '{cls.name}' already used by {existing.__name__}")
    FETCHER_REGISTRY[cls.name] = cls
    return cls


def get_fetcher(name: str, api_key: str | None = None, **options: Any) -> BaseFetcher:
    """Instantiate a registered adapter.

    :param name: Source name (e.g., "coinbase", "chainlink").
    :param api_key: Optional API key.
    :param options: Extra constructor options (e.g., ``timeout``, ``w3``).
    :returns: Adapter instance.
    :raises ValueError: If the name is not registered.
    """
    try:
        cls = FETCHER_REGISTRY[name]
    except KeyError:
        available = ", ".join(get_available_fetchers())
        raise ValueError(f"Unknown fetcher '{name}'. Available: {available}") from None
    return cls(api_key=api_key, **options)


def get_available_fetchers() -> list[str]:
    """Sorted names of all registered adapters."""
    return sorted(FETCHER_REGISTRY)
