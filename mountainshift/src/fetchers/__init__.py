"""Price fetchers for various exchanges, aggregators and on-chain feeds."""

from .base import (
    FETCHER_REGISTRY,
    BaseFetcher,
    FetcherError,
    FetcherHTTPError,
    canonical_symbol,
    get_available_fetchers,
    get_fetcher,
    register_fetcher,
)

# Import all fetchers to register them
from . import binance
from . import chainlink
from . import coinbase
from . import coingecko
from . import coinmarketcap
from . import coinpaprika
from . import ftso
from . import kraken
from . import okx

__all__ = [
    "BaseFetcher",
    "FetcherError",
    "FetcherHTTPError",
    "FETCHER_REGISTRY",
    "canonical_symbol",
    "get_fetcher",
    "get_available_fetchers",
    "register_fetcher",
]
