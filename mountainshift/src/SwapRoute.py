"""SwapRoute: descriptor of one swap direction, plus the shared tunables.

A route bundles everything that differs between the per-chain, per-direction
swap flows: where the deposit lands and how it is verified, which asset is
paid out on which chain, which pair is priced and from which sources, and how
the consensus rate converts the deposit into the payout.

.. code-block:: python

    >>> route = get_route("arbitrum")
    >>> route.pair, route.direction.value
    ('arb/usd', 'divide')
    >>> route.payout_asset.to_units(Decimal("1.5"))
    1500000000000000000
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import ROUND_DOWN, Decimal
from enum import Enum

from .errors import UnknownRouteError

DEFAULT_FEE_RATE = Decimal("0.01")
TRIM_FRACTION_FOUR_SOURCES = Decimal("0.26")
TRIM_FRACTION_MANY_SOURCES = Decimal("0.41")
DEFAULT_MIN_SOURCES = 3
DEFAULT_FETCH_TIMEOUT = 10.0

DEPOSIT_ADDRESS = "0xf0f994B4A8dB86A46a1eD4F12263c795b26703Ca"


def default_trim_fraction(source_count: int) -> Decimal:
    """Pick the trim fraction for a source set.

    Four or fewer sources trim 26% (one low quote out of four); larger sets
    trim 41% (one or two low quotes out of five or six).

    :param source_count: Number of configured sources.
    :returns: Trim fraction.
    """
    if source_count <= 4:
        return TRIM_FRACTION_FOUR_SOURCES
    return TRIM_FRACTION_MANY_SOURCES


class RateDirection(str, Enum):
    """How the consensus rate converts a deposit into a payout.

    DIVIDE: stable in, volatile out (``amount / rate``).
    MULTIPLY: volatile in, stable out (``amount * rate``).
    """

    DIVIDE = "divide"
    MULTIPLY = "multiply"


class VerificationStrategy(str, Enum):
    """Ways to locate a deposit in a transaction."""

    DEPOSIT_EVENT = "deposit_event"
    TRANSFER = "transfer"
    NATIVE = "native"


@dataclass(frozen=True)
class TokenSpec:
    """An asset on a chain.

    :ivar symbol: Asset symbol (e.g., "USDC").
    :ivar decimals: Base-unit decimals.
    :ivar address: ERC-20 contract address, or None for the native asset.
    """

    symbol: str
    decimals: int
    address: str | None = None

    @property
    def is_native(self) -> bool:
        """Check if this is the chain's native asset."""
        return self.address is None

    def to_units(self, amount: Decimal) -> int:
        """Convert a decimal amount to integer base units, rounding down."""
        return int((Decimal(amount).scaleb(self.decimals)).to_integral_value(ROUND_DOWN))

    def from_units(self, units: int) -> Decimal:
        """Convert integer base units to a decimal amount."""
        return Decimal(int(units)).scaleb(-self.decimals)


USDC_ARBITRUM = TokenSpec("USDC", 6, "0xaf88d065e77c8cC2239327C5EDb3A432268e5831")
ARB_ARBITRUM = TokenSpec("ARB", 18, "0x912CE59144191C1204E64559FE8253a0e49E6548")
USDC_ETHEREUM = TokenSpec("USDC", 6, "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48")
USDC_OPTIMISM = TokenSpec("USDC", 6, "0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85")
RBTC = TokenSpec("RBTC", 18)
ETH = TokenSpec("ETH", 18)

ARB_SOURCES = ("coingecko", "coinpaprika", "okx", "binance", "coinmarketcap", "chainlink")
BTC_SOURCES = ("coingecko", "coinmarketcap", "okx", "kraken", "coinbase")
ETH_SOURCES = ("coingecko", "coinbase", "kraken", "okx", "binance")


@dataclass(frozen=True)
class SwapRoute:
    """One swap direction.

    :ivar name: Route identifier used in the HTTP path.
    :ivar deposit_chain: Chain the user deposits on.
    :ivar deposit_address: Address that must receive the deposit.
    :ivar deposit_asset: Asset deposited.
    :ivar payout_chain: Chain the payout is sent on.
    :ivar payout_asset: Asset paid out.
    :ivar base: Priced base currency.
    :ivar quote: Priced quote currency.
    :ivar direction: Conversion direction of the consensus rate.
    :ivar verification: Strategies tried in order; first success wins.
    :ivar sources: Price sources for the pair.
    :ivar trim_fraction: Explicit trim fraction, or None for the source-count default.
    :ivar fee_rate: Flat fee applied to the payout.
    :ivar min_deposit: Smallest accepted deposit amount.
    :ivar min_sources: Minimum valid prices for consensus.
    """

    name: str
    deposit_chain: str
    deposit_address: str
    deposit_asset: TokenSpec
    payout_chain: str
    payout_asset: TokenSpec
    base: str
    quote: str
    direction: RateDirection
    verification: tuple[VerificationStrategy, ...]
    sources: tuple[str, ...]
    trim_fraction: Decimal | None = None
    fee_rate: Decimal = DEFAULT_FEE_RATE
    min_deposit: Decimal = Decimal("0")
    min_sources: int = DEFAULT_MIN_SOURCES
    description: str = field(default="", compare=False)

    @property
    def pair(self) -> str:
        """Priced pair as ``base/quote``."""
        return f"{self.base}/{self.quote}"

    @property
    def effective_trim_fraction(self) -> Decimal:
        """Trim fraction in force for this route."""
        if self.trim_fraction is not None:
            return self.trim_fraction
        return default_trim_fraction(len(self.sources))

    def with_overrides(self, **changes) -> SwapRoute:
        """Return a copy with some fields replaced (e.g., CLI overrides)."""
        return replace(self, **changes)

    def __str__(self) -> str:
        return (
            f"{self.name}: {self.deposit_asset.symbol}@{self.deposit_chain} -> "
            f"{self.payout_asset.symbol}@{self.payout_chain} ({self.pair})"
        )


_ROUTES = [
    SwapRoute(
        name="arbitrum",
        deposit_chain="arbitrum",
        deposit_address=DEPOSIT_ADDRESS,
        deposit_asset=USDC_ARBITRUM,
        payout_chain="arbitrum",
        payout_asset=ARB_ARBITRUM,
        base="arb",
        quote="usd",
        direction=RateDirection.DIVIDE,
        verification=(VerificationStrategy.DEPOSIT_EVENT, VerificationStrategy.TRANSFER),
        sources=ARB_SOURCES,
        description="USDC on Arbitrum to ARB on Arbitrum",
    ),
    SwapRoute(
        name="arbitrum_reverse",
        deposit_chain="arbitrum",
        deposit_address=DEPOSIT_ADDRESS,
        deposit_asset=ARB_ARBITRUM,
        payout_chain="arbitrum",
        payout_asset=USDC_ARBITRUM,
        base="arb",
        quote="usd",
        direction=RateDirection.MULTIPLY,
        verification=(VerificationStrategy.DEPOSIT_EVENT, VerificationStrategy.TRANSFER),
        sources=ARB_SOURCES,
        description="ARB on Arbitrum to USDC on Arbitrum",
    ),
    SwapRoute(
        name="rootstock",
        deposit_chain="optimism",
        deposit_address=DEPOSIT_ADDRESS,
        deposit_asset=USDC_OPTIMISM,
        payout_chain="rootstock",
        payout_asset=RBTC,
        base="rbtc",
        quote="usd",
        direction=RateDirection.DIVIDE,
        verification=(VerificationStrategy.DEPOSIT_EVENT, VerificationStrategy.TRANSFER),
        sources=BTC_SOURCES,
        description="USDC on Optimism to RBTC on Rootstock",
    ),
    SwapRoute(
        name="rootstock_reverse",
        deposit_chain="rootstock",
        deposit_address=DEPOSIT_ADDRESS,
        deposit_asset=RBTC,
        payout_chain="optimism",
        payout_asset=USDC_OPTIMISM,
        base="rbtc",
        quote="usd",
        direction=RateDirection.MULTIPLY,
        verification=(VerificationStrategy.DEPOSIT_EVENT, VerificationStrategy.NATIVE),
        sources=BTC_SOURCES,
        description="RBTC on Rootstock to USDC on Optimism",
    ),
    SwapRoute(
        name="ethereum",
        deposit_chain="optimism",
        deposit_address=DEPOSIT_ADDRESS,
        deposit_asset=USDC_OPTIMISM,
        payout_chain="rootstock",
        payout_asset=RBTC,
        base="rbtc",
        quote="usd",
        direction=RateDirection.DIVIDE,
        verification=(VerificationStrategy.DEPOSIT_EVENT,),
        sources=("coingecko", "coinmarketcap", "okx"),
        trim_fraction=TRIM_FRACTION_MANY_SOURCES,
        min_deposit=Decimal("0.5"),
        description="USDC deposit contract on Optimism to RBTC on Rootstock",
    ),
    SwapRoute(
        name="ethereum_reverse",
        deposit_chain="ethereum",
        deposit_address=DEPOSIT_ADDRESS,
        deposit_asset=ETH,
        payout_chain="ethereum",
        payout_asset=USDC_ETHEREUM,
        base="eth",
        quote="usd",
        direction=RateDirection.MULTIPLY,
        verification=(VerificationStrategy.NATIVE,),
        sources=ETH_SOURCES,
        description="ETH on Ethereum to USDC on Ethereum",
    ),
]

DEFAULT_ROUTES: dict[str, SwapRoute] = {route.name: route for route in _ROUTES}


def get_route(name: str, routes: dict[str, SwapRoute] | None = None) -> SwapRoute:
    """Look up a route by name.

    :param name: Route name (e.g., "arbitrum_reverse").
    :param routes: Route registry (default: DEFAULT_ROUTES).
    :returns: The route.
    :raises UnknownRouteError: If no route has that name.
    """
    routes = DEFAULT_ROUTES if routes is None else routes
    route = routes.get(name)
    if route is None:
        raise UnknownRouteError(
            f"Unknown route '{name}'. Available: {', '.join(sorted(routes))}"
        )
    return route
