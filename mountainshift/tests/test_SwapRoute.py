"""Unit tests for SwapRoute and TokenSpec."""

from decimal import Decimal

import pytest

from mountainshift.src.SwapRoute import (
    DEFAULT_FEE_RATE,
    DEFAULT_ROUTES,
    TRIM_FRACTION_FOUR_SOURCES,
    TRIM_FRACTION_MANY_SOURCES,
    RateDirection,
    TokenSpec,
    VerificationStrategy,
    default_trim_fraction,
    get_route,
)
from mountainshift.src.errors import UnknownRouteError
from mountainshift.src.fetchers import get_available_fetchers


class TestTokenSpec:
    """Test unit conversion."""

    def test_to_units(self) -> None:
        """Decimal amounts scale by decimals."""
        usdc = TokenSpec("USDC", 6, "0xaf88d065e77c8cC2239327C5EDb3A432268e5831")
        assert usdc.to_units(Decimal("1.5")) == 1_500_000

    def test_to_units_rounds_down(self) -> None:
        """Sub-unit remainders are dropped, never rounded up."""
        usdc = TokenSpec("USDC", 6, "0xaf88d065e77c8cC2239327C5EDb3A432268e5831")
        assert usdc.to_units(Decimal("0.9999999")) == 999_999

    def test_from_units(self) -> None:
        """Base units convert back exactly."""
        rbtc = TokenSpec("RBTC", 18)
        assert rbtc.from_units(10**18 // 4) == Decimal("0.25")
        assert rbtc.is_native


class TestTrimFraction:
    """Test trim defaults."""

    def test_defaults_by_source_count(self) -> None:
        """Four or fewer sources trim 0.26, more trim 0.41."""
        assert default_trim_fraction(4) == TRIM_FRACTION_FOUR_SOURCES
        assert default_trim_fraction(3) == TRIM_FRACTION_FOUR_SOURCES
        assert default_trim_fraction(5) == TRIM_FRACTION_MANY_SOURCES
        assert default_trim_fraction(6) == TRIM_FRACTION_MANY_SOURCES

    def test_explicit_fraction_wins(self) -> None:
        """An explicit route fraction overrides the default."""
        route = get_route("ethereum")
        assert len(route.sources) == 3
        assert route.effective_trim_fraction == TRIM_FRACTION_MANY_SOURCES


class TestDefaultRoutes:
    """Test the route registry."""

    def test_all_directions_present(self) -> None:
        """Every chain has a forward and reverse route."""
        assert set(DEFAULT_ROUTES) == {
            "arbitrum",
            "arbitrum_reverse",
            "rootstock",
            "rootstock_reverse",
            "ethereum",
            "ethereum_reverse",
        }

    def test_sources_are_registered(self) -> None:
        """Routes only name registered fetchers."""
        available = set(get_available_fetchers())
        for route in DEFAULT_ROUTES.values():
            assert set(route.sources) <= available, route.name

    def test_forward_and_reverse_directions(self) -> None:
        """Stable-in routes divide, volatile-in routes multiply."""
        assert get_route("arbitrum").direction is RateDirection.DIVIDE
        assert get_route("arbitrum_reverse").direction is RateDirection.MULTIPLY
        assert get_route("rootstock_reverse").direction is RateDirection.MULTIPLY

    def test_deposit_addresses(self) -> None:
        """Every route, forward and reverse, deposits to the one shift contract."""
        expected = "0xf0f994B4A8dB86A46a1eD4F12263c795b26703Ca"
        for route in DEFAULT_ROUTES.values():
            assert route.deposit_address == expected, route.name

    def test_fee_default(self) -> None:
        """All routes charge the shared default fee."""
        assert all(r.fee_rate == DEFAULT_FEE_RATE for r in DEFAULT_ROUTES.values())

    def test_native_deposit_uses_native_strategy(self) -> None:
        """Native-asset deposits are verified from the transaction value."""
        route = get_route("ethereum_reverse")
        assert route.deposit_asset.is_native
        assert route.verification == (VerificationStrategy.NATIVE,)

    def test_minimum_deposit(self) -> None:
        """The deposit-contract route enforces a 0.5 USDC minimum."""
        assert get_route("ethereum").min_deposit == Decimal("0.5")

    def test_unknown_route(self) -> None:
        """Unknown names raise a 404-class error."""
        with pytest.raises(UnknownRouteError) as exc:
            get_route("solana")
        assert exc.value.status_code == 404

    def test_with_overrides(self) -> None:
        """Overrides return a modified copy."""
        route = get_route("arbitrum").with_overrides(fee_rate=Decimal("0.02"))
        assert route.fee_rate == Decimal("0.02")
        assert get_route("arbitrum").fee_rate == DEFAULT_FEE_RATE

    def test_pair(self) -> None:
        """Pair is base/quote."""
        assert get_route("rootstock").pair == "rbtc/usd"
