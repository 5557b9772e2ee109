"""Tests for the CLI configuration helpers."""

from decimal import Decimal

import pytest

from mountainshift.main import (
    build_routes,
    parse_api_keys,
    parse_args,
    parse_env_api_keys,
    parse_private_keys,
)


class TestApiKeys:
    """Test API key parsing."""

    def test_parse_api_keys(self) -> None:
        """Keys are split on the first '=' and sources lowercased."""
        keys = parse_api_keys("CoinGecko=demo:CG-x=y, coinmarketcap=abc,,junk")
        assert keys == {"coingecko": "demo:CG-x=y", "coinmarketcap": "abc"}

    def test_parse_empty(self) -> None:
        """No string means no keys."""
        assert parse_api_keys(None) == {}
        assert parse_api_keys("") == {}

    def test_env_keys(self, monkeypatch) -> None:
        """API_KEY_<SOURCE> variables are collected, empty ones skipped."""
        monkeypatch.setenv("API_KEY_COINMARKETCAP", "secret")
        monkeypatch.setenv("API_KEY_COINGECKO", "")
        keys = parse_env_api_keys()
        assert keys["coinmarketcap"] == "secret"
        assert "coingecko" not in keys

    def test_private_keys(self, monkeypatch) -> None:
        """Only chains with a configured key are returned."""
        monkeypatch.setenv("ROOTSTOCK_PRIVATE_KEY", "0x01")
        monkeypatch.delenv("ARBITRUM_PRIVATE_KEY", raising=False)
        assert parse_private_keys({"rootstock", "arbitrum"}) == {"rootstock": "0x01"}


class TestBuildRoutes:
    """Test route selection and overrides."""

    def test_defaults(self) -> None:
        """Routes keep their defaults without overrides."""
        routes = build_routes(["arbitrum", "ethereum"], None, None, None)
        assert list(routes) == ["arbitrum", "ethereum"]
        assert routes["ethereum"].min_deposit == Decimal("0.5")

    def test_overrides(self) -> None:
        """Sources, fee and minimum sources apply to every selected route."""
        routes = build_routes(
            ["arbitrum", "rootstock"], ["okx", "kraken", "coinbase"], Decimal("0.02"), 2
        )
        for route in routes.values():
            assert route.sources == ("okx", "kraken", "coinbase")
            assert route.fee_rate == Decimal("0.02")
            assert route.min_sources == 2

    def test_unknown_route(self) -> None:
        """Unknown route names are rejected."""
        with pytest.raises(ValueError, match="Unknown route"):
            build_routes(["solana"], None, None, None)


class TestParseArgs:
    """Test command-line validation."""

    def test_flags(self) -> None:
        """Flags select routes and override their settings."""
        args = parse_args(
            ["--routes", "arbitrum", "--sources", "OKX,kraken, coinbase", "--fee-rate", "0.02"]
        )
        route = args.route_table["arbitrum"]
        assert list(args.route_table) == ["arbitrum"]
        assert route.sources == ("okx", "kraken", "coinbase")
        assert route.fee_rate == Decimal("0.02")

    def test_environment_defaults(self, monkeypatch) -> None:
        """Environment variables fill in missing flags."""
        monkeypatch.setenv("ROUTES", "rootstock")
        monkeypatch.setenv("MIN_SOURCES", "4")
        monkeypatch.setenv("FETCH_TIMEOUT", "2.5")
        args = parse_args([])
        assert list(args.route_table) == ["rootstock"]
        assert args.route_table["rootstock"].min_sources == 4
        assert args.fetch_timeout == 2.5

    def test_flag_beats_environment(self, monkeypatch) -> None:
        """Flags take precedence over the environment."""
        monkeypatch.setenv("ROUTES", "rootstock")
        args = parse_args(["--routes", "ethereum"])
        assert list(args.route_table) == ["ethereum"]

    @pytest.mark.parametrize(
        "argv",
        [
            ["--fee-rate", "1"],
            ["--fee-rate", "abc"],
            ["--fetch-timeout", "0"],
            ["--min-sources", "0"],
            ["--sources", "okx,nope"],
            ["--routes", "solana"],
            ["--routes", " , "],
        ],
    )
    def test_invalid(self, argv) -> None:
        """Invalid options exit with a usage error."""
        with pytest.raises(SystemExit):
            parse_args(argv)
