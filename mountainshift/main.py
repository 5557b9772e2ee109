#!/usr/bin/env python3
"""MountainShift swap backend.

Verifies user deposits on the source chain, prices the swap from a trimmed
mean of independent price sources, and pays out on the destination chain.

Every flag falls back to an environment variable of the same name in upper
snake case (``--fee-rate`` -> ``FEE_RATE``); flags win. Payout wallets are read
from ``<CHAIN>_PRIVATE_KEY`` and RPC endpoints from ``<CHAIN>_RPC_URL``.
"""

import argparse
import logging
import os
import sys
from decimal import Decimal, InvalidOperation

import uvicorn

from .src.SettlementLedger import SettlementLedger
from .src.SwapRoute import (
    DEFAULT_FEE_RATE,
    DEFAULT_FETCH_TIMEOUT,
    DEFAULT_MIN_SOURCES,
    DEFAULT_ROUTES,
    SwapRoute,
)
from .src.SwapService import SwapService
from .src.api import create_app
from .src.fetchers import get_available_fetchers

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

API_KEY_ENV_PREFIX = "API_KEY_"


def split_csv(value: str | None) -> list[str]:
    """Split a comma-separated option, dropping blanks."""
    return [item.strip() for item in (value or "").split(",") if item.strip()]


def parse_api_keys(api_key_str: str | None) -> dict[str, str]:
    """Parse ``source=key`` pairs, e.g. ``coingecko=demo:abc,coinmarketcap=xyz``.

    Only the first ``=`` separates, so keys may contain ``=``. Items without
    one are ignored.

    :param api_key_str: Comma-separated pairs.
    :returns: Source name (lowercased) -> key.
    """
    pairs = (item.partition("=") for item in split_csv(api_key_str))
    return {
        source.strip().lower(): key.strip()
        for source, sep, key in pairs
        if sep and source.strip()
    }


def parse_env_api_keys() -> dict[str, str]:
    """Collect keys from ``API_KEY_<SOURCE>`` variables, skipping empty ones."""
    return {
        name[len(API_KEY_ENV_PREFIX):].lower(): value
        for name, value in os.environ.items()
        if name.startswith(API_KEY_ENV_PREFIX) and value
    }


def parse_private_keys(chains: set[str]) -> dict[str, str]:
    """Collect payout keys from ``<CHAIN>_PRIVATE_KEY`` for the given chains."""
    keys = {chain: os.environ.get(f"{chain.upper()}_PRIVATE_KEY") for chain in chains}
    return {chain: key for chain, key in keys.items() if key}


def build_routes(
    names: list[str],
    sources: list[str] | None,
    fee_rate: Decimal | None,
    min_sources: int | None,
) -> dict[str, SwapRoute]:
    """Select routes by name and apply the CLI overrides to each.

    :param names: Route names, in serving order.
    :param sources: Source list replacing every route's own, or None.
    :param fee_rate: Fee replacing the default, or None.
    :param min_sources: Consensus minimum replacing the default, or None.
    :returns: Route name -> route.
    :raises ValueError: If a route name is unknown.
    """
    unknown = [name for name in names if name not in DEFAULT_ROUTES]
    if unknown:
        raise ValueError(
            f"Unknown route {', '.join(unknown)}. "
            f"Available: {', '.join(sorted(DEFAULT_ROUTES))}"
        )
    overrides = {
        "sources": tuple(sources) if sources else None,
        "fee_rate": fee_rate,
        "min_sources": min_sources,
    }
    changes = {field: value for field, value in overrides.items() if value is not None}
    return {name: DEFAULT_ROUTES[name].with_overrides(**changes) for name in names}


def build_parser() -> argparse.ArgumentParser:
    """Command-line parser; defaults are read from the environment at call time."""
    env = os.environ.get
    available_sources = ", ".join(get_available_fetchers())

    parser = argparse.ArgumentParser(
        description="MountainShift: cross-chain swap settlement backend",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Routes:         {', '.join(DEFAULT_ROUTES)}
Price sources:  {available_sources}

Examples:
  # Serve every route with its default sources
  python -m mountainshift.main

  # Arbitrum routes only, persisting settled deposits
  python -m mountainshift.main --routes arbitrum,arbitrum_reverse \\
      --ledger-path settlements.json

Other environment variables:
  API_KEY_<SOURCE>, <CHAIN>_RPC_URL, <CHAIN>_PRIVATE_KEY, FTSO_CONSUMER_ADDRESS
""",
    )
    parser.add_argument(
        "--routes",
        default=env("ROUTES") or ",".join(DEFAULT_ROUTES),
        help="Comma-separated routes to serve (default: all)",
    )
    parser.add_argument(
        "--sources",
        default=env("SOURCES"),
        help=f"Comma-separated price sources for every route. Available: {available_sources}",
    )
    parser.add_argument(
        "--fetch-timeout",
        type=float,
        default=env("FETCH_TIMEOUT") or DEFAULT_FETCH_TIMEOUT,
        help=f"Per-source fetch timeout in seconds (default: {DEFAULT_FETCH_TIMEOUT})",
    )
    parser.add_argument(
        "--fee-rate",
        default=env("FEE_RATE"),
        help=f"Flat payout fee in [0, 1) (default: {DEFAULT_FEE_RATE})",
    )
    parser.add_argument(
        "--min-sources",
        type=int,
        default=env("MIN_SOURCES"),
        help=f"Minimum valid quotes for a consensus (default: {DEFAULT_MIN_SOURCES})",
    )
    parser.add_argument("--host", default=env("HOST") or "0.0.0.0", help="Bind address")
    parser.add_argument("--port", type=int, default=env("PORT") or 8000, help="Bind port")
    parser.add_argument(
        "--ledger-path",
        default=env("LEDGER_PATH"),
        help="JSON file recording settled deposits (default: in memory)",
    )
    parser.add_argument(
        "--no-ledger",
        action="store_true",
        help="Disable replay protection; a resubmitted deposit is paid again",
    )
    parser.add_argument(
        "--api-keys",
        default=env("API_KEYS"),
        help="Comma-separated source=key pairs (e.g., coingecko=demo:abc)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable DEBUG logging"
    )
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse and validate the command line.

    Adds ``fee``, ``source_list`` and ``route_table`` to the namespace; exits
    through ``parser.error`` on invalid input.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.fetch_timeout <= 0:
        parser.error("--fetch-timeout must be positive")
    if args.min_sources is not None and args.min_sources < 1:
        parser.error("--min-sources must be at least 1")

    args.fee = None
    if args.fee_rate is not None:
        try:
            args.fee = Decimal(args.fee_rate)
        except InvalidOperation:
            parser.error(f"--fee-rate must be a number, got {args.fee_rate!r}")
        if not 0 <= args.fee < 1:
            parser.error("--fee-rate must be in [0, 1)")

    args.source_list = [s.lower() for s in split_csv(args.sources)] or None
    unknown = set(args.source_list or ()) - set(get_available_fetchers())
    if unknown:
        parser.error(f"Unknown sources: {', '.join(sorted(unknown))}")

    route_names = split_csv(args.routes)
    if not route_names:
        parser.error("At least one route must be specified")
    try:
        args.route_table = build_routes(
            route_names, args.source_list, args.fee, args.min_sources
        )
    except ValueError as e:
        parser.error(str(e))
    return args


def build_service(args: argparse.Namespace) -> SwapService:
    """Create the swap service described by parsed arguments."""
    routes = args.route_table
    api_keys = {**parse_env_api_keys(), **parse_api_keys(args.api_keys)}
    payout_chains = {route.payout_chain for route in routes.values()}
    private_keys = parse_private_keys(payout_chains)

    logger.info("=" * 60)
    logger.info("MountainShift - Swap Settlement Backend")
    logger.info("=" * 60)
    for route in routes.values():
        logger.info(f"Route:          {route} via {', '.join(route.sources)}")
    logger.info(f"Fetch timeout:  {args.fetch_timeout}s")
    if args.no_ledger:
        logger.warning("Ledger:         disabled, resubmitted deposits are paid again")
    else:
        logger.info(f"Ledger:         {args.ledger_path or 'in memory'}")
    if api_keys:
        logger.info(f"API keys for:   {', '.join(sorted(api_keys))}")
    missing = sorted(payout_chains - set(private_keys))
    if missing:
        logger.warning(f"No payout key for {', '.join(missing)}; payouts there will fail")
    logger.info("=" * 60)

    return SwapService(
        routes,
        api_keys=api_keys,
        fetch_timeout=args.fetch_timeout,
        private_keys=private_keys,
        ledger=None if args.no_ledger else SettlementLedger(args.ledger_path),
    )


def main(argv: list[str] | None = None) -> None:
    """Entry point: parse options, build the service and serve HTTP."""
    args = parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        service = build_service(args)
        uvicorn.run(create_app(service), host=args.host, port=args.port)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
