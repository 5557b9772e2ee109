"""SwapService: orchestrates one swap from deposit to payout.

Critical path, per request:
    1. Validate the request fields
    2. Reserve the deposit in the settlement ledger (if one is configured)
    3. Verify the deposit on the deposit chain
    4. Fetch the route's pair from all its sources concurrently
    5. Reduce the quotes to one consensus rate
    6. Reconcile with the user's prediction and apply the fee
    7. Send the payout and wait for its receipt

A failure at any stage aborts the request; there is no retry at this level.
Blocking Web3 work runs in worker threads so the event loop stays responsive.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any

from web3 import Web3

from .ConsensusAggregator import ConsensusRate, compute_consensus
from .ContractUtility import ContractUtility
from .DepositVerifier import DepositEvent, DepositVerifier, normalize_tx_hash
from .PayoutDispatcher import PayoutDispatcher
from .Price import to_decimal
from .ResilientFetcher import ResilientFetcher
from .SettlementCalculator import compute_settlement, parse_prediction
from .SettlementLedger import SettlementLedger
from .SourceCache import SourceCache
from .SwapRoute import DEFAULT_FETCH_TIMEOUT, SwapRoute, get_route
from .errors import InputError, PayoutNotSentError, PriceSourceError
from .fetchers import BaseFetcher, FetcherError, get_available_fetchers, get_fetcher
from .fetchers.ftso import FeedPrice, FtsoFetcher

logger = logging.getLogger(__name__)

TX_HASH_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")


@dataclass(frozen=True)
class SwapRequest:
    """A swap request as submitted by the client.

    Fields are kept raw; :meth:`SwapService.execute_swap` validates them.
    """

    tx_hash: Any
    deposited_amount: Any
    destination_address: Any
    user_predicted_amount: Any


@dataclass(frozen=True)
class SwapResult:
    """Outcome of a completed swap.

    :ivar route: Route name.
    :ivar deposit_tx_hash: Verified deposit transaction.
    :ivar deposited_amount: Verified deposit amount.
    :ivar rate: Consensus rate used.
    :ivar final_amount: Amount paid out (after rounding to base units).
    :ivar final_tx_hash: Payout transaction hash.
    :ivar payout_asset: Payout asset symbol.
    :ivar replayed: True if served from the ledger instead of paid again.
    """

    route: str
    deposit_tx_hash: str
    deposited_amount: Decimal
    rate: Decimal
    final_amount: Decimal
    final_tx_hash: str
    payout_asset: str
    replayed: bool = False

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly form, decimals as strings."""
        data = asdict(self)
        for name in ("deposited_amount", "rate", "final_amount"):
            data[name] = str(data[name])
        data.pop("replayed")
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], replayed: bool = False) -> SwapResult:
        """Rebuild a result recorded with :meth:`to_dict`."""
        return cls(
            route=data["route"],
            deposit_tx_hash=data["deposit_tx_hash"],
            deposited_amount=Decimal(data["deposited_amount"]),
            rate=Decimal(data["rate"]),
            final_amount=Decimal(data["final_amount"]),
            final_tx_hash=data["final_tx_hash"],
            payout_asset=data["payout_asset"],
            replayed=replayed,
        )


class SwapService:
    """Swap backend for a set of routes.

    :ivar routes: Route registry by name.
    :ivar fetcher: Resilient fetch wrapper (owns the shared SourceCache).
    :ivar ledger: Optional idempotency ledger; None keeps no replay protection.
    """

    def __init__(
        self,
        routes: dict[str, SwapRoute],
        *,
        api_keys: dict[str, str] | None = None,
        fetchers: dict[str, BaseFetcher] | None = None,
        cache: SourceCache | None = None,
        fetch_timeout: float = DEFAULT_FETCH_TIMEOUT,
        verifiers: dict[str, DepositVerifier] | None = None,
        dispatchers: dict[str, PayoutDispatcher] | None = None,
        private_keys: dict[str, str] | None = None,
        ledger: SettlementLedger | None = None,
    ) -> None:
        """Initialize the service.

        :param routes: Routes to serve, by name.
        :param api_keys: Source name -> API key.
        :param fetchers: Preconstructed adapters by source (created from the
            registry when missing).
        :param cache: Last-known-good cache (default: a new one).
        :param fetch_timeout: Per-source timeout in seconds.
        :param verifiers: Preconstructed verifiers by chain.
        :param dispatchers: Preconstructed dispatchers by chain.
        :param private_keys: Chain -> payout key for dispatchers built on demand.
        :param ledger: Idempotency ledger, or None.
        :raises ValueError: If a route names an unknown source.
        """
        if not routes:
            raise ValueError("At least one route must be configured")
        self.routes = routes
        self.api_keys = api_keys or {}
        self.fetcher = ResilientFetcher(cache=cache, fetch_timeout=fetch_timeout)
        self.ledger = ledger
        self._private_keys = private_keys or {}
        self._verifiers: dict[str, DepositVerifier] = dict(verifiers or {})
        self._dispatchers: dict[str, PayoutDispatcher] = dict(dispatchers or {})
        self._fetchers: dict[str, BaseFetcher] = dict(fetchers or {})

        available = get_available_fetchers()
        for route in routes.values():
            for source in route.sources:
                if source in self._fetchers:
                    continue
                if source not in available:
                    raise ValueError(
                        f"Route {route.name}: unknown source {source}. "
                        f"Available: {available}"
                    )
                self._fetchers[source] = get_fetcher(
                    source, api_key=self.api_keys.get(source), timeout=fetch_timeout
                )

        logger.info(
            f"SwapService initialized: routes={sorted(routes)}, "
            f"sources={sorted(self._fetchers)}, fetch_timeout={fetch_timeout}s, "
            f"ledger={'on' if ledger is not None else 'off'}"
        )

    @property
    def cache(self) -> SourceCache:
        return self.fetcher.cache

    def route(self, name: str) -> SwapRoute:
        """Look up a served route.

        :raises UnknownRouteError: If the route is not served.
        """
        return get_route(name, self.routes)

    def verifier(self, chain: str) -> DepositVerifier:
        """Deposit verifier for a chain, created on first use."""
        if chain not in self._verifiers:
            self._verifiers[chain] = DepositVerifier(chain, ContractUtility(chain).w3)
        return self._verifiers[chain]

    def dispatcher(self, chain: str) -> PayoutDispatcher:
        """Payout dispatcher for a chain, created on first use."""
        if chain not in self._dispatchers:
            contracts = ContractUtility(chain, private_key=self._private_keys.get(chain))
            self._dispatchers[chain] = PayoutDispatcher(contracts)
        return self._dispatchers[chain]

    async def quote_rate(self, route_name: str) -> ConsensusRate:
        """Compute the consensus rate for a route's pair.

        :param route_name: Route name.
        :returns: Consensus rate.
        :raises ConsensusError: If too few sources produced a usable price.
        """
        route = self.route(route_name)
        fetchers = [self._fetchers[s] for s in route.sources]
        results = await self.fetcher.fetch_all(fetchers, route.base, route.quote)
        return compute_consensus(
            results, route.effective_trim_fraction, route.min_sources
        )

    async def payout_balance(self, route_name: str, address: str) -> Decimal:
        """Balance of the route's payout asset held by an address.

        :param route_name: Route name.
        :param address: EVM address.
        :returns: Balance in decimal units.
        :raises InputError: If the address is invalid.
        """
        route = self.route(route_name)
        address = self._validate_address(address)
        dispatcher = self.dispatcher(route.payout_chain)
        units = await asyncio.to_thread(
            dispatcher.get_balance, route.payout_asset, address
        )
        return route.payout_asset.from_units(units)

    async def ftso_prices(self) -> tuple[list[FeedPrice], list[str]]:
        """List the FTSO feeds published by the Coston2 consumer.

        :returns: Listed feeds and every feed name the consumer reported.
        :raises PriceSourceError: If the consumer is unconfigured or unreadable.
        """
        ftso = self._fetchers.get(FtsoFetcher.name)
        if not isinstance(ftso, FtsoFetcher):
            ftso = get_fetcher(FtsoFetcher.name, timeout=self.fetcher.fetch_timeout)
            self._fetchers[FtsoFetcher.name] = ftso
        try:
            return await ftso.list_feeds()
        except FetcherError as e:
            raise PriceSourceError(FtsoFetcher.name, str(e)) from e

    @staticmethod
    def _validate_address(address: Any) -> str:
        if not isinstance(address, str) or not Web3.is_address(address.strip()):
            raise InputError(f"invalid destination address: {address!r}")
        return Web3.to_checksum_address(address.strip())

    def _validate(
        self, route: SwapRoute, request: SwapRequest
    ) -> tuple[str, Decimal, str, Decimal]:
        tx_hash = request.tx_hash
        if not isinstance(tx_hash, str) or not TX_HASH_PATTERN.match(tx_hash.strip()):
            raise InputError(f"invalid transaction hash: {tx_hash!r}")

        try:
            declared = to_decimal(request.deposited_amount)
        except ValueError as e:
            raise InputError(
                f"invalid deposited amount: {request.deposited_amount!r}"
            ) from e
        if declared <= 0:
            raise InputError(f"deposited amount must be positive: {declared}")
        if declared < route.min_deposit:
            raise InputError(
                f"deposit amount below minimum of {route.min_deposit} "
                f"{route.deposit_asset.symbol}"
            )

        destination = self._validate_address(request.destination_address)
        prediction = parse_prediction(request.user_predicted_amount)
        return normalize_tx_hash(tx_hash), declared, destination, prediction

    async def execute_swap(self, route_name: str, request: SwapRequest) -> SwapResult:
        """Run one swap end to end.

        :param route_name: Route name.
        :param request: Client request.
        :returns: The swap result (or the recorded one for a settled deposit).
        :raises ShiftError: Subclass describing the failed stage.
        """
        route = self.route(route_name)
        tx_hash, declared, destination, prediction = self._validate(route, request)

        key = None
        if self.ledger is not None:
            key = SettlementLedger.key(route.deposit_chain, tx_hash)
            recorded = self.ledger.begin(key)
            if recorded is not None:
                return SwapResult.from_dict(recorded, replayed=True)

        payout_started = False
        try:
            deposit: DepositEvent = await asyncio.to_thread(
                self.verifier(route.deposit_chain).verify_deposit,
                tx_hash,
                route.deposit_address,
                route.deposit_asset,
                route.verification,
            )
            if deposit.amount != declared:
                logger.warning(
                    f"[{route.name}] Declared deposit {declared} differs from "
                    f"on-chain {deposit.amount}; using on-chain amount"
                )
            if deposit.amount < route.min_deposit:
                raise InputError(
                    f"deposit amount below minimum of {route.min_deposit} "
                    f"{route.deposit_asset.symbol}"
                )

            rate = await self.quote_rate(route.name)
            decision = compute_settlement(
                deposit.amount,
                rate.value,
                prediction,
                fee_rate=route.fee_rate,
                direction=route.direction,
            )

            dispatcher = self.dispatcher(route.payout_chain)
            payout_started = True
            receipt = await asyncio.to_thread(
                dispatcher.dispatch_payout,
                destination,
                decision.final_amount,
                route.payout_asset,
            )
        except (InputError, PayoutNotSentError):
            # Nothing was broadcast; safe to resubmit
            payout_started = False
            raise
        finally:
            # A payout that may have been broadcast keeps its reservation
            if key is not None and not payout_started:
                self.ledger.release(key)

        result = SwapResult(
            route=route.name,
            deposit_tx_hash=tx_hash,
            deposited_amount=deposit.amount,
            rate=rate.value,
            final_amount=receipt.amount,
            final_tx_hash=receipt.tx_hash,
            payout_asset=route.payout_asset.symbol,
        )
        if key is not None:
            self.ledger.complete(key, result.to_dict())
        logger.info(
            f"[{route.name}] Paid {result.final_amount} {result.payout_asset} to "
            f"{destination}: {result.final_tx_hash}"
        )
        return result
