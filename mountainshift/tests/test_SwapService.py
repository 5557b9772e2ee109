"""Tests for the swap orchestration, end to end against an in-memory chain."""

from decimal import Decimal

import pytest

from conftest import (
    ARB_ADDRESS,
    DEPOSIT_ADDRESS,
    PAYOUT_ADDRESS,
    PAYOUT_KEY,
    TX_HASH,
    USDC_ADDRESS,
    USER_ADDRESS,
    StaticFetcher,
    receipt,
    transfer_log,
)
from mountainshift.src.ContractUtility import ContractUtility
from mountainshift.src.DepositVerifier import DepositVerifier
from mountainshift.src.PayoutDispatcher import PayoutDispatcher
from mountainshift.src.SettlementLedger import COMPLETED, IN_PROGRESS, SettlementLedger
from mountainshift.src.SwapRoute import get_route
from mountainshift.src.SwapService import SwapRequest, SwapResult, SwapService
from mountainshift.src.errors import (
    DuplicateSettlementError,
    InputError,
    InsufficientDataError,
    InsufficientFundsError,
    InvalidPredictionError,
    PayoutNotSentError,
    PriceSourceError,
    TransferFailedError,
    TxNotFoundError,
    UnknownRouteError,
)

ROUTE = get_route("arbitrum").with_overrides(sources=("a", "b", "c", "d"))
KEY = SettlementLedger.key("arbitrum", TX_HASH)


def make_fetchers(*values):
    return {name: StaticFetcher(name, value) for name, value in zip("abcd", values)}


def make_request(deposited="100", prediction="60", tx_hash=TX_HASH, destination=USER_ADDRESS):
    return SwapRequest(
        tx_hash=tx_hash,
        deposited_amount=deposited,
        destination_address=destination,
        user_predicted_amount=prediction,
    )


@pytest.fixture
def chain(fake_w3):
    """A mined 100 USDC deposit and a payout wallet holding 1000 ARB."""
    fake_w3.eth.receipts[TX_HASH] = receipt(
        [transfer_log(USDC_ADDRESS, USER_ADDRESS, DEPOSIT_ADDRESS, 100 * 10**6)]
    )
    fake_w3.eth.token_balances[(ARB_ADDRESS.lower(), PAYOUT_ADDRESS.lower())] = (
        1000 * 10**18
    )
    return fake_w3


def make_service(w3, route=ROUTE, values=(1.9, 2, 2, 2), ledger=None):
    return SwapService(
        {route.name: route},
        fetchers=make_fetchers(*values),
        verifiers={"arbitrum": DepositVerifier("arbitrum", w3)},
        dispatchers={
            "arbitrum": PayoutDispatcher(
                ContractUtility("arbitrum", private_key=PAYOUT_KEY, w3=w3)
            )
        },
        ledger=ledger,
    )


class TestExecuteSwap:
    """Test the happy path."""

    @pytest.mark.asyncio
    async def test_pays_out_fee_adjusted_amount(self, chain) -> None:
        """100 USDC at 2 USD/ARB is 50 ARB; the 1% fee leaves 49.5."""
        service = make_service(chain)
        result = await service.execute_swap("arbitrum", make_request())

        assert result.rate == Decimal("2")
        assert result.deposited_amount == Decimal("100")
        assert result.final_amount == Decimal("49.5")
        assert result.payout_asset == "ARB"
        assert not result.replayed

        (sent,) = chain.eth.sent
        assert sent["token"] == ARB_ADDRESS
        assert sent["to"] == USER_ADDRESS
        assert sent["value"] == 495 * 10**17
        assert sent["from"] == PAYOUT_ADDRESS
        assert result.final_tx_hash == "0x" + "01" * 32

    @pytest.mark.asyncio
    async def test_lower_prediction_wins(self, chain) -> None:
        """The smaller of estimate and prediction is paid."""
        service = make_service(chain)
        result = await service.execute_swap("arbitrum", make_request(prediction="40"))
        assert result.final_amount == Decimal("39.6")

    @pytest.mark.asyncio
    async def test_on_chain_amount_is_authoritative(self, chain) -> None:
        """A declared amount that differs from the chain is ignored."""
        service = make_service(chain)
        result = await service.execute_swap(
            "arbitrum", make_request(deposited="1000", prediction="1000")
        )
        assert result.deposited_amount == Decimal("100")
        assert result.final_amount == Decimal("49.5")

    @pytest.mark.asyncio
    async def test_unprefixed_hash(self, chain) -> None:
        """Hashes must carry the 0x prefix."""
        service = make_service(chain)
        with pytest.raises(InputError):
            await service.execute_swap("arbitrum", make_request(tx_hash=TX_HASH[2:]))


class TestIdempotency:
    """Test replay protection through the settlement ledger."""

    @pytest.mark.asyncio
    async def test_replay_returns_recorded_result(self, chain) -> None:
        """A settled deposit is answered from the ledger without paying again."""
        ledger = SettlementLedger()
        service = make_service(chain, ledger=ledger)

        first = await service.execute_swap("arbitrum", make_request())
        second = await service.execute_swap("arbitrum", make_request())

        assert len(chain.eth.sent) == 1
        assert ledger.status(KEY) == COMPLETED
        assert second.replayed
        assert second.final_tx_hash == first.final_tx_hash
        assert second.final_amount == first.final_amount

    @pytest.mark.asyncio
    async def test_without_ledger_pays_twice(self, chain) -> None:
        """Without a ledger nothing stops a resubmitted deposit."""
        service = make_service(chain)
        await service.execute_swap("arbitrum", make_request())
        await service.execute_swap("arbitrum", make_request())
        assert len(chain.eth.sent) == 2

    @pytest.mark.asyncio
    async def test_in_progress_is_rejected(self, chain) -> None:
        """A second request for a deposit being settled gets a conflict."""
        ledger = SettlementLedger()
        ledger.begin(KEY)
        service = make_service(chain, ledger=ledger)

        with pytest.raises(DuplicateSettlementError) as exc_info:
            await service.execute_swap("arbitrum", make_request())
        assert exc_info.value.status_code == 409
        assert chain.eth.sent == []

    @pytest.mark.asyncio
    async def test_verification_failure_releases(self, fake_w3) -> None:
        """An unknown deposit can be resubmitted once it is mined."""
        ledger = SettlementLedger()
        service = make_service(fake_w3, ledger=ledger)

        with pytest.raises(TxNotFoundError):
            await service.execute_swap("arbitrum", make_request())
        assert ledger.status(KEY) is None

    @pytest.mark.asyncio
    async def test_insufficient_funds_releases(self, chain) -> None:
        """Nothing was broadcast, so the deposit stays resubmittable."""
        chain.eth.token_balances.clear()
        ledger = SettlementLedger()
        service = make_service(chain, ledger=ledger)

        with pytest.raises(InsufficientFundsError):
            await service.execute_swap("arbitrum", make_request())
        assert ledger.status(KEY) is None
        assert chain.eth.sent == []

    @pytest.mark.asyncio
    async def test_missing_wallet_releases(self, chain) -> None:
        """A deposit refused for lack of a payout wallet is paid once one exists."""
        ledger = SettlementLedger()
        unfunded = make_service(chain, ledger=ledger)
        unfunded._dispatchers["arbitrum"] = PayoutDispatcher(
            ContractUtility("arbitrum", w3=chain)
        )

        with pytest.raises(PayoutNotSentError, match="not configured"):
            await unfunded.execute_swap("arbitrum", make_request())
        assert ledger.status(KEY) is None
        assert chain.eth.sent == []

        result = await make_service(chain, ledger=ledger).execute_swap(
            "arbitrum", make_request()
        )
        assert result.final_amount == Decimal("49.5")
        assert ledger.status(KEY) == COMPLETED

    @pytest.mark.asyncio
    async def test_balance_read_failure_releases(self, chain) -> None:
        """An RPC error before broadcasting leaves the deposit resubmittable."""
        ledger = SettlementLedger()
        service = make_service(chain, ledger=ledger)

        def refuse(asset, address=None):
            raise ConnectionError("node unreachable")

        service.dispatcher("arbitrum").get_balance = refuse
        with pytest.raises(PayoutNotSentError):
            await service.execute_swap("arbitrum", make_request())
        assert ledger.status(KEY) is None
        assert chain.eth.sent == []

    @pytest.mark.asyncio
    async def test_failed_payout_keeps_reservation(self, chain) -> None:
        """A payout that may be on chain blocks automatic resubmission."""
        chain.eth.payout_status = 0
        ledger = SettlementLedger()
        service = make_service(chain, ledger=ledger)

        with pytest.raises(TransferFailedError):
            await service.execute_swap("arbitrum", make_request())
        assert ledger.status(KEY) == IN_PROGRESS


class TestFailures:
    """Test that failing stages abort before paying."""

    @pytest.mark.asyncio
    async def test_consensus_failure_sends_nothing(self, chain) -> None:
        """Two of four sources are not enough."""
        ledger = SettlementLedger()
        service = make_service(chain, values=(2, 2, None, None), ledger=ledger)

        with pytest.raises(InsufficientDataError) as exc_info:
            await service.execute_swap("arbitrum", make_request())
        assert exc_info.value.status_code == 500
        assert chain.eth.sent == []
        assert ledger.status(KEY) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "request_",
        [
            make_request(tx_hash="0x1234"),
            make_request(tx_hash=None),
            make_request(deposited="0"),
            make_request(deposited="abc"),
            make_request(destination="0xnot-an-address"),
            make_request(destination=None),
        ],
    )
    async def test_invalid_request(self, chain, request_) -> None:
        """Malformed fields are rejected before any chain access."""
        service = make_service(chain)
        with pytest.raises(InputError) as exc_info:
            await service.execute_swap("arbitrum", request_)
        assert exc_info.value.status_code == 400
        assert chain.eth.sent == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("prediction", [None, "", "abc", "0", "-5"])
    async def test_invalid_prediction(self, chain, prediction) -> None:
        """The prediction is mandatory and positive."""
        service = make_service(chain)
        with pytest.raises(InvalidPredictionError):
            await service.execute_swap("arbitrum", make_request(prediction=prediction))

    @pytest.mark.asyncio
    async def test_declared_amount_below_minimum(self, chain) -> None:
        """The minimum is checked against the declared amount first."""
        route = ROUTE.with_overrides(min_deposit=Decimal("150"))
        service = make_service(chain, route=route)
        with pytest.raises(InputError, match="below minimum"):
            await service.execute_swap("arbitrum", make_request())

    @pytest.mark.asyncio
    async def test_verified_amount_below_minimum(self, chain) -> None:
        """The minimum is checked again against the verified amount."""
        route = ROUTE.with_overrides(min_deposit=Decimal("150"))
        ledger = SettlementLedger()
        service = make_service(chain, route=route, ledger=ledger)
        with pytest.raises(InputError, match="below minimum"):
            await service.execute_swap("arbitrum", make_request(deposited="200"))
        assert ledger.status(KEY) is None
        assert chain.eth.sent == []

    @pytest.mark.asyncio
    async def test_unknown_route(self, chain) -> None:
        """Routes not served are a 404."""
        service = make_service(chain)
        with pytest.raises(UnknownRouteError) as exc_info:
            await service.execute_swap("solana", make_request())
        assert exc_info.value.status_code == 404


class TestQueries:
    """Test the read-only operations."""

    @pytest.mark.asyncio
    async def test_quote_rate(self, chain) -> None:
        """The lowest quote is trimmed for four sources."""
        service = make_service(chain)
        rate = await service.quote_rate("arbitrum")
        assert rate.value == Decimal("2")
        assert rate.used_count == 3
        assert rate.discarded_count == 1
        assert rate.dropped == (("a", Decimal("1.9")),)

    @pytest.mark.asyncio
    async def test_quote_rate_refreshes_cache(self, chain) -> None:
        """Successful quotes land in the shared cache."""
        service = make_service(chain)
        await service.quote_rate("arbitrum")
        assert service.cache.get("a", "arb", "usd").value == Decimal("1.9")

    @pytest.mark.asyncio
    async def test_payout_balance(self, chain) -> None:
        """Balances are reported in decimal units of the payout asset."""
        service = make_service(chain)
        balance = await service.payout_balance("arbitrum", PAYOUT_ADDRESS.lower())
        assert balance == Decimal("1000")

    @pytest.mark.asyncio
    async def test_payout_balance_invalid_address(self, chain) -> None:
        """Addresses are validated."""
        service = make_service(chain)
        with pytest.raises(InputError):
            await service.payout_balance("arbitrum", "nope")

    @pytest.mark.asyncio
    async def test_ftso_prices_unconfigured(self, chain, monkeypatch) -> None:
        """The FTSO reader is built on demand; an unconfigured one is a source error."""
        monkeypatch.delenv("FTSO_CONSUMER_ADDRESS", raising=False)
        service = make_service(chain)
        with pytest.raises(PriceSourceError) as exc_info:
            await service.ftso_prices()
        assert exc_info.value.source == "ftso"
        assert exc_info.value.status_code == 500


class TestConstruction:
    """Test service construction."""

    def test_unknown_source(self) -> None:
        """Routes may only name registered sources."""
        with pytest.raises(ValueError, match="unknown source"):
            SwapService({"arbitrum": ROUTE})

    def test_registry_sources(self) -> None:
        """Registered sources are built with the API keys and timeout."""
        service = SwapService(
            {"arbitrum": get_route("arbitrum")},
            api_keys={"coinmarketcap": "secret"},
            fetch_timeout=4.0,
        )
        assert service._fetchers["coinmarketcap"].api_key == "secret"
        assert service._fetchers["okx"].timeout == 4.0

    def test_requires_routes(self) -> None:
        """An empty route table is a configuration error."""
        with pytest.raises(ValueError):
            SwapService({})

    def test_result_round_trip(self) -> None:
        """Recorded results rebuild with exact decimals."""
        result = SwapResult(
            "arbitrum", TX_HASH, Decimal("100"), Decimal("2"), Decimal("49.5"),
            "0x01", "ARB",
        )
        restored = SwapResult.from_dict(result.to_dict(), replayed=True)
        assert restored.final_amount == Decimal("49.5")
        assert restored.replayed
