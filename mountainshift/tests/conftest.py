"""Shared fakes for the test suites: static price adapters and an in-memory chain."""

import asyncio
from decimal import Decimal

import httpx
import pytest
from eth_abi import encode
from web3.exceptions import TransactionNotFound

from mountainshift.src.DepositVerifier import DEPOSIT_PROCESSED_TOPIC, TRANSFER_TOPIC
from mountainshift.src.Price import Price, PriceQuoteResult
from mountainshift.src.fetchers import BaseFetcher

# Hardhat's first development account
PAYOUT_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
PAYOUT_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"

DEPOSIT_ADDRESS = "0xf0f994B4A8dB86A46a1eD4F12263c795b26703Ca"
USER_ADDRESS = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
OTHER_ADDRESS = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"
USDC_ADDRESS = "0xaf88d065e77c8cC2239327C5EDb3A432268e5831"
ARB_ADDRESS = "0x912CE59144191C1204E64559FE8253a0e49E6548"

TX_HASH = "0x" + "ab" * 32


class StaticFetcher(BaseFetcher):
    """Adapter returning a fixed value, or failing when the value is None."""

    def __init__(self, name, value=None, reason="source down", delay=0.0):
        super().__init__()
        self.name = name
        self.value = value
        self.reason = reason
        self.delay = delay
        self.calls = 0

    async def fetch(self, base, quote):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.value is None:
            return PriceQuoteResult.failed(self.name, self.reason)
        return PriceQuoteResult.success(Price(Decimal(str(self.value)), self.name))

    async def fetch_raw(self, base, quote):
        return self.value


def address_topic(address):
    return b"\x00" * 12 + bytes.fromhex(address[2:])


def transfer_log(token, sender, to, amount):
    return {
        "address": token,
        "topics": [TRANSFER_TOPIC, address_topic(sender), address_topic(to)],
        "data": encode(["uint256"], [amount]),
    }


def deposit_log(contract, depositor, recipient, amount, proof=b"proof"):
    return {
        "address": contract,
        "topics": [
            DEPOSIT_PROCESSED_TOPIC,
            address_topic(depositor),
            address_topic(recipient),
        ],
        "data": encode(["uint256", "bytes"], [amount, proof]),
    }


def receipt(logs, status=1, block_number=100):
    return {"status": status, "blockNumber": block_number, "logs": logs}


class _Call:
    def __init__(self, result=None, on_transact=None):
        self.result = result
        self.on_transact = on_transact

    def call(self):
        return self.result

    def transact(self, tx=None):
        return self.on_transact(tx or {})


class _TokenFunctions:
    def __init__(self, eth, address):
        self.eth = eth
        self.address = address

    def balanceOf(self, owner):
        return _Call(self.eth.token_balances.get((self.address.lower(), owner.lower()), 0))

    def transfer(self, to, units):
        def send(tx):
            return self.eth.broadcast({"token": self.address, "to": to, "value": units, **tx})

        return _Call(on_transact=send)


class _Contract:
    def __init__(self, eth, address):
        self.functions = _TokenFunctions(eth, address)


class FakeEth:
    """In-memory subset of ``w3.eth`` used by the verifier and dispatcher."""

    def __init__(self):
        self.receipts = {}
        self.transactions = {}
        self.balances = {}
        self.token_balances = {}
        self.sent = []
        self.payout_status = 1
        self.default_account = None

    def get_transaction_receipt(self, tx_hash):
        if tx_hash not in self.receipts:
            raise TransactionNotFound(f"Transaction with hash: '{tx_hash}' not found.")
        return self.receipts[tx_hash]

    def get_transaction(self, tx_hash):
        if tx_hash not in self.transactions:
            raise TransactionNotFound(f"Transaction with hash: '{tx_hash}' not found.")
        return self.transactions[tx_hash]

    def get_balance(self, address):
        return self.balances.get(address.lower(), 0)

    def contract(self, address, abi):
        return _Contract(self, address)

    def broadcast(self, tx):
        self.sent.append(tx)
        return bytes([len(self.sent)]) * 32

    def send_transaction(self, tx):
        return self.broadcast(dict(tx))

    def wait_for_transaction_receipt(self, tx_hash, timeout=None):
        return {"status": self.payout_status, "blockNumber": 200}


class _Onion:
    def __init__(self):
        self.added = []

    def add(self, middleware):
        self.added.append(middleware)


class FakeWeb3:
    def __init__(self):
        self.eth = FakeEth()
        self.middleware_onion = _Onion()


@pytest.fixture
def fake_w3():
    return FakeWeb3()


@pytest.fixture
def mock_http():
    """Install a shared httpx client backed by a request handler."""

    def install(handler):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        BaseFetcher.set_shared_client(client)
        return client

    yield install
    BaseFetcher.set_shared_client(None)
