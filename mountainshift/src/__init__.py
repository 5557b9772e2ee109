"""
MountainShift - Cross-Chain Swap Settlement

This module provides the settlement pipeline for one swap:
- fetchers: Price adapters returning tagged success/failure results
- ResilientFetcher: Timeout-bounded fetching with last-known-good fallback
- ConsensusAggregator: Bottom-trimmed mean over independent quotes
- DepositVerifier: On-chain deposit confirmation
- SettlementCalculator: Lower-of-two-estimates payout with a flat fee
- PayoutDispatcher: Balance-checked payout transfers
- SettlementLedger: Replay protection keyed by deposit transaction
- SwapService: Orchestrator over the configured SwapRoutes
"""

from .ConsensusAggregator import ConsensusAggregator, ConsensusRate, compute_consensus
from .DepositVerifier import DepositEvent, DepositVerifier
from .PayoutDispatcher import PayoutDispatcher, TransferReceipt
from .Price import Price, PriceQuoteResult, is_invalid_price
from .ResilientFetcher import ResilientFetcher
from .SettlementCalculator import SettlementDecision, compute_settlement
from .SettlementLedger import SettlementLedger
from .SourceCache import SourceCache
from .SwapRoute import DEFAULT_ROUTES, RateDirection, SwapRoute, TokenSpec
from .SwapService import SwapRequest, SwapResult, SwapService

__all__ = [
    "ConsensusAggregator",
    "ConsensusRate",
    "DEFAULT_ROUTES",
    "DepositEvent",
    "DepositVerifier",
    "PayoutDispatcher",
    "Price",
    "PriceQuoteResult",
    "RateDirection",
    "ResilientFetcher",
    "SettlementDecision",
    "SettlementLedger",
    "SourceCache",
    "SwapRequest",
    "SwapResult",
    "SwapRoute",
    "SwapService",
    "TokenSpec",
    "TransferReceipt",
    "compute_consensus",
    "compute_settlement",
    "is_invalid_price",
]
