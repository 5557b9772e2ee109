"""FastAPI application exposing the swap service.

Routes:
    POST /api/shift/{route}      execute a swap for a verified deposit
    GET  /api/pricing/{route}    consensus rate of the route's pair
    GET  /api/balance/{route}    payout-asset balance of an address
    GET  /api/ftso_prices        FTSO feed listing from the Coston2 consumer
    GET  /api/health             liveness and served routes

Errors are returned as ``{"error": message}`` with the status code carried by
the raised :class:`ShiftError`; anything unexpected is a 500 with a generic
message.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .SwapService import SwapRequest, SwapService
from .errors import ShiftError
from .fetchers import BaseFetcher

logger = logging.getLogger(__name__)


class ShiftRequestBody(BaseModel):
    """Swap request body.

    Fields are loosely typed so missing or malformed values are reported by
    the service as input errors (400) rather than schema errors.
    """

    txHash: Optional[Any] = None
    depositedAmount: Optional[Any] = None
    destinationAddress: Optional[Any] = None
    userPredictedAmount: Optional[Any] = None


def _error_response(route: str, e: Exception) -> JSONResponse:
    if isinstance(e, ShiftError):
        logger.warning(f"[{route}] {type(e).__name__}: {e}")
        return JSONResponse({"error": str(e)}, status_code=e.status_code)
    logger.exception(f"[{route}] Unexpected error")
    return JSONResponse({"error": "internal server error"}, status_code=500)


def create_app(service: SwapService) -> FastAPI:
    """Build the HTTP application around a service.

    :param service: Configured swap service.
    :returns: FastAPI application.
    """
    app = FastAPI(
        title="MountainShift",
        description="Cross-chain swap settlement backed by multi-source price consensus",
        version="0.1.0",
    )
    app.state.service = service

    @app.on_event("shutdown")
    async def shutdown_event():
        """Close the HTTP client shared by the price fetchers."""
        await BaseFetcher.close_shared_client()

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "routes": sorted(service.routes),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.post("/api/shift/{route}")
    async def shift(route: str, body: ShiftRequestBody):
        """Verify a deposit and pay out the settled amount."""
        request = SwapRequest(
            tx_hash=body.txHash,
            deposited_amount=body.depositedAmount,
            destination_address=body.destinationAddress,
            user_predicted_amount=body.userPredictedAmount,
        )
        try:
            result = await service.execute_swap(route, request)
        except Exception as e:
            return _error_response(route, e)
        return {
            "success": True,
            "finalAmount": str(result.final_amount),
            "finalTxHash": result.final_tx_hash,
            "replayed": result.replayed,
        }

    @app.get("/api/pricing/{route}")
    async def pricing(route: str):
        """Current consensus rate for the route's pair."""
        try:
            swap_route = service.route(route)
            rate = await service.quote_rate(route)
        except Exception as e:
            return _error_response(route, e)
        return {
            "route": swap_route.name,
            "pair": swap_route.pair,
            "price": str(rate.value),
            "used": rate.used_count,
            "discarded": rate.discarded_count,
            "sources": [{"source": s, "price": str(v)} for s, v in rate.sources],
            "dropped": [{"source": s, "price": str(v)} for s, v in rate.dropped],
        }

    @app.get("/api/balance/{route}")
    async def balance(route: str, address: str = ""):
        """Balance of the route's payout asset held by ``address``."""
        try:
            swap_route = service.route(route)
            amount = await service.payout_balance(route, address)
        except Exception as e:
            return _error_response(route, e)
        return {
            "route": swap_route.name,
            "address": address,
            "asset": swap_route.payout_asset.symbol,
            "chain": swap_route.payout_chain,
            "balance": str(amount),
        }

    @app.get("/api/ftso_prices")
    async def ftso_prices():
        """Every listed FTSO feed, missing ones flagged with ``found: false``."""
        try:
            feeds, all_symbols = await service.ftso_prices()
        except Exception as e:
            return _error_response("ftso", e)
        return {
            "prices": [
                {
                    "symbol": feed.symbol,
                    "price": format(feed.price, "f"),
                    "timestamp": feed.timestamp,
                    "updatedAt": (
                        datetime.fromtimestamp(feed.timestamp, timezone.utc).isoformat()
                        if feed.found
                        else None
                    ),
                    "found": feed.found,
                }
                for feed in feeds
            ],
            "allSymbols": all_symbols,
            "lastUpdated": datetime.now(timezone.utc).isoformat(),
        }

    return app
