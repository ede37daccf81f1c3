"""Quote endpoint. Read-only: nothing here signs or submits."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from poolswap.api.contracts import QuoteLeg, QuoteRequest, QuoteResponse
from poolswap.api.dependencies import get_stack
from poolswap.errors import (
    InvalidSlippageTolerance,
    QuotingServiceNotReady,
    SwapError,
    UnknownToken,
)
from poolswap.factory import PoolswapStack

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/quotes", response_model=QuoteResponse)
async def get_quote(
    request: QuoteRequest,
    stack: PoolswapStack = Depends(get_stack),
) -> QuoteResponse:
    """Quote a swap and the minimum-output bound at the requested tolerance."""
    slippage_bps = request.slippage_bps
    if slippage_bps is None:
        slippage_bps = stack.settings.default_slippage_bps
    try:
        stack.slippage.validate_tolerance(slippage_bps)
    except InvalidSlippageTolerance as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        quote = await stack.calculator.calculate(
            request.from_asset, request.to_asset, request.amount, request.direction
        )
    except UnknownToken as e:
        raise HTTPException(status_code=400, detail=str(e))
    except QuotingServiceNotReady as e:
        raise HTTPException(status_code=503, detail=str(e))
    except SwapError as e:
        logger.info(f"Quote failed: {e}")
        return QuoteResponse(
            success=False,
            from_asset=request.from_asset.upper(),
            to_asset=request.to_asset.upper(),
            direction=request.direction,
            error=e.user_message,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    router_address = stack.service.router_address
    legs = [
        QuoteLeg(
            token_in=leg.token_in,
            token_out=leg.token_out,
            amount_in=amount_in,
            amount_out=amount_out,
            via_router=leg.via_router,
            pools=[pool.pool_id for pool in leg.pools],
            spender=leg.spender(router_address),
        )
        for leg, (amount_in, amount_out) in zip(quote.plan.legs, quote.leg_amounts)
    ]

    return QuoteResponse(
        success=True,
        from_asset=quote.from_token,
        to_asset=quote.to_token,
        direction=quote.direction,
        route=quote.plan.kind,
        path=quote.plan.path,
        legs=legs,
        input_amount=quote.input_amount,
        output_amount=quote.output_amount,
        rate=quote.exchange_rate,
        price_impact=quote.price_impact,
        slippage_bps=slippage_bps,
        minimum_output=stack.slippage.minimum_output(quote, slippage_bps),
        expires_at=int(quote.timestamp + quote.ttl_seconds),
    )
