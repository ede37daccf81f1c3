"""Token listing endpoint."""

from fastapi import APIRouter, Depends

from poolswap.api.contracts import TokenInfo, TokenListResponse
from poolswap.api.dependencies import get_stack
from poolswap.factory import PoolswapStack

router = APIRouter()


@router.get("/tokens", response_model=TokenListResponse)
async def list_tokens(stack: PoolswapStack = Depends(get_stack)) -> TokenListResponse:
    return TokenListResponse(
        tokens=[
            TokenInfo(
                symbol=token.symbol,
                name=token.name,
                address=token.address,
                decimals=token.decimals,
                native=token.is_native,
                requires_allowance_reset=token.requires_allowance_reset,
            )
            for token in stack.registry
        ]
    )
