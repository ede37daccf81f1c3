"""Request and response contracts for the HTTP API."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from poolswap.routing.base import SwapDirection


class QuoteRequest(BaseModel):
    """Request for a swap quote."""

    from_asset: str = Field(..., description="Source token symbol (e.g., ETH, USDC)")
    to_asset: str = Field(..., description="Destination token symbol")
    amount: Decimal = Field(..., gt=0, description="Input amount, or desired output when reverse")
    direction: SwapDirection = Field(
        default=SwapDirection.FORWARD, description="forward = amount in, reverse = amount out"
    )
    slippage_bps: Optional[int] = Field(
        default=None, description="Slippage tolerance in basis points (default from settings)"
    )


class QuoteLeg(BaseModel):
    """One leg of a quoted route."""

    token_in: str
    token_out: str
    amount_in: Decimal
    amount_out: Decimal
    via_router: bool
    pools: list[str] = Field(default_factory=list)
    spender: str


class QuoteResponse(BaseModel):
    """Response containing swap quote details."""

    success: bool = Field(..., description="Whether a route was found")
    from_asset: str = Field(..., description="Source token")
    to_asset: str = Field(..., description="Destination token")
    direction: SwapDirection = Field(default=SwapDirection.FORWARD)
    route: Optional[str] = Field(None, description="direct or multi_hop")
    path: list[str] = Field(default_factory=list, description="Token path")
    legs: list[QuoteLeg] = Field(default_factory=list)
    input_amount: Optional[Decimal] = Field(None, description="Input amount")
    output_amount: Optional[Decimal] = Field(None, description="Expected output amount")
    rate: Optional[Decimal] = Field(None, description="Output per unit of input")
    price_impact: Optional[Decimal] = Field(None, description="Price impact as a fraction")
    slippage_bps: Optional[int] = Field(None, description="Tolerance used for the bound")
    minimum_output: Optional[Decimal] = Field(None, description="Output bound at this quote")
    expires_at: Optional[int] = Field(None, description="Quote expiry timestamp")
    error: Optional[str] = Field(None, description="Error message if failed")

    class Config:
        json_encoders = {Decimal: str}


class TokenInfo(BaseModel):
    symbol: str
    name: str
    address: str
    decimals: int
    native: bool
    requires_allowance_reset: bool = False


class TokenListResponse(BaseModel):
    tokens: list[TokenInfo]
