"""Slippage tolerance -> minimum-output bound."""

import logging
from decimal import Decimal

from poolswap.errors import InvalidSlippageTolerance
from poolswap.routing.base import Quote, SwapLeg
from poolswap.routing.calculator import RouteCalculator

logger = logging.getLogger(__name__)

BPS_DENOMINATOR = 10_000


class SlippageController:
    """Derives minimum-output bounds from quotes taken at submission time."""

    def __init__(self, max_tolerance_bps: int = 5000):
        if not 0 <= max_tolerance_bps <= BPS_DENOMINATOR:
            raise ValueError(f"max_tolerance_bps must be within 0..{BPS_DENOMINATOR}")
        self.max_tolerance_bps = max_tolerance_bps

    def validate_tolerance(self, tolerance_bps: int) -> int:
        """Reject, never clamp, a tolerance outside ``0..max_tolerance_bps``."""
        if isinstance(tolerance_bps, bool) or not isinstance(tolerance_bps, int):
            raise InvalidSlippageTolerance(f"Tolerance must be whole basis points, got {tolerance_bps!r}")
        if tolerance_bps < 0 or tolerance_bps > self.max_tolerance_bps:
            raise InvalidSlippageTolerance(
                f"Tolerance {tolerance_bps} bps outside 0..{self.max_tolerance_bps} bps"
            )
        return tolerance_bps

    def minimum_output(self, fresh_quote: Quote, tolerance_bps: int) -> Decimal:
        tolerance_bps = self.validate_tolerance(tolerance_bps)
        return fresh_quote.output_amount * (BPS_DENOMINATOR - tolerance_bps) / BPS_DENOMINATOR

    async def bound_for_leg(
        self,
        calculator: RouteCalculator,
        leg: SwapLeg,
        amount_in: Decimal,
        tolerance_bps: int,
    ) -> tuple[Quote, Decimal]:
        """Re-quote ``leg`` now and return the fresh quote with its bound."""
        self.validate_tolerance(tolerance_bps)
        fresh = await calculator.quote_leg(leg, amount_in)
        bound = self.minimum_output(fresh, tolerance_bps)
        logger.debug(
            f"Bound for {leg.describe()}: {amount_in} -> min {bound} "
            f"(quoted {fresh.output_amount}, {tolerance_bps} bps)"
        )
        return fresh, bound
