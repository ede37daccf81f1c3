"""Tests for the slippage controller."""

from decimal import Decimal

import pytest

from poolswap.errors import InvalidSlippageTolerance
from poolswap.routing.base import DirectRoute, Quote, SwapLeg
from poolswap.services.slippage import SlippageController


def make_quote(output: str) -> Quote:
    return Quote(
        plan=DirectRoute(SwapLeg("ETH", "USDC", via_router=True)),
        input_amount=Decimal("1"),
        output_amount=Decimal(output),
        exchange_rate=Decimal(output),
    )


class TestMinimumOutput:
    def test_bound_from_tolerance(self):
        controller = SlippageController()

        assert controller.minimum_output(make_quote("1000"), 50) == Decimal("995")
        assert controller.minimum_output(make_quote("1000"), 0) == Decimal("1000")
        assert controller.minimum_output(make_quote("1000"), 5000) == Decimal("500")

    def test_strictly_decreasing_in_tolerance(self):
        controller = SlippageController()
        quote = make_quote("3890.123456")

        bounds = [controller.minimum_output(quote, bps) for bps in (0, 1, 10, 50, 100, 1000, 5000)]

        assert all(a > b for a, b in zip(bounds, bounds[1:]))

    @pytest.mark.parametrize("bps", [-1, 5001, 10000])
    def test_out_of_range_rejected(self, bps):
        controller = SlippageController()

        with pytest.raises(InvalidSlippageTolerance):
            controller.minimum_output(make_quote("1000"), bps)

    @pytest.mark.parametrize("bps", [Decimal("0.5"), 0.5, "50", True])
    def test_non_integer_rejected(self, bps):
        with pytest.raises(InvalidSlippageTolerance):
            SlippageController().validate_tolerance(bps)

    def test_configurable_ceiling(self):
        controller = SlippageController(max_tolerance_bps=100)

        assert controller.validate_tolerance(100) == 100
        with pytest.raises(InvalidSlippageTolerance):
            controller.validate_tolerance(101)

    def test_ceiling_must_be_valid(self):
        with pytest.raises(ValueError):
            SlippageController(max_tolerance_bps=20000)


class TestBoundForLeg:
    @pytest.mark.asyncio
    async def test_bound_uses_fresh_quote(self, calculator, chain):
        preview = await calculator.calculate("USDC", "rUSDY", Decimal("1000"))
        chain.trade("factory-stable-ng-161", "USDC", Decimal("300000"))

        fresh, bound = await SlippageController().bound_for_leg(
            calculator, preview.plan.leg, Decimal("1000"), 50
        )

        assert fresh.output_amount < preview.output_amount
        assert bound == fresh.output_amount * Decimal("9950") / Decimal("10000")

    @pytest.mark.asyncio
    async def test_tolerance_checked_before_quoting(self, calculator):
        leg = SwapLeg("ETH", "USDC", via_router=True)

        with pytest.raises(InvalidSlippageTolerance):
            await SlippageController().bound_for_leg(calculator, leg, Decimal("1"), 9000)
