"""Tests for route calculation over the simulated pools."""

from decimal import Decimal

import pytest

from poolswap.chain.dry_run import SimulatedChain, default_pools
from poolswap.config import DEFAULT_ROUTER_ADDRESS as ROUTER
from poolswap.errors import NoRouteFound, QuotingServiceNotReady, UnknownToken
from poolswap.routing.base import DirectRoute, MultiHopRoute, SwapDirection
from poolswap.routing.calculator import RouteCalculator
from poolswap.routing.dry_run import SimulatedQuotingService
from poolswap.tokens import DEFAULT_TOKENS, TokenDescriptor, TokenRegistry


def _within(actual: Decimal, expected: Decimal, tolerance: Decimal) -> bool:
    return abs(actual - expected) / expected <= tolerance


class TestDirectRoutes:
    @pytest.mark.asyncio
    async def test_router_pair(self, calculator):
        quote = await calculator.calculate("ETH", "USDC", Decimal("1.5"))

        assert isinstance(quote.plan, DirectRoute)
        leg = quote.plan.leg
        assert leg.via_router
        assert [pool.pool_id for pool in leg.route] == ["factory-tricrypto-3"]
        assert leg.spender(ROUTER) == ROUTER
        assert quote.output_amount > 0
        assert quote.exchange_rate == quote.output_amount / quote.input_amount
        assert quote.price_impact is not None and quote.price_impact > 0

    @pytest.mark.asyncio
    async def test_router_finds_two_pool_path(self, calculator):
        quote = await calculator.calculate("DAI", "USDT", Decimal("1000"))

        assert isinstance(quote.plan, DirectRoute)
        assert [pool.pool_id for pool in quote.plan.leg.route] == ["3pool-usdc-dai", "3pool-usdc-usdt"]
        assert _within(quote.output_amount, Decimal("1000"), Decimal("0.01"))

    @pytest.mark.asyncio
    async def test_bridged_pair_is_single_pool_leg(self, calculator):
        quote = await calculator.calculate("USDC", "rUSDY", Decimal("100"))

        assert isinstance(quote.plan, DirectRoute)
        leg = quote.plan.leg
        assert not leg.via_router
        assert leg.pool.pool_id == "factory-stable-ng-161"
        assert leg.spender(ROUTER) == leg.pool.address

    @pytest.mark.asyncio
    async def test_output_quantized_to_token_decimals(self, calculator):
        quote = await calculator.calculate("ETH", "USDC", Decimal("0.3333"))

        assert quote.output_amount == quote.output_amount.quantize(Decimal("0.000001"))


class TestMultiHopRoutes:
    @pytest.mark.asyncio
    async def test_into_bridged_token(self, calculator):
        quote = await calculator.calculate("ETH", "rUSDY", Decimal("1"))

        assert isinstance(quote.plan, MultiHopRoute)
        assert quote.plan.intermediate_tokens == ("USDC",)
        assert quote.plan.path == ["ETH", "USDC", "rUSDY"]
        first, second = quote.plan.legs
        assert first.via_router
        assert second.pool.pool_id == "factory-stable-ng-161"

        # Leg 1 output feeds leg 2 input
        assert quote.leg_amounts[1][0] == quote.leg_amounts[0][1]
        assert quote.output_amount == quote.leg_amounts[1][1]
        assert quote.exchange_rate == quote.output_amount / Decimal("1")

    @pytest.mark.asyncio
    async def test_out_of_bridged_token(self, calculator):
        quote = await calculator.calculate("rUSDY", "ETH", Decimal("1000"))

        assert isinstance(quote.plan, MultiHopRoute)
        assert quote.plan.path == ["rUSDY", "USDC", "ETH"]
        assert not quote.plan.legs[0].via_router
        assert quote.plan.legs[1].via_router

    def test_legs_must_chain(self):
        from poolswap.routing.base import SwapLeg

        with pytest.raises(ValueError):
            MultiHopRoute(
                hops=(
                    SwapLeg("ETH", "USDC", via_router=True),
                    SwapLeg("DAI", "USDT", via_router=True),
                ),
                intermediate_tokens=("USDC",),
            )


class TestReverseQuotes:
    @pytest.mark.asyncio
    async def test_reverse_fixes_output(self, calculator):
        quote = await calculator.calculate("USDC", "rUSDY", Decimal("100"), SwapDirection.REVERSE)

        assert quote.direction == SwapDirection.REVERSE
        assert quote.output_amount == Decimal("100")
        assert quote.input_amount > 0
        assert quote.plan.from_token == "USDC"
        assert quote.exchange_rate == Decimal("100") / quote.input_amount

    @pytest.mark.asyncio
    async def test_reverse_multi_hop_keeps_execution_order(self, calculator):
        quote = await calculator.calculate("ETH", "rUSDY", Decimal("500"), SwapDirection.REVERSE)

        assert quote.plan.path == ["ETH", "USDC", "rUSDY"]
        assert quote.plan.legs[0].via_router
        assert quote.plan.legs[1].pool.pool_id == "factory-stable-ng-161"
        assert quote.leg_amounts[-1][1] == Decimal("500")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "from_token,to_token,amount",
        [
            ("USDC", "rUSDY", "1000"),
            ("ETH", "USDC", "2"),
            ("ETH", "rUSDY", "1"),
            ("DAI", "USDT", "500"),
        ],
    )
    async def test_forward_and_reverse_agree_within_fees(self, calculator, from_token, to_token, amount):
        amount = Decimal(amount)
        forward = await calculator.calculate(from_token, to_token, amount)
        reverse = await calculator.calculate(
            from_token, to_token, forward.output_amount, SwapDirection.REVERSE
        )

        assert _within(reverse.input_amount, amount, Decimal("0.02"))

    @pytest.mark.asyncio
    async def test_reverse_input_buys_roughly_the_target(self, calculator):
        reverse = await calculator.calculate("USDC", "rUSDY", Decimal("100"), SwapDirection.REVERSE)
        forward = await calculator.calculate("USDC", "rUSDY", reverse.input_amount)

        assert _within(forward.output_amount, Decimal("100"), Decimal("0.01"))


class TestQuoteFailures:
    @pytest.mark.asyncio
    async def test_no_liquidity(self, chain, signer):
        registry = TokenRegistry(
            DEFAULT_TOKENS + (TokenDescriptor("FOO", "0x000000000000000000000000000000000000f00d", 18),)
        )
        service = SimulatedQuotingService(chain, signer, ROUTER)
        await service.initialize()
        calculator = RouteCalculator(service, registry)

        with pytest.raises(NoRouteFound) as exc_info:
            await calculator.calculate("FOO", "USDC", Decimal("1"))
        assert exc_info.value.from_token == "FOO"
        assert exc_info.value.to_token == "USDC"

    @pytest.mark.asyncio
    async def test_missing_leg_fails_whole_quote(self, registry, signer):
        pools = [pool for pool in default_pools() if pool.pool_id != "factory-stable-ng-161"]
        chain = SimulatedChain(registry, pools=pools)
        service = SimulatedQuotingService(chain, signer, ROUTER)
        await service.initialize()
        calculator = RouteCalculator(service, registry)

        with pytest.raises(NoRouteFound):
            await calculator.calculate("ETH", "rUSDY", Decimal("1"))

    @pytest.mark.asyncio
    async def test_invalid_amounts(self, calculator):
        with pytest.raises(ValueError):
            await calculator.calculate("ETH", "USDC", Decimal("0"))
        with pytest.raises(ValueError):
            await calculator.calculate("ETH", "eth", Decimal("1"))
        with pytest.raises(UnknownToken):
            await calculator.calculate("ETH", "DOGE", Decimal("1"))

    @pytest.mark.asyncio
    async def test_service_not_ready(self, chain, signer, registry):
        service = SimulatedQuotingService(chain, signer, ROUTER)
        calculator = RouteCalculator(service, registry)

        assert not service.is_ready
        with pytest.raises(QuotingServiceNotReady):
            await calculator.calculate("ETH", "USDC", Decimal("1"))


class TestLegRequote:
    @pytest.mark.asyncio
    async def test_requote_reflects_moved_pool(self, calculator, chain):
        quote = await calculator.calculate("USDC", "rUSDY", Decimal("1000"))
        leg = quote.plan.leg

        chain.trade("factory-stable-ng-161", "USDC", Decimal("500000"))
        fresh = await calculator.quote_leg(leg, Decimal("1000"))

        assert fresh.plan.leg.pool == leg.pool
        assert fresh.output_amount < quote.output_amount
