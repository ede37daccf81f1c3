"""Route calculation: best path and expected amounts between two assets.

Pairs the quoting service can route on its own become a single leg. Assets
that are only liquid against an intermediate token (configured through
:class:`IntermediateRoute`) are decomposed into sequential legs, feeding each
leg's output into the next. Quoting is all-or-nothing: any leg without
liquidity fails the whole quote.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

import httpx

from poolswap.errors import NetworkError, NoRouteFound
from poolswap.routing.base import (
    Quote,
    QuotingService,
    RouterResult,
    SwapDirection,
    SwapLeg,
    DirectRoute,
    plan_from_legs,
)
from poolswap.tokens import TokenRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntermediateRoute:
    """``token`` trades only against ``via``, through pool ``pool_id``."""

    token: str
    via: str
    pool_id: str


DEFAULT_INTERMEDIATE_ROUTES: tuple[IntermediateRoute, ...] = (
    IntermediateRoute(token="rUSDY", via="USDC", pool_id="factory-stable-ng-161"),
)


@dataclass(frozen=True)
class _LegTemplate:
    token_in: str
    token_out: str
    pool_id: Optional[str] = None  # None = ask the service for the best route


@dataclass(frozen=True)
class _LegResult:
    leg: SwapLeg
    amount_in: Decimal
    amount_out: Decimal
    price_impact: Optional[Decimal]


def _combine_impacts(impacts: Iterable[Optional[Decimal]]) -> Optional[Decimal]:
    known = [impact for impact in impacts if impact is not None]
    if not known:
        return None
    remaining = Decimal("1")
    for impact in known:
        remaining *= Decimal("1") - impact
    return Decimal("1") - remaining


class RouteCalculator:
    """Computes quotes for direct and multi-hop routes. Read-only."""

    def __init__(
        self,
        service: QuotingService,
        registry: TokenRegistry,
        intermediate_routes: Iterable[IntermediateRoute] = DEFAULT_INTERMEDIATE_ROUTES,
        quote_ttl_seconds: int = 60,
    ):
        self.service = service
        self.registry = registry
        self.quote_ttl_seconds = quote_ttl_seconds
        self._intermediates = {route.token.upper(): route for route in intermediate_routes}

    async def calculate(
        self,
        from_token: str,
        to_token: str,
        amount: Decimal,
        direction: SwapDirection = SwapDirection.FORWARD,
    ) -> Quote:
        """Quote ``amount`` of ``from_token`` into ``to_token``.

        With ``direction=REVERSE`` the amount is the desired output and the
        quote solves for the required input by running the same
        decomposition over the inverted pair.

        Raises:
            NoRouteFound: any leg has no liquidity
            NetworkError: the quoting backend could not be reached
        """
        if amount <= 0:
            raise ValueError(f"Amount must be positive, got {amount}")
        source = self.registry.get(from_token).symbol
        target = self.registry.get(to_token).symbol
        if source.upper() == target.upper():
            raise ValueError("Source and destination tokens must differ")
        self.service.ensure_ready()

        logger.debug(f"Calculating {direction.value} quote: {amount} {source} -> {target}")

        if direction == SwapDirection.FORWARD:
            results = await self._run_legs(self._decompose(source, target), amount, (source, target))
            input_amount, output_amount = amount, results[-1].amount_out
        else:
            inverted = await self._run_legs(self._decompose(target, source), amount, (source, target))
            results = [self._invert(result) for result in reversed(inverted)]
            input_amount, output_amount = inverted[-1].amount_out, amount

        quote = Quote(
            plan=plan_from_legs([result.leg for result in results]),
            input_amount=input_amount,
            output_amount=output_amount,
            exchange_rate=output_amount / input_amount,
            direction=direction,
            price_impact=_combine_impacts(result.price_impact for result in results),
            leg_amounts=tuple((result.amount_in, result.amount_out) for result in results),
            ttl_seconds=self.quote_ttl_seconds,
        )
        logger.info(
            f"Quote {quote.plan.describe()}: {input_amount} {source} -> {output_amount} {target} "
            f"(rate: {quote.exchange_rate:.6f})"
        )
        return quote

    async def quote_leg(self, leg: SwapLeg, amount_in: Decimal) -> Quote:
        """Fresh single-leg quote along the same pool, or the router's current best route."""
        result = await self._run_leg(
            _LegTemplate(leg.token_in, leg.token_out, None if leg.via_router else leg.pool.pool_id),
            amount_in,
            (leg.token_in, leg.token_out),
        )
        return Quote(
            plan=DirectRoute(result.leg),
            input_amount=amount_in,
            output_amount=result.amount_out,
            exchange_rate=result.amount_out / amount_in,
            price_impact=result.price_impact,
            leg_amounts=((amount_in, result.amount_out),),
            ttl_seconds=self.quote_ttl_seconds,
        )

    def _decompose(self, source: str, target: str) -> list[_LegTemplate]:
        head: list[_LegTemplate] = []
        tail: list[_LegTemplate] = []
        start, end = source, target

        source_bridge = self._intermediates.get(source.upper())
        if source_bridge:
            if target.upper() == source_bridge.via.upper():
                return [_LegTemplate(source, target, source_bridge.pool_id)]
            head.append(_LegTemplate(source, source_bridge.via, source_bridge.pool_id))
            start = source_bridge.via

        target_bridge = self._intermediates.get(target.upper())
        if target_bridge:
            if start.upper() == target_bridge.via.upper():
                return head + [_LegTemplate(start, target, target_bridge.pool_id)]
            tail.append(_LegTemplate(target_bridge.via, target, target_bridge.pool_id))
            end = target_bridge.via

        middle = [_LegTemplate(start, end)] if start.upper() != end.upper() else []
        return head + middle + tail

    async def _run_legs(
        self,
        templates: list[_LegTemplate],
        amount: Decimal,
        pair: tuple[str, str],
    ) -> list[_LegResult]:
        results = []
        current = amount
        for template in templates:
            result = await self._run_leg(template, current, pair)
            results.append(result)
            current = result.amount_out
        return results

    async def _run_leg(
        self,
        template: _LegTemplate,
        amount_in: Decimal,
        pair: tuple[str, str],
    ) -> _LegResult:
        token_in = self.registry.get(template.token_in)
        token_out = self.registry.get(template.token_out)
        price_impact = None

        try:
            if template.pool_id is not None:
                pool = self.service.get_pool(template.pool_id)
                if pool is None:
                    logger.warning(f"Pool {template.pool_id} is not known to {self.service.name}")
                    raise NoRouteFound(*pair)
                output = await self.service.expected_output(pool, token_in, token_out, amount_in)
                leg = SwapLeg(token_in.symbol, token_out.symbol, pool=pool)
            else:
                routed = await self.service.get_best_route_and_output(token_in, token_out, amount_in)
                if routed is None:
                    raise NoRouteFound(*pair)
                output = routed.output_amount
                price_impact = routed.price_impact
                leg = self._leg_from_router(token_in.symbol, token_out.symbol, routed)
        except httpx.HTTPError as e:
            raise NetworkError(f"Quoting backend unavailable: {e}") from e

        if output is None or output <= 0:
            logger.debug(f"No liquidity for leg {template.token_in} -> {template.token_out}")
            raise NoRouteFound(*pair)

        return _LegResult(leg, amount_in, token_out.quantize(output), price_impact)

    @staticmethod
    def _leg_from_router(token_in: str, token_out: str, routed: RouterResult) -> SwapLeg:
        if routed.via_router:
            return SwapLeg(token_in, token_out, via_router=True, route=routed.pools)
        if len(routed.pools) != 1:
            raise ValueError("A non-router result must name exactly one pool")
        return SwapLeg(token_in, token_out, pool=routed.pools[0])

    @staticmethod
    def _invert(result: _LegResult) -> _LegResult:
        leg = result.leg
        return _LegResult(
            leg=SwapLeg(
                token_in=leg.token_out,
                token_out=leg.token_in,
                pool=leg.pool,
                via_router=leg.via_router,
                route=tuple(reversed(leg.route)),
            ),
            amount_in=result.amount_out,
            amount_out=result.amount_in,
            price_impact=result.price_impact,
        )
