"""Dry-run quoting service over the simulated chain.

Quotes come from the same constant-product pools the simulated chain settles
against, so a quote taken right before submission matches the mined output
unless another trade moves the pool in between.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Optional

from poolswap.chain.base import TransactionHandle, TransactionPayload, TransactionSigner
from poolswap.chain.dry_run import SimulatedChain, SimulatedPool
from poolswap.chain.transactions import TransactionBuilder
from poolswap.routing.base import PoolRef, QuotingService, RouterResult, SwapLeg
from poolswap.tokens import TokenDescriptor

logger = logging.getLogger(__name__)

# Longest path the simulated router searches
MAX_ROUTER_HOPS = 2


class SimulatedQuotingService(QuotingService):
    """
    Simulated pool router for dry-run mode and tests.

    - Direct pool quotes against any simulated pool
    - Router search over router-indexed pools, up to two hops
    - Swaps submitted through the injected signer
    """

    def __init__(
        self,
        chain: SimulatedChain,
        signer: TransactionSigner,
        router_address: str,
        startup_delay: float = 0.0,
    ):
        super().__init__(router_address)
        self.chain = chain
        self.signer = signer
        self.startup_delay = startup_delay
        self._builder = TransactionBuilder()

    @property
    def name(self) -> str:
        return "dry_run"

    async def initialize(self) -> None:
        if self.startup_delay:
            await asyncio.sleep(self.startup_delay)
        self._mark_ready()

    def get_pool(self, pool_id: str) -> Optional[PoolRef]:
        pool = self.chain.get_pool(pool_id)
        return pool.ref if pool else None

    def _candidate_paths(self, token_in: str, token_out: str) -> list[list[SimulatedPool]]:
        indexed = [pool for pool in self.chain.pools.values() if pool.router_indexed]
        paths = [[pool] for pool in indexed if pool.holds(token_in, token_out)]
        if MAX_ROUTER_HOPS < 2:
            return paths
        for first in indexed:
            if not any(coin.upper() == token_in.upper() for coin in first.coins):
                continue
            middle = next(coin for coin in first.coins if coin.upper() != token_in.upper())
            if middle.upper() == token_out.upper():
                continue
            for second in indexed:
                if second is not first and second.holds(middle, token_out):
                    paths.append([first, second])
        return paths

    @staticmethod
    def _walk(path: list[SimulatedPool], token_in: str, amount_in: Decimal) -> tuple[Decimal, Decimal]:
        symbol = token_in
        amount = amount_in
        remaining = Decimal("1")
        for pool in path:
            next_symbol = next(coin for coin in pool.coins if coin.upper() != symbol.upper())
            remaining *= Decimal("1") - pool.price_impact(symbol, next_symbol, amount)
            amount = pool.quote(symbol, next_symbol, amount)
            symbol = next_symbol
        return amount, Decimal("1") - remaining

    async def get_best_route_and_output(
        self,
        token_in: TokenDescriptor,
        token_out: TokenDescriptor,
        amount_in: Decimal,
    ) -> Optional[RouterResult]:
        self.ensure_ready()
        best: Optional[RouterResult] = None
        for path in self._candidate_paths(token_in.symbol, token_out.symbol):
            output, impact = self._walk(path, token_in.symbol, amount_in)
            if output > 0 and (best is None or output > best.output_amount):
                best = RouterResult(
                    output_amount=output,
                    pools=tuple(pool.ref for pool in path),
                    via_router=True,
                    price_impact=impact,
                )

        if best is None:
            logger.debug(f"[SIMULATED] No router path for {token_in.symbol} -> {token_out.symbol}")
        return best

    async def expected_output(
        self,
        pool: PoolRef,
        token_in: TokenDescriptor,
        token_out: TokenDescriptor,
        amount_in: Decimal,
    ) -> Optional[Decimal]:
        self.ensure_ready()
        simulated = self.chain.get_pool(pool.pool_id)
        if simulated is None or not simulated.holds(token_in.symbol, token_out.symbol):
            return None
        return simulated.quote(token_in.symbol, token_out.symbol, amount_in)

    async def swap(
        self,
        leg: SwapLeg,
        amount_in: Decimal,
        min_output: Decimal,
    ) -> TransactionHandle:
        self.ensure_ready()
        token_in = self.chain.registry.get(leg.token_in)
        token_out = self.chain.registry.get(leg.token_out)

        if leg.via_router:
            spender = leg.spender(self.router_address)
            payload = TransactionPayload(
                to=spender,
                value=token_in.to_base_units(amount_in) if token_in.is_native else 0,
                description=(
                    f"Swap {amount_in} {token_in.symbol} for {token_out.symbol} via router"
                ),
                metadata={
                    "kind": "swap",
                    "token_in": token_in.symbol,
                    "token_out": token_out.symbol,
                    "amount_in": amount_in,
                    "min_output": min_output,
                    "pools": [pool.pool_id for pool in leg.route],
                    "spender": spender,
                },
            )
        else:
            payload = self._builder.build_exchange(leg.pool, token_in, token_out, amount_in, min_output)

        return await self.signer.submit(payload)
