"""On-chain quoting service for Curve pools over JSON-RPC.

Quotes are read with the pools' ``get_dy`` view and swaps are sent as
``exchange(i, j, dx, min_dy)`` straight to the pool contract. Only the pools
listed in configuration are considered; there is no router path search.
"""

import logging
from decimal import Decimal
from typing import Iterable, Optional

import httpx

from poolswap.chain.base import TransactionHandle, TransactionSigner
from poolswap.chain.rpc import JsonRpcClient, JsonRpcError
from poolswap.chain.transactions import TransactionBuilder, decode_uint
from poolswap.config import PoolConfig
from poolswap.routing.base import PoolRef, QuotingService, RouterResult, SwapLeg
from poolswap.tokens import TokenDescriptor, TokenRegistry

logger = logging.getLogger(__name__)


class CurvePoolService(QuotingService):
    """Quotes and swaps against configured Curve pools."""

    def __init__(
        self,
        client: JsonRpcClient,
        signer: Optional[TransactionSigner],
        registry: TokenRegistry,
        pools: Iterable[PoolConfig],
        router_address: str,
        chain_id: Optional[int] = None,
    ):
        super().__init__(router_address)
        self.client = client
        self.signer = signer
        self.registry = registry
        self.chain_id = chain_id
        self._builder = TransactionBuilder()
        self._pools: dict[str, PoolRef] = {
            pool.pool_id: PoolRef(
                pool_id=pool.pool_id,
                address=pool.address,
                coins=tuple(pool.coins),
                name=pool.name or "",
                uint256_indices=pool.uint256_indices,
            )
            for pool in pools
        }

    @property
    def name(self) -> str:
        return "curve"

    async def initialize(self) -> None:
        """Connect to the first healthy RPC endpoint, then flip ready."""
        self._mark_not_ready()
        await self.client.connect(self.chain_id)
        logger.info(f"Curve service tracking {len(self._pools)} pools")
        self._mark_ready()

    def get_pool(self, pool_id: str) -> Optional[PoolRef]:
        return self._pools.get(pool_id)

    async def expected_output(
        self,
        pool: PoolRef,
        token_in: TokenDescriptor,
        token_out: TokenDescriptor,
        amount_in: Decimal,
    ) -> Optional[Decimal]:
        self.ensure_ready()
        if not pool.holds(token_in.symbol, token_out.symbol):
            return None

        dx = token_in.to_base_units(amount_in)
        if dx <= 0:
            return None
        data = self._builder.get_dy_call(pool, token_in.symbol, token_out.symbol, dx)
        try:
            result = await self.client.eth_call(pool.address, data)
        except JsonRpcError as e:
            # get_dy reverts when the pool cannot fill the amount
            logger.debug(f"get_dy failed on {pool.label}: {e}")
            return None
        return token_out.from_base_units(decode_uint(result))

    async def get_best_route_and_output(
        self,
        token_in: TokenDescriptor,
        token_out: TokenDescriptor,
        amount_in: Decimal,
    ) -> Optional[RouterResult]:
        self.ensure_ready()
        best: Optional[RouterResult] = None
        for pool in self._pools.values():
            if not pool.holds(token_in.symbol, token_out.symbol):
                continue
            try:
                output = await self.expected_output(pool, token_in, token_out, amount_in)
            except httpx.HTTPError as e:
                logger.warning(f"Quote from {pool.label} failed: {e}")
                continue
            if output and (best is None or output > best.output_amount):
                best = RouterResult(output_amount=output, pools=(pool,), via_router=False)

        if best:
            logger.debug(
                f"Best pool for {token_in.symbol} -> {token_out.symbol}: "
                f"{best.pools[0].label} ({best.output_amount})"
            )
        return best

    async def swap(
        self,
        leg: SwapLeg,
        amount_in: Decimal,
        min_output: Decimal,
    ) -> TransactionHandle:
        self.ensure_ready()
        if self.signer is None:
            raise RuntimeError("No signer configured for live swaps")
        if leg.via_router:
            raise ValueError("Curve pool service only executes single-pool legs")

        payload = self._builder.build_exchange(
            leg.pool,
            self.registry.get(leg.token_in),
            self.registry.get(leg.token_out),
            amount_in,
            min_output,
        )
        return await self.signer.submit(payload)
