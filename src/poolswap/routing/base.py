"""Route plans, quotes and the abstract quoting-service interface."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional

from poolswap.chain.base import TransactionHandle
from poolswap.errors import QuotingServiceNotReady
from poolswap.tokens import TokenDescriptor

logger = logging.getLogger(__name__)


class SwapDirection(str, Enum):
    """Which side of the swap the caller fixed."""

    FORWARD = "forward"  # amount is the input; solve for output
    REVERSE = "reverse"  # amount is the desired output; solve for input


@dataclass(frozen=True)
class PoolRef:
    """A liquidity pool contract and the coins it holds."""

    pool_id: str
    address: str
    coins: tuple[str, ...]
    name: str = ""
    uint256_indices: bool = False

    def index_of(self, symbol: str) -> int:
        for i, coin in enumerate(self.coins):
            if coin.upper() == symbol.upper():
                return i
        raise ValueError(f"{symbol} is not in pool {self.pool_id}")

    def holds(self, *symbols: str) -> bool:
        coins = {coin.upper() for coin in self.coins}
        return all(symbol.upper() in coins for symbol in symbols)

    @property
    def label(self) -> str:
        return self.name or self.pool_id


@dataclass(frozen=True)
class SwapLeg:
    """One atomic swap within a route.

    A leg either trades against a single pool contract (``via_router`` False)
    or goes through the generic router along ``route``.
    """

    token_in: str
    token_out: str
    pool: Optional[PoolRef] = None
    via_router: bool = False
    route: tuple[PoolRef, ...] = ()

    def __post_init__(self):
        if not self.via_router and self.pool is None:
            raise ValueError("A direct pool leg needs a pool")

    def spender(self, router_address: str) -> str:
        """Address that must hold an allowance for this leg's input."""
        if self.via_router:
            return router_address
        return self.pool.address

    @property
    def pools(self) -> tuple[PoolRef, ...]:
        if self.route:
            return self.route
        return (self.pool,) if self.pool else ()

    def describe(self) -> str:
        via = " / ".join(pool.label for pool in self.pools) or "router"
        return f"{self.token_in} -> {self.token_out} ({via})"


class RoutePlan:
    """Tagged variant: :class:`DirectRoute` or :class:`MultiHopRoute`."""

    kind: str = ""

    @property
    def legs(self) -> tuple[SwapLeg, ...]:
        raise NotImplementedError

    @property
    def from_token(self) -> str:
        return self.legs[0].token_in

    @property
    def to_token(self) -> str:
        return self.legs[-1].token_out

    @property
    def path(self) -> list[str]:
        return [self.legs[0].token_in] + [leg.token_out for leg in self.legs]

    def describe(self) -> str:
        return " -> ".join(self.path)


@dataclass(frozen=True)
class DirectRoute(RoutePlan):
    leg: SwapLeg
    kind = "direct"

    @property
    def legs(self) -> tuple[SwapLeg, ...]:
        return (self.leg,)


@dataclass(frozen=True)
class MultiHopRoute(RoutePlan):
    hops: tuple[SwapLeg, ...]
    intermediate_tokens: tuple[str, ...]
    kind = "multi_hop"

    def __post_init__(self):
        if len(self.hops) < 2:
            raise ValueError("A multi-hop route needs at least two legs")
        for current, following in zip(self.hops, self.hops[1:]):
            if current.token_out.upper() != following.token_in.upper():
                raise ValueError(
                    f"Leg output {current.token_out} does not feed next leg input {following.token_in}"
                )

    @property
    def legs(self) -> tuple[SwapLeg, ...]:
        return self.hops


def plan_from_legs(legs: list[SwapLeg]) -> RoutePlan:
    if len(legs) == 1:
        return DirectRoute(legs[0])
    return MultiHopRoute(
        hops=tuple(legs),
        intermediate_tokens=tuple(leg.token_out for leg in legs[:-1]),
    )


@dataclass
class Quote:
    """A perishable snapshot of a route's expected amounts."""

    plan: RoutePlan
    input_amount: Decimal
    output_amount: Decimal
    exchange_rate: Decimal
    direction: SwapDirection = SwapDirection.FORWARD
    price_impact: Optional[Decimal] = None  # fraction, 0.01 = 1%
    leg_amounts: tuple[tuple[Decimal, Decimal], ...] = ()
    timestamp: float = field(default_factory=time.time)
    ttl_seconds: int = 60

    @property
    def from_token(self) -> str:
        return self.plan.from_token

    @property
    def to_token(self) -> str:
        return self.plan.to_token

    @property
    def is_expired(self) -> bool:
        return time.time() > (self.timestamp + self.ttl_seconds)

    @property
    def seconds_until_expiry(self) -> float:
        return (self.timestamp + self.ttl_seconds) - time.time()


@dataclass(frozen=True)
class RouterResult:
    """Answer of the quoting service's best-route search."""

    output_amount: Decimal
    pools: tuple[PoolRef, ...]
    via_router: bool = True
    price_impact: Optional[Decimal] = None


class QuotingService(ABC):
    """External quoting/execution capability.

    The service is owned and injected explicitly; callers observe readiness
    through :attr:`is_ready` / :meth:`wait_until_ready` instead of global state.
    """

    def __init__(self, router_address: str):
        self.router_address = router_address
        self._ready = asyncio.Event()

    @property
    @abstractmethod
    def name(self) -> str:
        """Service name identifier."""

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    def _mark_ready(self) -> None:
        self._ready.set()
        logger.info(f"{self.name} quoting service ready")

    def _mark_not_ready(self) -> None:
        self._ready.clear()

    async def wait_until_ready(self, timeout: Optional[float] = None) -> None:
        await asyncio.wait_for(self._ready.wait(), timeout=timeout)

    def ensure_ready(self) -> None:
        if not self.is_ready:
            raise QuotingServiceNotReady(f"{self.name} quoting service is not initialized")

    @abstractmethod
    async def initialize(self) -> None:
        """Connect to the backend and mark the service ready."""

    @abstractmethod
    def get_pool(self, pool_id: str) -> Optional[PoolRef]:
        """Look up a known pool by identifier."""

    @abstractmethod
    async def get_best_route_and_output(
        self,
        token_in: TokenDescriptor,
        token_out: TokenDescriptor,
        amount_in: Decimal,
    ) -> Optional[RouterResult]:
        """Best route and output for ``amount_in``; None when no liquidity."""

    @abstractmethod
    async def expected_output(
        self,
        pool: PoolRef,
        token_in: TokenDescriptor,
        token_out: TokenDescriptor,
        amount_in: Decimal,
    ) -> Optional[Decimal]:
        """Expected output of a single pool; None when the pool cannot quote."""

    @abstractmethod
    async def swap(
        self,
        leg: SwapLeg,
        amount_in: Decimal,
        min_output: Decimal,
    ) -> TransactionHandle:
        """Submit the swap for ``leg`` and return the transaction handle."""


@dataclass(frozen=True)
class SwapRequest:
    """Caller intent. ``amount`` is the input (forward) or desired output (reverse)."""

    from_token: str
    to_token: str
    amount: Optional[Decimal]
    direction: SwapDirection = SwapDirection.FORWARD
    slippage_tolerance_bps: int = 50

    @property
    def has_amount(self) -> bool:
        return self.amount is not None and self.amount > 0
