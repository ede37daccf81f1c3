"""Simulated chain for dry-run mode and tests.

Holds balances, allowances and constant-product pools in memory and applies
submitted payloads when they are "mined" (on ``wait_for_confirmation``).
Pools enforce the minimum-output bound and tokens that require an allowance
reset reject a nonzero -> nonzero approval, like their mainnet counterparts.
"""

import asyncio
import itertools
import logging
from collections import deque
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional

from poolswap.chain.base import (
    LedgerReader,
    Receipt,
    TransactionHandle,
    TransactionPayload,
    TransactionSigner,
)
from poolswap.chain.transactions import MAX_UINT256, decode_words
from poolswap.errors import SignerRejected, TransactionTimeout
from poolswap.routing.base import PoolRef
from poolswap.tokens import TokenDescriptor, TokenRegistry

logger = logging.getLogger(__name__)

DEFAULT_SIMULATED_ACCOUNT = "0x00000000000000000000000000000000000Da7a0"


@dataclass
class SimulatedPool:
    """Two-coin constant-product pool with a proportional fee."""

    pool_id: str
    address: str
    reserves: dict[str, Decimal]
    fee: Decimal = Decimal("0.0004")
    name: str = ""
    # Pools the generic router does not index are reachable only directly
    router_indexed: bool = True

    @property
    def coins(self) -> tuple[str, ...]:
        return tuple(self.reserves)

    @property
    def ref(self) -> PoolRef:
        return PoolRef(
            pool_id=self.pool_id,
            address=self.address,
            coins=self.coins,
            name=self.name,
        )

    def _coin(self, symbol: str) -> str:
        for coin in self.reserves:
            if coin.upper() == symbol.upper():
                return coin
        raise ValueError(f"{symbol} is not in pool {self.pool_id}")

    def holds(self, token_in: str, token_out: str) -> bool:
        coins = {coin.upper() for coin in self.reserves}
        return token_in.upper() in coins and token_out.upper() in coins

    def quote(self, token_in: str, token_out: str, amount_in: Decimal) -> Decimal:
        reserve_in = self.reserves[self._coin(token_in)]
        reserve_out = self.reserves[self._coin(token_out)]
        if amount_in <= 0 or reserve_in <= 0 or reserve_out <= 0:
            return Decimal("0")
        effective_in = amount_in * (Decimal("1") - self.fee)
        return reserve_out * effective_in / (reserve_in + effective_in)

    def price_impact(self, token_in: str, token_out: str, amount_in: Decimal) -> Decimal:
        """Shortfall of the execution price against the spot price, fee excluded."""
        reserve_in = self.reserves[self._coin(token_in)]
        reserve_out = self.reserves[self._coin(token_out)]
        output = self.quote(token_in, token_out, amount_in)
        if output <= 0:
            return Decimal("0")
        spot = reserve_out / reserve_in * (Decimal("1") - self.fee)
        return Decimal("1") - (output / amount_in) / spot

    def apply(self, token_in: str, token_out: str, amount_in: Decimal) -> Decimal:
        output = self.quote(token_in, token_out, amount_in)
        self.reserves[self._coin(token_in)] += amount_in
        self.reserves[self._coin(token_out)] -= output
        return output


def default_pools() -> list[SimulatedPool]:
    """Pool set mirroring the mainnet pairs the default tokens trade on."""
    return [
        SimulatedPool(
            "factory-tricrypto-3",
            "0x7F86Bf177Dd4F3494b841a37e810A34dD56c829B",
            {"ETH": Decimal("1000"), "USDC": Decimal("3900000")},
            fee=Decimal("0.003"),
            name="TricryptoUSDC",
        ),
        SimulatedPool(
            "3pool-usdc-usdt",
            "0x0000000000000000000000000000000000005001",
            {"USDC": Decimal("5000000"), "USDT": Decimal("5000000")},
            fee=Decimal("0.0001"),
        ),
        SimulatedPool(
            "3pool-usdc-dai",
            "0x0000000000000000000000000000000000005002",
            {"USDC": Decimal("5000000"), "DAI": Decimal("5000000")},
            fee=Decimal("0.0001"),
        ),
        SimulatedPool(
            "tricrypto-eth-wbtc",
            "0x0000000000000000000000000000000000005003",
            {"ETH": Decimal("2000"), "WBTC": Decimal("78")},
            fee=Decimal("0.003"),
        ),
        SimulatedPool(
            "factory-stable-ng-161",
            "0x4eF4C9F9b7A8c1D7F5c6e6aB5dE8A42D8a3b0161",
            {"USDC": Decimal("2000000"), "rUSDY": Decimal("1950000")},
            fee=Decimal("0.0004"),
            name="rUSDY/USDC",
            router_indexed=False,
        ),
        SimulatedPool(
            "weth-wrapper",
            "0x0000000000000000000000000000000000005004",
            {"ETH": Decimal("10000"), "WETH": Decimal("10000")},
            fee=Decimal("0"),
        ),
    ]


class InMemoryLedger(LedgerReader):
    """Balances and allowances keyed by lowercased address and symbol."""

    def __init__(self):
        self._balances: dict[tuple[str, str], Decimal] = {}
        self._allowances: dict[tuple[str, str, str], Decimal] = {}

    @staticmethod
    def _key(*parts: str) -> tuple[str, ...]:
        return tuple(part.lower() for part in parts)

    def set_balance(self, account: str, symbol: str, amount: Decimal) -> None:
        self._balances[self._key(account, symbol)] = Decimal(amount)

    def balance_of(self, account: str, symbol: str) -> Decimal:
        return self._balances.get(self._key(account, symbol), Decimal("0"))

    def credit(self, account: str, symbol: str, amount: Decimal) -> None:
        self.set_balance(account, symbol, self.balance_of(account, symbol) + amount)

    def debit(self, account: str, symbol: str, amount: Decimal) -> None:
        self.set_balance(account, symbol, self.balance_of(account, symbol) - amount)

    def set_allowance(self, owner: str, spender: str, symbol: str, amount: Decimal) -> None:
        self._allowances[self._key(owner, spender, symbol)] = Decimal(amount)

    def allowance_of(self, owner: str, spender: str, symbol: str) -> Decimal:
        return self._allowances.get(self._key(owner, spender, symbol), Decimal("0"))

    async def get_balance(self, account: str, token: TokenDescriptor) -> Decimal:
        return self.balance_of(account, token.symbol)

    async def get_allowance(
        self, owner: str, spender: str, token: TokenDescriptor
    ) -> Decimal:
        if token.is_native:
            raise ValueError("Native asset has no allowance")
        return self.allowance_of(owner, spender, token.symbol)


class _Revert(Exception):
    pass


@dataclass
class MinedTransaction:
    sender: str
    payload: TransactionPayload
    receipt: Receipt


class SimulatedChain:
    """Applies payloads to the in-memory ledger and pools."""

    def __init__(
        self,
        registry: TokenRegistry,
        ledger: Optional[InMemoryLedger] = None,
        pools: Optional[Iterable[SimulatedPool]] = None,
        gas_fee: Decimal = Decimal("0"),
    ):
        self.registry = registry
        self.ledger = ledger or InMemoryLedger()
        self.pools: dict[str, SimulatedPool] = {
            pool.pool_id: pool for pool in (default_pools() if pools is None else pools)
        }
        self.gas_fee = gas_fee
        self.block_number = 1
        self.transactions: list[MinedTransaction] = []
        self._pending_trades: deque[tuple[str, str, Decimal]] = deque()

    def get_pool(self, pool_id: str) -> Optional[SimulatedPool]:
        return self.pools.get(pool_id)

    def trade(self, pool_id: str, token_in: str, amount_in: Decimal) -> Decimal:
        """Another trader swaps against ``pool_id`` right now."""
        pool = self.pools[pool_id]
        token_out = next(coin for coin in pool.coins if coin.upper() != token_in.upper())
        return pool.apply(token_in, token_out, amount_in)

    def schedule_trade(self, pool_id: str, token_in: str, amount_in: Decimal) -> None:
        """Front-run the next mined swap with a trade from another account."""
        self._pending_trades.append((pool_id, token_in, amount_in))

    def mined(self, kind: str) -> list[MinedTransaction]:
        return [tx for tx in self.transactions if tx.payload.metadata.get("kind") == kind]

    def execute(
        self,
        sender: str,
        payload: TransactionPayload,
        tx_hash: str,
        forced_revert: Optional[str] = None,
    ) -> Receipt:
        self.block_number += 1
        kind = payload.metadata.get("kind")
        revert_reason = forced_revert

        if revert_reason is None:
            try:
                if kind == "approve":
                    self._apply_approval(sender, payload)
                elif kind == "swap":
                    self._apply_swap(sender, payload)
                else:
                    raise _Revert(f"Unsupported call to {payload.to}")
            except _Revert as e:
                revert_reason = str(e)

        fee = min(self.gas_fee, self.ledger.balance_of(sender, self.registry.native.symbol))
        if fee > 0:
            self.ledger.debit(sender, self.registry.native.symbol, fee)

        receipt = Receipt(
            tx_hash=tx_hash,
            succeeded=revert_reason is None,
            block_number=self.block_number,
            gas_used=21000,
            fee_paid=fee,
            revert_reason=revert_reason,
        )
        self.transactions.append(MinedTransaction(sender, payload, receipt))
        if revert_reason:
            logger.info(f"[SIMULATED] {tx_hash} reverted: {revert_reason}")
        else:
            logger.info(f"[SIMULATED] {tx_hash} mined in block {self.block_number}")
        return receipt

    def _apply_approval(self, owner: str, payload: TransactionPayload) -> None:
        token = self.registry.by_address(payload.to)
        spender = payload.metadata.get("spender")
        raw_amount = payload.metadata.get("amount")
        if spender is None or raw_amount is None:
            words = decode_words(payload.data)
            spender = "0x" + words[0][-40:]
            raw_amount = int(words[1], 16)

        if raw_amount == MAX_UINT256:
            amount = Decimal(MAX_UINT256)
        else:
            amount = token.from_base_units(raw_amount)

        current = self.ledger.allowance_of(owner, spender, token.symbol)
        if token.requires_allowance_reset and current > 0 and amount > 0:
            raise _Revert("approve from non-zero to non-zero allowance")
        self.ledger.set_allowance(owner, spender, token.symbol, amount)

    def _apply_swap(self, sender: str, payload: TransactionPayload) -> None:
        meta = payload.metadata
        token_in = self.registry.get(meta["token_in"])
        token_out = self.registry.get(meta["token_out"])
        amount_in = Decimal(meta["amount_in"])
        min_output = Decimal(meta["min_output"])
        spender = meta["spender"]

        while self._pending_trades:
            self.trade(*self._pending_trades.popleft())

        if token_in.is_native:
            if token_in.from_base_units(payload.value) < amount_in:
                raise _Revert("Insufficient value sent")
        else:
            allowance = self.ledger.allowance_of(sender, spender, token_in.symbol)
            if allowance < amount_in:
                raise _Revert("ERC20: insufficient allowance")
        if self.ledger.balance_of(sender, token_in.symbol) < amount_in:
            raise _Revert("ERC20: transfer amount exceeds balance")

        # Walk the route on copies so a revert leaves pool state untouched
        symbol = token_in.symbol
        amount = amount_in
        staged = []
        for pool_id in meta["pools"]:
            pool = self.pools.get(pool_id)
            if pool is None:
                raise _Revert(f"Unknown pool {pool_id}")
            next_symbol = next(coin for coin in pool.coins if coin.upper() != symbol.upper())
            staged.append((pool, symbol, next_symbol, amount))
            amount = pool.quote(symbol, next_symbol, amount)
            symbol = next_symbol
        if symbol.upper() != token_out.symbol.upper():
            raise _Revert("Route does not end in the output token")

        output = token_out.quantize(amount)
        if output < min_output:
            raise _Revert("Exchange resulted in fewer coins than expected")

        for pool, pool_in, pool_out, pool_amount in staged:
            pool.apply(pool_in, pool_out, pool_amount)

        self.ledger.debit(sender, token_in.symbol, amount_in)
        self.ledger.credit(sender, token_out.symbol, output)
        if not token_in.is_native:
            allowance = self.ledger.allowance_of(sender, spender, token_in.symbol)
            self.ledger.set_allowance(sender, spender, token_in.symbol, allowance - amount_in)


class SimulatedOutcome(str, Enum):
    SUCCESS = "success"
    REJECT = "reject"
    REVERT = "revert"
    TIMEOUT = "timeout"


@dataclass
class _Scripted:
    outcome: SimulatedOutcome
    reason: Optional[str] = None


@dataclass
class _Pending:
    payload: TransactionPayload
    script: _Scripted
    receipt: Optional[Receipt] = None


class SimulatedSigner(TransactionSigner):
    """Signer for the simulated chain.

    Successive submissions follow the queued outcomes (``queue_outcome``);
    with an empty queue every transaction succeeds.
    """

    def __init__(self, chain: SimulatedChain, address: str = DEFAULT_SIMULATED_ACCOUNT):
        self.chain = chain
        self._address = address
        self._outcomes: deque[_Scripted] = deque()
        self._pending: dict[str, _Pending] = {}
        self._counter = itertools.count(1)
        self.submitted: list[TransactionPayload] = []

    @property
    def address(self) -> str:
        return self._address

    def queue_outcome(self, outcome: SimulatedOutcome, reason: Optional[str] = None) -> None:
        self._outcomes.append(_Scripted(outcome, reason))

    async def submit(self, payload: TransactionPayload) -> TransactionHandle:
        script = self._outcomes.popleft() if self._outcomes else _Scripted(SimulatedOutcome.SUCCESS)
        if script.outcome == SimulatedOutcome.REJECT:
            logger.info(f"[SIMULATED] Signer rejected: {payload.description}")
            raise SignerRejected(payload.description or "Transaction rejected")

        tx_hash = "0x" + format(next(self._counter), "064x")
        self._pending[tx_hash] = _Pending(payload, script)
        self.submitted.append(payload)
        logger.info(f"[SIMULATED] Submitted {tx_hash}: {payload.description}")
        return TransactionHandle(tx_hash=tx_hash)

    async def wait_for_confirmation(
        self, handle: TransactionHandle, timeout: float
    ) -> Receipt:
        pending = self._pending[handle.tx_hash]
        if pending.receipt is not None:
            return pending.receipt

        if pending.script.outcome == SimulatedOutcome.TIMEOUT:
            await asyncio.sleep(timeout)
            raise TransactionTimeout(
                f"Transaction {handle.tx_hash} not confirmed after {timeout}s",
                tx_hash=handle.tx_hash,
            )

        await asyncio.sleep(0)
        forced = None
        if pending.script.outcome == SimulatedOutcome.REVERT:
            forced = pending.script.reason or "execution reverted"
        pending.receipt = self.chain.execute(self.address, pending.payload, handle.tx_hash, forced)
        return pending.receipt
