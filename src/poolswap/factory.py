"""Factory for assembling the quoting and execution stack.

Builds the live stack (JSON-RPC, Curve pools, local signer) when dry-run is
off, otherwise the simulated chain with simulated pools.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from poolswap.chain.base import LedgerReader, TransactionSigner
from poolswap.chain.dry_run import SimulatedChain, SimulatedSigner
from poolswap.chain.ledger import RpcLedgerReader
from poolswap.chain.rpc import JsonRpcClient
from poolswap.chain.signer import LocalSigner
from poolswap.config import Settings, get_settings
from poolswap.notifications.status import LoggingStatusNotifier, StatusNotifier
from poolswap.routing.base import QuotingService
from poolswap.routing.calculator import RouteCalculator
from poolswap.routing.curve import CurvePoolService
from poolswap.routing.dry_run import SimulatedQuotingService
from poolswap.services.allowance import AllowanceManager
from poolswap.services.balance import BalanceValidator
from poolswap.services.slippage import SlippageController
from poolswap.services.swap_executor import SwapExecutor
from poolswap.tokens import TokenRegistry

logger = logging.getLogger(__name__)


@dataclass
class PoolswapStack:
    """Every collaborator the executor needs, owned together."""

    settings: Settings
    registry: TokenRegistry
    service: QuotingService
    ledger: LedgerReader
    signer: Optional[TransactionSigner]
    calculator: RouteCalculator
    balance_validator: BalanceValidator
    slippage: SlippageController
    chain: Optional[SimulatedChain] = None
    client: Optional[JsonRpcClient] = None

    async def initialize(self) -> None:
        if not self.service.is_ready:
            await self.service.initialize()

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()

    def create_executor(self, notifier: Optional[StatusNotifier] = None) -> SwapExecutor:
        if self.signer is None:
            raise RuntimeError("Swaps need a signer; set SIGNER_PRIVATE_KEY or enable DRY_RUN")
        allowance_manager = AllowanceManager(
            self.ledger,
            self.signer,
            approval_policy=self.settings.approval_policy,
            confirmation_timeout=self.settings.confirmation_timeout,
        )
        return SwapExecutor(
            calculator=self.calculator,
            balance_validator=self.balance_validator,
            allowance_manager=allowance_manager,
            slippage=self.slippage,
            signer=self.signer,
            registry=self.registry,
            notifier=notifier or LoggingStatusNotifier(),
            confirmation_timeout=self.settings.confirmation_timeout,
            debounce_seconds=self.settings.quote_debounce_seconds,
        )


def create_simulated_chain(settings: Settings, registry: TokenRegistry) -> tuple[SimulatedChain, SimulatedSigner]:
    """Simulated chain with the configured starting balances."""
    chain = SimulatedChain(registry)
    signer = SimulatedSigner(chain)
    for symbol, amount in settings.dry_run_balances.items():
        chain.ledger.set_balance(signer.address, registry.get(symbol).symbol, amount)
    return chain, signer


def create_stack(
    settings: Optional[Settings] = None,
    registry: Optional[TokenRegistry] = None,
) -> PoolswapStack:
    """Build the stack for ``settings`` (defaults to the cached settings)."""
    settings = settings or get_settings()
    registry = registry or TokenRegistry()
    chain = None
    client = None

    if settings.dry_run:
        chain, signer = create_simulated_chain(settings, registry)
        ledger: LedgerReader = chain.ledger
        service: QuotingService = SimulatedQuotingService(chain, signer, settings.router_address)
        logger.info("Using simulated pools (dry run)")
    else:
        client = JsonRpcClient(settings.rpc_urls)
        ledger = RpcLedgerReader(client)
        signer = None
        if settings.signer_private_key:
            signer = LocalSigner(
                client,
                settings.signer_private_key,
                chain_id=settings.chain_id,
                poll_interval=settings.confirmation_poll_interval,
            )
        else:
            logger.warning("No signer key configured - quoting only")
        service = CurvePoolService(
            client,
            signer,
            registry,
            settings.pools,
            router_address=settings.router_address,
            chain_id=settings.chain_id,
        )
        logger.info(f"Using live Curve pools ({len(settings.pools)} configured)")

    calculator = RouteCalculator(
        service, registry, quote_ttl_seconds=settings.quote_ttl_seconds
    )
    return PoolswapStack(
        settings=settings,
        registry=registry,
        service=service,
        ledger=ledger,
        signer=signer,
        calculator=calculator,
        balance_validator=BalanceValidator(ledger, settings.gas_reserve),
        slippage=SlippageController(settings.max_slippage_bps),
        chain=chain,
        client=client,
    )
