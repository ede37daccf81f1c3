"""Pytest configuration and fixtures."""

import os
from decimal import Decimal

import pytest
import pytest_asyncio

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DRY_RUN"] = "true"
os.environ["DEBUG"] = "true"

from poolswap.chain.dry_run import SimulatedChain, SimulatedSigner
from poolswap.config import DEFAULT_ROUTER_ADDRESS
from poolswap.notifications.status import RecordingStatusNotifier
from poolswap.routing.calculator import RouteCalculator
from poolswap.routing.dry_run import SimulatedQuotingService
from poolswap.services.allowance import AllowanceManager
from poolswap.services.balance import BalanceValidator
from poolswap.services.slippage import SlippageController
from poolswap.services.swap_executor import SwapExecutor
from poolswap.tokens import TokenRegistry

ROUTER = DEFAULT_ROUTER_ADDRESS


@pytest.fixture
def registry() -> TokenRegistry:
    return TokenRegistry()


@pytest.fixture
def chain(registry) -> SimulatedChain:
    return SimulatedChain(registry)


@pytest.fixture
def signer(chain) -> SimulatedSigner:
    return SimulatedSigner(chain)


@pytest.fixture
def owner(signer) -> str:
    return signer.address


@pytest.fixture
def fund(chain, owner):
    """Set the test account's balance of a token."""

    def _fund(symbol: str, amount: str) -> None:
        chain.ledger.set_balance(owner, symbol, Decimal(amount))

    return _fund


@pytest_asyncio.fixture
async def service(chain, signer) -> SimulatedQuotingService:
    service = SimulatedQuotingService(chain, signer, ROUTER)
    await service.initialize()
    return service


@pytest.fixture
def calculator(service, registry) -> RouteCalculator:
    return RouteCalculator(service, registry)


@pytest.fixture
def notifier() -> RecordingStatusNotifier:
    return RecordingStatusNotifier()


@pytest.fixture
def make_executor(calculator, chain, signer, registry, notifier):
    """Executor over the simulated chain; keyword overrides for timeouts and reserve."""

    def _make(
        gas_reserve: Decimal = Decimal("0.001"),
        confirmation_timeout: float = 1.0,
        debounce_seconds: float = 0.0,
        approval_policy: str = "exact",
        status_notifier=None,
    ) -> SwapExecutor:
        return SwapExecutor(
            calculator=calculator,
            balance_validator=BalanceValidator(chain.ledger, gas_reserve),
            allowance_manager=AllowanceManager(
                chain.ledger,
                signer,
                approval_policy=approval_policy,
                confirmation_timeout=confirmation_timeout,
            ),
            slippage=SlippageController(5000),
            signer=signer,
            registry=registry,
            notifier=status_notifier or notifier,
            confirmation_timeout=confirmation_timeout,
            debounce_seconds=debounce_seconds,
        )

    return _make
