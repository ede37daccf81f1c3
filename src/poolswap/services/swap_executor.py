"""Swap execution state machine.

Drives a confirmed quote through approval and one or more swap legs:

    Idle -> Calculating -> Quoted -> AwaitingApproval -> Approving
         -> AwaitingLegConfirm(n) -> Completed | Failed(reason)

Before every leg the executor re-reads the balance, re-quotes the leg and
derives the minimum-output bound from that fresh quote. Leg n+1 is only
submitted after leg n is confirmed, and its input is the balance actually
received from leg n. Failed transactions are never retried; the caller
builds a new plan from current balances.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional

import httpx

from poolswap.chain.base import Receipt, TransactionHandle, TransactionSigner
from poolswap.chain.rpc import JsonRpcError
from poolswap.errors import (
    ExecutionInProgress,
    FailureReason,
    InvalidStateTransition,
    NetworkError,
    QuotingServiceNotReady,
    SignerRejected,
    SwapError,
    TransactionTimeout,
    UserCancelled,
    classify_revert,
)
from poolswap.notifications.status import StatusEvent, StatusNotifier
from poolswap.routing.base import Quote, SwapLeg, SwapRequest
from poolswap.routing.calculator import RouteCalculator
from poolswap.services.allowance import AllowanceManager
from poolswap.services.balance import BalanceValidator
from poolswap.services.quoting import QuoteSession
from poolswap.services.slippage import SlippageController
from poolswap.tokens import TokenRegistry

logger = logging.getLogger(__name__)


class ExecutionPhase(str, Enum):
    IDLE = "Idle"
    CALCULATING = "Calculating"
    QUOTED = "Quoted"
    AWAITING_APPROVAL = "AwaitingApproval"
    APPROVING = "Approving"
    AWAITING_LEG_CONFIRM = "AwaitingLegConfirm"
    COMPLETED = "Completed"
    FAILED = "Failed"


TERMINAL_PHASES = frozenset({ExecutionPhase.COMPLETED, ExecutionPhase.FAILED})

_TRANSITIONS: dict[ExecutionPhase, frozenset[ExecutionPhase]] = {
    ExecutionPhase.IDLE: frozenset({ExecutionPhase.CALCULATING}),
    ExecutionPhase.CALCULATING: frozenset(
        {ExecutionPhase.CALCULATING, ExecutionPhase.QUOTED, ExecutionPhase.FAILED, ExecutionPhase.IDLE}
    ),
    ExecutionPhase.QUOTED: frozenset(
        {
            ExecutionPhase.CALCULATING,
            ExecutionPhase.AWAITING_APPROVAL,
            ExecutionPhase.AWAITING_LEG_CONFIRM,
            ExecutionPhase.FAILED,
            ExecutionPhase.IDLE,
        }
    ),
    ExecutionPhase.AWAITING_APPROVAL: frozenset(
        {ExecutionPhase.APPROVING, ExecutionPhase.FAILED, ExecutionPhase.IDLE}
    ),
    ExecutionPhase.APPROVING: frozenset(
        {ExecutionPhase.AWAITING_LEG_CONFIRM, ExecutionPhase.FAILED}
    ),
    ExecutionPhase.AWAITING_LEG_CONFIRM: frozenset(
        {
            ExecutionPhase.AWAITING_LEG_CONFIRM,
            ExecutionPhase.AWAITING_APPROVAL,
            ExecutionPhase.COMPLETED,
            ExecutionPhase.FAILED,
        }
    ),
    ExecutionPhase.COMPLETED: frozenset({ExecutionPhase.IDLE}),
    ExecutionPhase.FAILED: frozenset({ExecutionPhase.IDLE}),
}


def _camel(reason: FailureReason) -> str:
    return "".join(part.capitalize() for part in reason.value.split("_"))


@dataclass(frozen=True)
class ExecutionState:
    phase: ExecutionPhase
    leg: Optional[int] = None
    reason: Optional[FailureReason] = None

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def __str__(self) -> str:
        if self.phase == ExecutionPhase.AWAITING_LEG_CONFIRM:
            return f"{self.phase.value}({self.leg})"
        if self.phase == ExecutionPhase.FAILED and self.reason:
            return f"{self.phase.value}({_camel(self.reason)})"
        return self.phase.value


class StepKind(str, Enum):
    APPROVAL = "approval"
    SWAP_LEG = "swap_leg"


@dataclass
class ExecutionStep:
    kind: StepKind
    leg: int
    target: str  # spender for approvals, swap contract for legs
    token: str
    min_output: Optional[Decimal] = None  # filled in right before submission


@dataclass
class ExecutionPlan:
    """Confirmed request, its quote and the ordered steps. Never resumed."""

    request: SwapRequest
    quote: Quote
    steps: list[ExecutionStep] = field(default_factory=list)

    @property
    def legs(self) -> tuple[SwapLeg, ...]:
        return self.quote.plan.legs

    def swap_step(self, leg: int) -> ExecutionStep:
        return next(s for s in self.steps if s.kind == StepKind.SWAP_LEG and s.leg == leg)


@dataclass
class ExecutionResult:
    """Outcome of one execution plan."""

    state: ExecutionState
    success: bool
    completed_legs: int = 0
    total_legs: int = 0
    held_token: Optional[str] = None
    held_amount: Optional[Decimal] = None
    tx_hashes: list[str] = field(default_factory=list)
    trace: list[str] = field(default_factory=list)
    error: Optional[SwapError] = None
    cancelled: bool = False

    @property
    def reason(self) -> Optional[FailureReason]:
        return self.state.reason

    @property
    def partial(self) -> bool:
        """Some legs are committed on the ledger but the plan did not finish."""
        return not self.success and 0 < self.completed_legs < self.total_legs

    @property
    def user_message(self) -> str:
        if self.success:
            return f"Swap completed: received {self.held_amount} {self.held_token}"
        if self.cancelled and not self.partial:
            return "Swap cancelled before any transaction was sent"
        if self.cancelled:
            message = "Swap cancelled."
        else:
            message = self.error.user_message if self.error else "Swap failed"
        if self.partial:
            message += (
                f" Leg {self.completed_legs} of {self.total_legs} already completed; "
                f"you now hold {self.held_amount} {self.held_token}. "
                "Quote a new swap from that token to continue."
            )
        return message


class SwapExecutor:
    """Orchestrates quoting, approvals and leg execution for one account.

    A single plan runs at a time; ``execute`` raises
    :class:`ExecutionInProgress` while another plan is running.
    """

    def __init__(
        self,
        calculator: RouteCalculator,
        balance_validator: BalanceValidator,
        allowance_manager: AllowanceManager,
        slippage: SlippageController,
        signer: TransactionSigner,
        registry: TokenRegistry,
        notifier: Optional[StatusNotifier] = None,
        confirmation_timeout: float = 120.0,
        debounce_seconds: float = 0.8,
    ):
        self.calculator = calculator
        self.service = calculator.service
        self.balances = balance_validator
        self.allowances = allowance_manager
        self.slippage = slippage
        self.signer = signer
        self.registry = registry
        self.notifier = notifier or StatusNotifier()
        self.confirmation_timeout = confirmation_timeout

        self.state = ExecutionState(ExecutionPhase.IDLE)
        self.trace: list[ExecutionState] = [self.state]
        self.request: Optional[SwapRequest] = None
        self.current_quote: Optional[Quote] = None
        self.plan: Optional[ExecutionPlan] = None
        self.last_error: Optional[SwapError] = None

        self._session = QuoteSession(self._quote_now, debounce_seconds)
        self._lock = asyncio.Lock()
        self._cancel_requested = False

    @property
    def owner(self) -> str:
        return self.signer.address

    @property
    def trace_labels(self) -> list[str]:
        return [str(state) for state in self.trace]

    @property
    def is_executing(self) -> bool:
        return self._lock.locked()

    # ----------------------------------------------------------------------
    # State
    # ----------------------------------------------------------------------

    async def _transition(
        self,
        phase: ExecutionPhase,
        leg: Optional[int] = None,
        reason: Optional[FailureReason] = None,
        message: str = "",
    ) -> None:
        if phase not in _TRANSITIONS[self.state.phase]:
            raise InvalidStateTransition(f"{self.state} -> {phase.value} is not allowed")

        self.state = ExecutionState(phase, leg, reason)
        self.trace.append(self.state)
        logger.info(f"Swap state: {self.state}" + (f" - {message}" if message else ""))
        await self.notifier.notify(
            StatusEvent(
                phase=str(self.state),
                leg=leg,
                message=message,
                reason=reason.value if reason else None,
            )
        )

    async def _emit_tx(self, leg: int, handle: TransactionHandle, message: str) -> None:
        await self.notifier.notify(
            StatusEvent(phase=str(self.state), leg=leg, tx_hash=handle.tx_hash, message=message)
        )

    async def reset(self) -> None:
        """Return to Idle after a terminal state, clearing the trace."""
        if self.is_executing:
            raise ExecutionInProgress("Cannot reset while a plan is executing")
        self._session.cancel()
        self.current_quote = None
        self.plan = None
        self.state = ExecutionState(ExecutionPhase.IDLE)
        self.trace = [self.state]

    # ----------------------------------------------------------------------
    # Quoting
    # ----------------------------------------------------------------------

    async def update_input(
        self, request: SwapRequest, debounce: bool = True
    ) -> Optional[asyncio.Task]:
        """React to an edit of the swap form.

        Any pending quote is superseded. A missing or non-positive amount, or
        a quoting service that is not ready yet, leaves the executor Idle.
        """
        if self.is_executing:
            raise ExecutionInProgress("Cannot requote while a plan is executing")

        self.slippage.validate_tolerance(request.slippage_tolerance_bps)
        source = self.registry.get(request.from_token)
        target = self.registry.get(request.to_token)
        if source.symbol == target.symbol:
            raise ValueError("Source and destination tokens must differ")

        if self.state.is_terminal:
            await self.reset()

        self.current_quote = None
        if not request.has_amount or not self.service.is_ready:
            self._session.cancel()
            if not self.service.is_ready:
                logger.debug(f"{self.service.name} not ready, quote deferred")
            if self.state.phase != ExecutionPhase.IDLE:
                await self._transition(ExecutionPhase.IDLE)
            return None

        self.request = request
        await self._transition(ExecutionPhase.CALCULATING)
        return self._session.submit(request, delay=None if debounce else 0)

    async def quote(self, request: SwapRequest) -> Optional[Quote]:
        """Quote ``request`` right away; None if there is nothing to quote or no route."""
        task = await self.update_input(request, debounce=False)
        if task is None:
            return None
        return await self.wait_for_quote()

    async def wait_for_quote(self) -> Optional[Quote]:
        return await self._session.latest()

    async def _quote_now(self, request: SwapRequest) -> Optional[Quote]:
        try:
            quote = await self.calculator.calculate(
                request.from_token, request.to_token, request.amount, request.direction
            )
        except SwapError as e:
            # No liquidity or backend trouble: recover locally, wait for the next edit
            logger.warning(f"Quote failed for {request.from_token} -> {request.to_token}: {e}")
            self.last_error = e
            await self._transition(ExecutionPhase.FAILED, reason=e.reason, message=e.user_message)
            await self._transition(ExecutionPhase.IDLE)
            return None
        except QuotingServiceNotReady as e:
            logger.warning(f"Quote skipped: {e}")
            await self._transition(ExecutionPhase.IDLE)
            return None

        self.current_quote = quote
        self.last_error = None
        await self._transition(
            ExecutionPhase.QUOTED,
            message=f"{quote.input_amount} {quote.from_token} -> {quote.output_amount} {quote.to_token}",
        )
        return quote

    async def cancel(self) -> bool:
        """Cancel before any transaction is in flight.

        Allowed while Calculating, Quoted or AwaitingApproval; returns False
        (and changes nothing) in any other state.
        """
        phase = self.state.phase
        if phase in (ExecutionPhase.CALCULATING, ExecutionPhase.QUOTED):
            self._session.cancel()
            self.current_quote = None
            await self._transition(ExecutionPhase.IDLE, message="Cancelled")
            return True
        if phase == ExecutionPhase.AWAITING_APPROVAL:
            self._cancel_requested = True
            return True
        logger.info(f"Cancel ignored in state {self.state}")
        return False

    # ----------------------------------------------------------------------
    # Execution
    # ----------------------------------------------------------------------

    async def build_plan(self, request: SwapRequest, quote: Quote) -> ExecutionPlan:
        """Lay out approval and swap steps from current allowances."""
        steps = []
        for index, (leg, (amount_in, _)) in enumerate(zip(quote.plan.legs, quote.leg_amounts), start=1):
            token_in = self.registry.get(leg.token_in)
            spender = leg.spender(self.service.router_address)
            if await self.allowances.needs_approval(token_in, self.owner, spender, amount_in):
                steps.append(ExecutionStep(StepKind.APPROVAL, index, spender, token_in.symbol))
            steps.append(ExecutionStep(StepKind.SWAP_LEG, index, spender, token_in.symbol))
        return ExecutionPlan(request=request, quote=quote, steps=steps)

    async def execute(self) -> ExecutionResult:
        """Run the current quote to completion or a classified failure."""
        if self._lock.locked():
            raise ExecutionInProgress("A swap is already executing")

        async with self._lock:
            if self.state.phase != ExecutionPhase.QUOTED or self.current_quote is None:
                raise InvalidStateTransition(f"Nothing to execute in state {self.state}")

            self._cancel_requested = False
            quote, request = self.current_quote, self.request
            if quote.is_expired:
                logger.info("Quote expired; legs are re-quoted before submission")

            try:
                self.plan = await self.build_plan(request, quote)
            except (httpx.HTTPError, JsonRpcError) as e:
                return await self._fail(NetworkError(f"Could not read allowance: {e}"), 0, None, [])

            try:
                return await self._run(self.plan)
            finally:
                self.current_quote = None

    async def _run(self, plan: ExecutionPlan) -> ExecutionResult:
        request = plan.request
        legs = plan.legs
        amount_in = plan.quote.input_amount
        tx_hashes: list[str] = []
        completed = 0
        held: Optional[tuple[str, Decimal]] = None

        try:
            for index, leg in enumerate(legs, start=1):
                token_in = self.registry.get(leg.token_in)
                token_out = self.registry.get(leg.token_out)
                spender = leg.spender(self.service.router_address)

                if index == 1:
                    (await self.balances.validate(token_in, self.owner, amount_in)).raise_for_status()

                if await self.allowances.needs_approval(token_in, self.owner, spender, amount_in):
                    await self._transition(ExecutionPhase.AWAITING_APPROVAL, leg=index)
                    # Give a pending cancel() the chance to land before signing
                    await asyncio.sleep(0)
                    if self._cancel_requested:
                        return await self._cancelled(completed, held, tx_hashes, len(legs))
                    await self._transition(ExecutionPhase.APPROVING, leg=index)
                    await self.allowances.ensure_allowance(
                        token_in, self.owner, spender, amount_in, submitted=tx_hashes
                    )

                await self._transition(
                    ExecutionPhase.AWAITING_LEG_CONFIRM,
                    leg=index,
                    message=f"{amount_in} {token_in.symbol} -> {token_out.symbol}",
                )
                (await self.balances.validate(token_in, self.owner, amount_in)).raise_for_status()

                fresh, bound = await self.slippage.bound_for_leg(
                    self.calculator, leg, amount_in, request.slippage_tolerance_bps
                )
                plan.swap_step(index).min_output = bound

                before = await self.balances.ledger.get_balance(self.owner, token_out)
                handle = await self.service.swap(fresh.plan.legs[0], amount_in, bound)
                tx_hashes.append(handle.tx_hash)
                await self._emit_tx(index, handle, f"Leg {index} submitted")

                receipt = await self._confirm(handle)
                if not receipt.succeeded:
                    raise classify_revert(receipt.revert_reason, handle.tx_hash)
                completed = index

                after = await self.balances.ledger.get_balance(self.owner, token_out)
                received = after - before
                if token_out.is_native:
                    received += receipt.fee_paid
                held = (token_out.symbol, received)
                logger.info(f"Leg {index} confirmed: received {received} {token_out.symbol}")
                amount_in = received

        except SwapError as e:
            return await self._fail(e, completed, held, tx_hashes, len(legs))
        except SignerRejected as e:
            return await self._fail(UserCancelled(f"Signer rejected: {e}"), completed, held, tx_hashes, len(legs))
        except (httpx.HTTPError, JsonRpcError) as e:
            return await self._fail(NetworkError(f"Network error: {e}"), completed, held, tx_hashes, len(legs))
        except Exception as e:
            # Leave the plan terminal before surfacing the bug
            logger.exception(f"Unexpected error during leg {completed + 1}")
            await self._fail(SwapError(f"Unexpected error: {e}"), completed, held, tx_hashes, len(legs))
            raise

        await self._transition(
            ExecutionPhase.COMPLETED, message=f"Received {held[1]} {held[0]}"
        )
        return ExecutionResult(
            state=self.state,
            success=True,
            completed_legs=completed,
            total_legs=len(legs),
            held_token=held[0],
            held_amount=held[1],
            tx_hashes=tx_hashes,
            trace=self.trace_labels,
        )

    async def _confirm(self, handle: TransactionHandle) -> Receipt:
        try:
            return await asyncio.wait_for(
                self.signer.wait_for_confirmation(handle, self.confirmation_timeout),
                timeout=self.confirmation_timeout,
            )
        except asyncio.TimeoutError:
            raise TransactionTimeout(
                f"Transaction {handle.tx_hash} not confirmed after {self.confirmation_timeout}s",
                tx_hash=handle.tx_hash,
            ) from None

    async def _fail(
        self,
        error: SwapError,
        completed: int,
        held: Optional[tuple[str, Decimal]],
        tx_hashes: list[str],
        total_legs: int = 0,
    ) -> ExecutionResult:
        self.last_error = error
        if completed:
            logger.error(
                f"Swap failed at leg {completed + 1}/{total_legs} after partial completion: {error}"
            )
        else:
            logger.error(f"Swap failed: {error}")
        await self._transition(ExecutionPhase.FAILED, reason=error.reason, message=error.user_message)
        return ExecutionResult(
            state=self.state,
            success=False,
            completed_legs=completed,
            total_legs=total_legs,
            held_token=held[0] if held else None,
            held_amount=held[1] if held else None,
            tx_hashes=tx_hashes,
            trace=self.trace_labels,
            error=error,
        )

    async def _cancelled(
        self,
        completed: int,
        held: Optional[tuple[str, Decimal]],
        tx_hashes: list[str],
        total_legs: int,
    ) -> ExecutionResult:
        self._cancel_requested = False
        if completed:
            logger.warning(
                f"Swap cancelled before leg {completed + 1}/{total_legs}; "
                f"holding {held[1]} {held[0]}"
            )
        await self._transition(ExecutionPhase.IDLE, message="Cancelled before approval")
        return ExecutionResult(
            state=self.state,
            success=False,
            completed_legs=completed,
            total_legs=total_legs,
            held_token=held[0] if held else None,
            held_amount=held[1] if held else None,
            tx_hashes=tx_hashes,
            trace=self.trace_labels,
            cancelled=True,
        )
