"""Debounced quote requests.

Each new request cancels the pending or in-flight one; a quote is only
computed after a quiet period with no further input, and a superseded
request never delivers its result.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from poolswap.routing.base import Quote, SwapRequest

logger = logging.getLogger(__name__)

QuoteFunction = Callable[[SwapRequest], Awaitable[Quote]]
QuoteListener = Callable[[SwapRequest, Quote], None]


class QuoteSession:
    """Runs at most one quote computation at a time, newest request wins."""

    def __init__(
        self,
        calculate: QuoteFunction,
        debounce_seconds: float = 0.8,
        on_quote: Optional[QuoteListener] = None,
    ):
        self._calculate = calculate
        self.debounce_seconds = debounce_seconds
        self.on_quote = on_quote
        self._task: Optional[asyncio.Task] = None
        self._generation = 0
        self.request: Optional[SwapRequest] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def submit(
        self, request: SwapRequest, delay: Optional[float] = None
    ) -> Optional[asyncio.Task]:
        """Schedule a quote for ``request``, superseding any earlier one.

        ``delay`` overrides the quiet period (0 quotes immediately). Returns
        None (and clears the session) when the request has no positive amount.
        """
        self.cancel()
        self._generation += 1
        if not request.has_amount:
            self.request = None
            return None

        self.request = request
        delay = self.debounce_seconds if delay is None else delay
        self._task = asyncio.create_task(self._run(request, self._generation, delay))
        return self._task

    def cancel(self) -> None:
        if self.pending:
            logger.debug("Superseding in-flight quote request")
            self._task.cancel()
        self._task = None

    async def latest(self) -> Optional[Quote]:
        """Wait for the newest request's quote; None if nothing is pending.

        Follows supersession: if the awaited request is replaced meanwhile,
        waits for the replacement instead.
        """
        while self._task is not None:
            task = self._task
            try:
                return await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
                if self._task is task:
                    raise
        return None

    async def _run(self, request: SwapRequest, generation: int, delay: float) -> Quote:
        if delay:
            await asyncio.sleep(delay)
        quote = await self._calculate(request)
        if generation == self._generation and self.on_quote is not None:
            self.on_quote(request, quote)
        return quote
