"""Status sinks for swap execution.

The executor emits a :class:`StatusEvent` on every state transition and
transaction submission. Rendering (toasts, chat messages) belongs to whatever
sink is plugged in; the sinks here log, record or forward events.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusEvent:
    """A phase change, optionally tied to a leg and a transaction."""

    phase: str
    leg: Optional[int] = None
    tx_hash: Optional[str] = None
    message: str = ""
    reason: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    def __str__(self) -> str:
        text = self.phase
        if self.tx_hash:
            text += f" [{self.tx_hash[:10]}...]"
        if self.message:
            text += f": {self.message}"
        return text


class StatusNotifier:
    """Base sink: ignores every event."""

    async def notify(self, event: StatusEvent) -> None:
        return None


class LoggingStatusNotifier(StatusNotifier):
    async def notify(self, event: StatusEvent) -> None:
        if event.phase.startswith("Failed"):
            logger.warning(f"Swap status: {event}")
        else:
            logger.info(f"Swap status: {event}")


class RecordingStatusNotifier(StatusNotifier):
    """Keeps every event, for tests and the CLI trace."""

    def __init__(self):
        self.events: list[StatusEvent] = []

    async def notify(self, event: StatusEvent) -> None:
        self.events.append(event)

    @property
    def phases(self) -> list[str]:
        return [event.phase for event in self.events]

    @property
    def tx_hashes(self) -> list[str]:
        return [event.tx_hash for event in self.events if event.tx_hash]


StatusCallback = Callable[[StatusEvent], Union[None, Awaitable[None]]]


class CallbackStatusNotifier(StatusNotifier):
    """Forwards events to a plain or async callable.

    A failing callback is logged and never interrupts execution.
    """

    def __init__(self, callback: StatusCallback):
        self.callback = callback

    async def notify(self, event: StatusEvent) -> None:
        try:
            result = self.callback(event)
            if result is not None:
                await result
        except Exception as e:
            logger.error(f"Status callback failed for {event.phase}: {e}")
