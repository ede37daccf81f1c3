"""Error taxonomy for quoting and swap execution.

Execution failures carry a :class:`FailureReason` so callers can branch on
the classification without string matching, plus a ``user_message`` that is
safe to show as-is.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional


class FailureReason(str, Enum):
    """Classified reason for a failed quote or execution."""

    NO_ROUTE_FOUND = "no_route_found"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    APPROVAL_FAILED = "approval_failed"
    USER_CANCELLED = "user_cancelled"
    SLIPPAGE_EXCEEDED = "slippage_exceeded"
    TRANSACTION_TIMEOUT = "transaction_timeout"
    TRANSACTION_REVERTED = "transaction_reverted"
    NETWORK_ERROR = "network_error"


class SwapError(Exception):
    """Base class for classified swap failures."""

    reason: FailureReason = FailureReason.TRANSACTION_REVERTED

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash

    @property
    def user_message(self) -> str:
        return str(self)


class NoRouteFound(SwapError):
    reason = FailureReason.NO_ROUTE_FOUND

    def __init__(self, from_token: str, to_token: str):
        self.from_token = from_token
        self.to_token = to_token
        super().__init__(f"No liquidity route found for {from_token} -> {to_token}")


class InsufficientBalance(SwapError):
    """Balance does not cover the required amount.

    ``suggested_amount`` is only ever a proposal for the caller to confirm;
    nothing substitutes it automatically.
    """

    reason = FailureReason.INSUFFICIENT_BALANCE

    def __init__(
        self,
        token: str,
        required: Decimal,
        available: Decimal,
        suggested_amount: Optional[Decimal] = None,
    ):
        self.token = token
        self.required = required
        self.available = available
        self.suggested_amount = suggested_amount
        super().__init__(
            f"Insufficient {token} balance. You have {available} but need {required}"
        )


class InsufficientNativeBalance(InsufficientBalance):
    """Native balance cannot cover the amount plus the fee reserve."""

    @property
    def user_message(self) -> str:
        message = (
            f"Insufficient {self.token} balance. You have {self.available} {self.token}, "
            f"but need {self.required} including the fee reserve."
        )
        if self.suggested_amount:
            message += f" Try swapping a smaller amount (max ~{self.suggested_amount} {self.token})"
        return message


class InsufficientTokenBalance(InsufficientBalance):
    pass


class ApprovalFailed(SwapError):
    reason = FailureReason.APPROVAL_FAILED


class UserCancelled(SwapError):
    reason = FailureReason.USER_CANCELLED

    def __init__(self, message: str = "Transaction cancelled by user", tx_hash: Optional[str] = None):
        super().__init__(message, tx_hash)


class SlippageExceeded(SwapError):
    reason = FailureReason.SLIPPAGE_EXCEEDED

    @property
    def user_message(self) -> str:
        return (
            "Price moved beyond your slippage tolerance before the swap was mined. "
            "Request a new quote or raise the tolerance."
        )


class TransactionTimeout(SwapError):
    reason = FailureReason.TRANSACTION_TIMEOUT

    @property
    def user_message(self) -> str:
        return (
            f"No confirmation observed for {self.tx_hash or 'the transaction'}. "
            "It may still be mined; check your wallet before retrying."
        )


class TransactionReverted(SwapError):
    reason = FailureReason.TRANSACTION_REVERTED


class NetworkError(SwapError):
    reason = FailureReason.NETWORK_ERROR


class SignerRejected(Exception):
    """Raised by a signer when the wallet owner declines to sign."""


class InvalidSlippageTolerance(ValueError):
    """Tolerance outside the accepted range."""


class UnknownToken(KeyError):
    """Symbol not present in the token registry."""

    def __str__(self) -> str:
        return f"Unknown token: {self.args[0]}"


class QuotingServiceNotReady(RuntimeError):
    """The quoting service has not finished initializing."""


class ExecutionInProgress(RuntimeError):
    """A second execution was requested while one is running."""


class InvalidStateTransition(RuntimeError):
    """Operation not allowed in the executor's current state."""


# Revert strings emitted by pools when the minimum-output bound is hit
SLIPPAGE_REVERT_MARKERS = (
    "exchange resulted in fewer coins than expected",
    "slippage",
    "min_dy",
    "insufficient output amount",
)


def classify_revert(
    revert_reason: Optional[str], tx_hash: Optional[str] = None
) -> SwapError:
    """Map an on-ledger revert message to a classified error."""
    text = (revert_reason or "").lower()
    if any(marker in text for marker in SLIPPAGE_REVERT_MARKERS):
        return SlippageExceeded(
            f"Swap reverted by minimum-output bound: {revert_reason}", tx_hash=tx_hash
        )
    detail = f": {revert_reason}" if revert_reason else ""
    return TransactionReverted(f"Transaction reverted{detail}", tx_hash=tx_hash)
