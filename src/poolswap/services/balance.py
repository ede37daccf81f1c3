"""Balance sufficiency checks, including the native fee reserve."""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from poolswap.chain.base import LedgerReader
from poolswap.errors import InsufficientNativeBalance, InsufficientTokenBalance
from poolswap.tokens import TokenDescriptor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BalanceCheck:
    """Result of a balance check.

    ``suggested_amount`` is only a proposal; the caller decides whether to
    resubmit with it.
    """

    token: str
    ok: bool
    required: Decimal
    available: Decimal
    is_native: bool = False
    suggested_amount: Optional[Decimal] = None

    def raise_for_status(self) -> None:
        if self.ok:
            return
        error_cls = InsufficientNativeBalance if self.is_native else InsufficientTokenBalance
        raise error_cls(
            token=self.token,
            required=self.required,
            available=self.available,
            suggested_amount=self.suggested_amount,
        )


class BalanceValidator:
    """Reads a fresh balance and compares it with the required amount."""

    def __init__(self, ledger: LedgerReader, gas_reserve: Decimal = Decimal("0.001")):
        if gas_reserve < 0:
            raise ValueError("Gas reserve cannot be negative")
        self.ledger = ledger
        self.gas_reserve = gas_reserve

    async def validate(
        self,
        token: TokenDescriptor,
        owner: str,
        required_amount: Decimal,
        is_native: Optional[bool] = None,
    ) -> BalanceCheck:
        """Check ``owner`` can spend ``required_amount`` of ``token``.

        For the native asset the fee reserve is added on top of the amount.
        Never cached: call again right before every submission.
        """
        if is_native is None:
            is_native = token.is_native

        available = await self.ledger.get_balance(owner, token)
        required = required_amount + self.gas_reserve if is_native else required_amount

        if available >= required:
            return BalanceCheck(
                token=token.symbol,
                ok=True,
                required=required,
                available=available,
                is_native=is_native,
            )

        suggested = None
        if is_native:
            suggested = token.quantize(max(Decimal("0"), available - self.gas_reserve))

        logger.warning(
            f"Insufficient {token.symbol}: have {available}, need {required}"
            + (f" (incl. {self.gas_reserve} reserve)" if is_native else "")
        )
        return BalanceCheck(
            token=token.symbol,
            ok=False,
            required=required,
            available=available,
            is_native=is_native,
            suggested_amount=suggested,
        )
