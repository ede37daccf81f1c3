"""Spend-permission lifecycle for contract tokens.

Allowances are always read fresh from the ledger before a decision. Tokens
that reject a nonzero -> nonzero approval (USDT and similar) are reset to
zero first, waiting for the reset to confirm before the target approval.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Literal, Optional

from poolswap.chain.base import LedgerReader, TransactionPayload, TransactionSigner
from poolswap.chain.transactions import TransactionBuilder
from poolswap.errors import (
    ApprovalFailed,
    SignerRejected,
    TransactionTimeout,
    UserCancelled,
)
from poolswap.tokens import TokenDescriptor

logger = logging.getLogger(__name__)


class AllowanceStatus(str, Enum):
    APPROVED = "approved"
    SKIPPED_NATIVE = "skipped_native"
    SKIPPED_SUFFICIENT = "skipped_sufficient"


@dataclass
class AllowanceResult:
    status: AllowanceStatus
    token: str
    spender: str
    allowance: Optional[Decimal] = None
    tx_hashes: list[str] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        return self.status != AllowanceStatus.APPROVED


class AllowanceManager:
    """Reads and grants token allowances for a spender."""

    def __init__(
        self,
        ledger: LedgerReader,
        signer: TransactionSigner,
        approval_policy: Literal["exact", "unlimited"] = "exact",
        confirmation_timeout: float = 120.0,
    ):
        self.ledger = ledger
        self.signer = signer
        self.approval_policy = approval_policy
        self.confirmation_timeout = confirmation_timeout
        self._builder = TransactionBuilder()

    async def needs_approval(
        self,
        token: TokenDescriptor,
        owner: str,
        spender: str,
        required_amount: Decimal,
    ) -> bool:
        """True only when the current allowance is strictly below the requirement."""
        if token.is_native:
            return False
        record = await self.ledger.read_allowance(owner, spender, token)
        return record.amount < required_amount

    async def ensure_allowance(
        self,
        token: TokenDescriptor,
        owner: str,
        spender: str,
        required_amount: Decimal,
        force_reset: bool = False,
        submitted: Optional[list[str]] = None,
    ) -> AllowanceResult:
        """Make sure ``spender`` may pull ``required_amount`` of ``token``.

        Args:
            token: Token being spent
            owner: Account holding the tokens
            spender: Router or pool contract
            required_amount: Amount the next swap will pull
            force_reset: Reset to zero first even if the token does not require it
            submitted: Receives each approval hash as soon as it is sent,
                including ones that later revert or time out

        Raises:
            ApprovalFailed: an approval transaction reverted
            UserCancelled: the signer declined an approval
            TransactionTimeout: an approval was not confirmed in time
        """
        if token.is_native:
            logger.debug(f"{token.symbol} is native, no approval needed")
            return AllowanceResult(AllowanceStatus.SKIPPED_NATIVE, token.symbol, spender)

        record = await self.ledger.read_allowance(owner, spender, token)
        if record.amount >= required_amount:
            logger.info(
                f"Sufficient {token.symbol} allowance for {spender[:10]}...: "
                f"{record.amount} >= {required_amount}"
            )
            return AllowanceResult(
                AllowanceStatus.SKIPPED_SUFFICIENT, token.symbol, spender, allowance=record.amount
            )

        result = AllowanceResult(AllowanceStatus.APPROVED, token.symbol, spender)

        if record.amount > 0 and (token.requires_allowance_reset or force_reset):
            logger.info(f"Resetting {token.symbol} allowance ({record.amount}) to zero first")
            reset = self._builder.build_approval(token, spender, 0)
            result.tx_hashes.append(await self._submit_and_confirm(reset, submitted))

        amount = None if self.approval_policy == "unlimited" else token.to_base_units(required_amount)
        approval = self._builder.build_approval(token, spender, amount)
        logger.info(
            f"Approving {spender[:10]}... for "
            f"{'unlimited' if amount is None else required_amount} {token.symbol}"
        )
        result.tx_hashes.append(await self._submit_and_confirm(approval, submitted))

        result.allowance = (await self.ledger.read_allowance(owner, spender, token)).amount
        return result

    async def _submit_and_confirm(
        self, payload: TransactionPayload, submitted: Optional[list[str]] = None
    ) -> str:
        try:
            handle = await self.signer.submit(payload)
        except SignerRejected as e:
            raise UserCancelled(f"Approval rejected: {e}") from e
        if submitted is not None:
            submitted.append(handle.tx_hash)

        try:
            receipt = await self.signer.wait_for_confirmation(handle, self.confirmation_timeout)
        except TransactionTimeout:
            logger.error(f"Approval {handle.tx_hash} not confirmed in {self.confirmation_timeout}s")
            raise

        if not receipt.succeeded:
            raise ApprovalFailed(
                f"{payload.description} reverted: {receipt.revert_reason or 'unknown reason'}",
                tx_hash=handle.tx_hash,
            )
        logger.info(f"Approval confirmed: {handle.tx_hash}")
        return handle.tx_hash
