"""Abstract ledger and signer interfaces consumed by the swap services."""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from poolswap.tokens import TokenDescriptor


@dataclass(frozen=True)
class AllowanceRecord:
    """A freshly read allowance; never cached across execution steps."""

    owner: str
    spender: str
    token: str
    amount: Decimal


@dataclass
class TransactionPayload:
    """An unsigned transaction ready for the signer."""

    to: str
    data: str = "0x"
    value: int = 0  # wei
    gas: Optional[int] = None
    description: str = ""
    # Structured description of the call, used by simulated chains and logs
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class TransactionHandle:
    """Reference to a submitted transaction."""

    tx_hash: str
    submitted_at: float = field(default_factory=time.time)


@dataclass
class Receipt:
    """Outcome of a mined transaction."""

    tx_hash: str
    succeeded: bool
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    fee_paid: Decimal = Decimal("0")  # in native units
    revert_reason: Optional[str] = None


class LedgerReader(ABC):
    """Read-only access to balances and allowances."""

    @abstractmethod
    async def get_balance(self, account: str, token: TokenDescriptor) -> Decimal:
        """Balance of ``account`` in human units of ``token``."""

    @abstractmethod
    async def get_allowance(
        self, owner: str, spender: str, token: TokenDescriptor
    ) -> Decimal:
        """Amount ``spender`` may currently pull from ``owner``."""

    async def read_allowance(
        self, owner: str, spender: str, token: TokenDescriptor
    ) -> AllowanceRecord:
        amount = await self.get_allowance(owner, spender, token)
        return AllowanceRecord(owner=owner, spender=spender, token=token.symbol, amount=amount)


class TransactionSigner(ABC):
    """Signs, submits and tracks transactions for a single account."""

    @property
    @abstractmethod
    def address(self) -> str:
        """Account the signer submits from."""

    @abstractmethod
    async def submit(self, payload: TransactionPayload) -> TransactionHandle:
        """Sign and broadcast ``payload``.

        Raises:
            SignerRejected: the account owner declined to sign
        """

    @abstractmethod
    async def wait_for_confirmation(
        self, handle: TransactionHandle, timeout: float
    ) -> Receipt:
        """Block until the transaction is mined.

        Raises:
            TransactionTimeout: no receipt observed within ``timeout`` seconds
        """
