"""Local transaction signer for EVM chains.

Signs with a hex private key held in memory and broadcasts through the
configured JSON-RPC endpoint. An optional ``confirm`` callback plays the role
of a wallet prompt: returning False rejects the transaction.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Awaitable, Callable, Optional

from eth_account import Account
from eth_utils import to_checksum_address

from poolswap.chain.base import Receipt, TransactionHandle, TransactionPayload, TransactionSigner
from poolswap.chain.rpc import JsonRpcClient, JsonRpcError
from poolswap.chain.transactions import decode_revert_reason
from poolswap.errors import SignerRejected, TransactionTimeout

logger = logging.getLogger(__name__)

ConfirmCallback = Callable[[TransactionPayload], Awaitable[bool]]

DEFAULT_GAS_LIMIT = 300_000
GAS_LIMIT_PADDING = Decimal("1.2")


class LocalSigner(TransactionSigner):
    """Signer backed by an in-memory private key."""

    def __init__(
        self,
        client: JsonRpcClient,
        private_key: str,
        chain_id: int = 1,
        confirm: Optional[ConfirmCallback] = None,
        poll_interval: float = 2.0,
    ):
        self.client = client
        self.chain_id = chain_id
        self.confirm = confirm
        self.poll_interval = poll_interval
        self._account = Account.from_key(private_key)
        self._nonce_lock = asyncio.Lock()
        self._next_nonce: Optional[int] = None
        self._sent: dict[str, dict] = {}

    @property
    def address(self) -> str:
        return self._account.address

    async def _get_next_nonce(self) -> int:
        """Use the higher of the node's pending nonce and our local counter."""
        chain_nonce = await self.client.get_transaction_count(self.address)
        nonce = max(chain_nonce, self._next_nonce or 0)
        self._next_nonce = nonce + 1
        return nonce

    async def submit(self, payload: TransactionPayload) -> TransactionHandle:
        if self.confirm is not None and not await self.confirm(payload):
            logger.info(f"Signer rejected: {payload.description}")
            raise SignerRejected(payload.description or "Transaction rejected")

        async with self._nonce_lock:
            tx = {
                "from": self.address,
                "to": to_checksum_address(payload.to),
                "value": payload.value,
                "data": payload.data,
                "chainId": self.chain_id,
            }
            gas = payload.gas
            if gas is None:
                try:
                    estimate = await self.client.estimate_gas(
                        {"from": self.address, "to": tx["to"], "value": hex(payload.value), "data": payload.data}
                    )
                    gas = int(Decimal(estimate) * GAS_LIMIT_PADDING)
                except JsonRpcError as e:
                    logger.warning(f"Gas estimate failed ({e}), using {DEFAULT_GAS_LIMIT}")
                    gas = DEFAULT_GAS_LIMIT
            tx["gas"] = gas
            tx["gasPrice"] = await self.client.gas_price()
            tx["nonce"] = await self._get_next_nonce()
            tx.pop("from")

            signed = self._account.sign_transaction(tx)
            tx_hash = await self.client.send_raw_transaction("0x" + bytes(signed.raw_transaction).hex())

        self._sent[tx_hash] = {
            "from": self.address,
            "to": tx["to"],
            "value": hex(payload.value),
            "data": payload.data,
        }
        logger.info(f"Submitted {tx_hash}: {payload.description}")
        return TransactionHandle(tx_hash=tx_hash)

    async def wait_for_confirmation(
        self, handle: TransactionHandle, timeout: float
    ) -> Receipt:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            raw = await self.client.get_transaction_receipt(handle.tx_hash)
            if raw is not None:
                receipt = await self._to_receipt(handle.tx_hash, raw)
                self._sent.pop(handle.tx_hash, None)
                return receipt
            if loop.time() >= deadline:
                raise TransactionTimeout(
                    f"Transaction {handle.tx_hash} not confirmed after {timeout}s",
                    tx_hash=handle.tx_hash,
                )
            await asyncio.sleep(self.poll_interval)

    async def _to_receipt(self, tx_hash: str, raw: dict) -> Receipt:
        succeeded = int(raw.get("status", "0x1"), 16) == 1
        gas_used = int(raw.get("gasUsed", "0x0"), 16)
        gas_price = int(raw.get("effectiveGasPrice", "0x0"), 16)
        block_number = int(raw.get("blockNumber", "0x0"), 16)

        revert_reason = None
        if not succeeded:
            revert_reason = await self._replay_for_reason(tx_hash, block_number)
            logger.warning(f"Transaction {tx_hash} reverted: {revert_reason}")

        return Receipt(
            tx_hash=tx_hash,
            succeeded=succeeded,
            block_number=block_number,
            gas_used=gas_used,
            fee_paid=Decimal(gas_used * gas_price) / Decimal(10**18),
            revert_reason=revert_reason,
        )

    async def _replay_for_reason(self, tx_hash: str, block_number: int) -> Optional[str]:
        """Re-run the reverted call at its block to recover the revert string."""
        call = self._sent.get(tx_hash)
        if call is None:
            tx = await self.client.get_transaction(tx_hash)
            if tx is None:
                return None
            call = {"from": tx["from"], "to": tx["to"], "value": tx["value"], "data": tx["input"]}
        try:
            await self.client.call("eth_call", [call, hex(block_number)])
        except JsonRpcError as e:
            data = e.data if isinstance(e.data, str) else None
            return decode_revert_reason(data) or e.message
        return None
