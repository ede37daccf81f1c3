"""Ledger reads over JSON-RPC."""

import logging
from decimal import Decimal

from poolswap.chain.base import LedgerReader
from poolswap.chain.rpc import JsonRpcClient
from poolswap.chain.transactions import TransactionBuilder, decode_uint
from poolswap.tokens import TokenDescriptor

logger = logging.getLogger(__name__)


class RpcLedgerReader(LedgerReader):
    """Reads native balances, ERC-20 balances and allowances from a node."""

    def __init__(self, client: JsonRpcClient):
        self.client = client
        self._builder = TransactionBuilder()

    async def get_balance(self, account: str, token: TokenDescriptor) -> Decimal:
        if token.is_native:
            raw = await self.client.get_balance(account)
        else:
            result = await self.client.eth_call(token.address, self._builder.balance_of_call(account))
            raw = decode_uint(result)
        balance = token.from_base_units(raw)
        logger.debug(f"Balance of {account[:10]}...: {balance} {token.symbol}")
        return balance

    async def get_allowance(
        self, owner: str, spender: str, token: TokenDescriptor
    ) -> Decimal:
        if token.is_native:
            raise ValueError("Native asset has no allowance")
        result = await self.client.eth_call(
            token.address, self._builder.allowance_call(owner, spender)
        )
        allowance = token.from_base_units(decode_uint(result))
        logger.debug(
            f"Allowance {token.symbol} {owner[:10]}... -> {spender[:10]}...: {allowance}"
        )
        return allowance
