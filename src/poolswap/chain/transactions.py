"""Transaction builder for preparing unsigned payloads.

Calldata is hand-encoded: every argument used here is a static ABI type
(address, uint256, int128 >= 0), so each one is a single 32-byte word.
"""

import logging
from decimal import Decimal
from typing import Optional

from poolswap.chain.base import TransactionPayload
from poolswap.routing.base import PoolRef
from poolswap.tokens import TokenDescriptor

logger = logging.getLogger(__name__)

MAX_UINT256 = 2**256 - 1

# ERC-20 function selectors
ERC20_BALANCE_OF_SELECTOR = "0x70a08231"  # balanceOf(address)
ERC20_ALLOWANCE_SELECTOR = "0xdd62ed3e"  # allowance(address,address)
ERC20_APPROVE_SELECTOR = "0x095ea7b3"  # approve(address,uint256)

# Curve pool selectors; crypto pools take uint256 coin indices
CURVE_GET_DY_INT128 = "0x5e0d443f"  # get_dy(int128,int128,uint256)
CURVE_GET_DY_UINT256 = "0x556d6e9f"  # get_dy(uint256,uint256,uint256)
CURVE_EXCHANGE_INT128 = "0x3df02124"  # exchange(int128,int128,uint256,uint256)
CURVE_EXCHANGE_UINT256 = "0x5b41b908"  # exchange(uint256,uint256,uint256,uint256)

# Revert payload prefix for Error(string)
ERROR_STRING_SELECTOR = "0x08c379a0"


def encode_address(address: str) -> str:
    return address.lower().replace("0x", "").zfill(64)


def encode_uint(value: int) -> str:
    if value < 0 or value > MAX_UINT256:
        raise ValueError(f"Value out of uint256 range: {value}")
    return hex(value)[2:].zfill(64)


def encode_call(selector: str, *words: str) -> str:
    return selector + "".join(words)


def decode_uint(result: Optional[str]) -> int:
    if not result or result == "0x":
        return 0
    return int(result, 16)


def decode_words(data: str) -> list[str]:
    """Split calldata (without selector) into 32-byte hex words."""
    body = data[10:] if data.startswith("0x") else data[8:]
    return [body[i : i + 64] for i in range(0, len(body), 64)]


def decode_revert_reason(data: Optional[str]) -> Optional[str]:
    """Decode an ``Error(string)`` revert payload, if that is what it is."""
    if not data or not data.startswith(ERROR_STRING_SELECTOR):
        return None
    body = data[10:]
    try:
        length = int(body[64:128], 16)
        raw = bytes.fromhex(body[128 : 128 + length * 2])
    except ValueError:
        return None
    return raw.decode("utf-8", errors="replace")


class TransactionBuilder:
    """Builds unsigned ERC-20 payloads."""

    def build_approval(
        self,
        token: TokenDescriptor,
        spender: str,
        amount: Optional[int] = None,
    ) -> TransactionPayload:
        """Build an ERC-20 approval.

        Args:
            token: Token being approved
            spender: Address allowed to pull the tokens
            amount: Base units to approve (None = unlimited)
        """
        if token.is_native:
            raise ValueError("Native asset has no allowance")
        if amount is None:
            amount = MAX_UINT256

        data = encode_call(ERC20_APPROVE_SELECTOR, encode_address(spender), encode_uint(amount))
        description = (
            f"Reset {token.symbol} allowance for {spender[:10]}..."
            if amount == 0
            else f"Approve {spender[:10]}... to spend {token.symbol}"
        )
        return TransactionPayload(
            to=token.address,
            data=data,
            value=0,
            description=description,
            metadata={
                "kind": "approve",
                "token": token.symbol,
                "spender": spender,
                "amount": amount,
            },
        )

    def balance_of_call(self, owner: str) -> str:
        return encode_call(ERC20_BALANCE_OF_SELECTOR, encode_address(owner))

    def allowance_call(self, owner: str, spender: str) -> str:
        return encode_call(ERC20_ALLOWANCE_SELECTOR, encode_address(owner), encode_address(spender))

    def build_exchange(
        self,
        pool: PoolRef,
        token_in: TokenDescriptor,
        token_out: TokenDescriptor,
        amount_in: Decimal,
        min_output: Decimal,
    ) -> TransactionPayload:
        """Build ``exchange(i, j, dx, min_dy)`` against a single pool.

        The pool reverts on-chain when the output falls below ``min_output``.
        """
        selector = CURVE_EXCHANGE_UINT256 if pool.uint256_indices else CURVE_EXCHANGE_INT128
        dx = token_in.to_base_units(amount_in)
        min_dy = token_out.to_base_units(min_output)
        data = encode_call(
            selector,
            encode_uint(pool.index_of(token_in.symbol)),
            encode_uint(pool.index_of(token_out.symbol)),
            encode_uint(dx),
            encode_uint(min_dy),
        )
        return TransactionPayload(
            to=pool.address,
            data=data,
            value=dx if token_in.is_native else 0,
            description=f"Swap {amount_in} {token_in.symbol} for {token_out.symbol} on {pool.label}",
            metadata={
                "kind": "swap",
                "token_in": token_in.symbol,
                "token_out": token_out.symbol,
                "amount_in": amount_in,
                "min_output": min_output,
                "pools": [pool.pool_id],
                "spender": pool.address,
            },
        )

    def get_dy_call(self, pool: PoolRef, token_in: str, token_out: str, dx: int) -> str:
        selector = CURVE_GET_DY_UINT256 if pool.uint256_indices else CURVE_GET_DY_INT128
        return encode_call(
            selector,
            encode_uint(pool.index_of(token_in)),
            encode_uint(pool.index_of(token_out)),
            encode_uint(dx),
        )
