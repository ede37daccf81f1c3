"""Tests for the JSON-RPC client, ledger reads, calldata and the local signer."""

import json
from decimal import Decimal

import httpx
import pytest

from poolswap.chain.base import TransactionHandle
from poolswap.chain.ledger import RpcLedgerReader
from poolswap.chain.rpc import JsonRpcClient, JsonRpcError
from poolswap.chain.signer import DEFAULT_GAS_LIMIT, LocalSigner
from poolswap.chain.transactions import (
    CURVE_EXCHANGE_INT128,
    CURVE_EXCHANGE_UINT256,
    CURVE_GET_DY_INT128,
    ERC20_APPROVE_SELECTOR,
    ERROR_STRING_SELECTOR,
    MAX_UINT256,
    TransactionBuilder,
    decode_revert_reason,
    decode_words,
    encode_uint,
)
from poolswap.errors import (
    FailureReason,
    SignerRejected,
    SlippageExceeded,
    TransactionReverted,
    TransactionTimeout,
    classify_revert,
)
from poolswap.routing.base import PoolRef
from poolswap.tokens import TokenRegistry

TEST_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
OWNER = "0x1111111111111111111111111111111111111111"
SPENDER = "0x2222222222222222222222222222222222222222"
NODE = "http://node.test"

STABLE_POOL = PoolRef(
    "3pool-usdc-usdt", "0x3333333333333333333333333333333333333333", ("USDC", "USDT")
)
CRYPTO_POOL = PoolRef(
    "tricrypto", "0x4444444444444444444444444444444444444444", ("USDC", "WBTC", "ETH"),
    uint256_indices=True,
)


def encode_error(message: str) -> str:
    raw = message.encode()
    padded = raw.hex().ljust(((len(raw) + 31) // 32) * 64, "0")
    return ERROR_STRING_SELECTOR + encode_uint(32) + encode_uint(len(raw)) + padded


class FakeNode:
    """Answers JSON-RPC calls from a table of method -> result or callable."""

    def __init__(self, results: dict):
        self.results = results
        self.calls: list[tuple[str, list]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        method, params = body["method"], body["params"]
        self.calls.append((method, params))
        answer = self.results.get(method)
        if callable(answer):
            answer = answer(params)
        if isinstance(answer, JsonRpcError):
            error = {"code": answer.code, "message": answer.message, "data": answer.data}
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": error})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": answer})

    def methods(self) -> list[str]:
        return [method for method, _ in self.calls]


def make_client(node, urls=(NODE,)) -> JsonRpcClient:
    transport = httpx.MockTransport(node)
    return JsonRpcClient(list(urls), client=httpx.AsyncClient(transport=transport))


@pytest.fixture
def registry() -> TokenRegistry:
    return TokenRegistry()


class TestJsonRpcClient:
    @pytest.mark.asyncio
    async def test_connect_skips_dead_endpoint(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "dead.test":
                return httpx.Response(502)
            body = json.loads(request.content)
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": "0x1"})

        client = make_client(handler, urls=("http://dead.test", NODE))

        assert await client.connect(expected_chain_id=1) == NODE
        assert client.url == NODE

    @pytest.mark.asyncio
    async def test_connect_rejects_wrong_chain(self):
        client = make_client(FakeNode({"eth_chainId": "0x89"}))

        with pytest.raises(httpx.ConnectError):
            await client.connect(expected_chain_id=1)

    @pytest.mark.asyncio
    async def test_error_object_raised(self):
        node = FakeNode({"eth_gasPrice": JsonRpcError(-32000, "header not found")})
        client = make_client(node)

        with pytest.raises(JsonRpcError) as exc_info:
            await client.gas_price()

        assert exc_info.value.code == -32000
        assert "header not found" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_hex_results_decoded(self):
        client = make_client(FakeNode({"eth_getBalance": "0xde0b6b3a7640000", "eth_gasPrice": "0x3b9aca00"}))

        assert await client.get_balance(OWNER) == 10**18
        assert await client.gas_price() == 10**9


class TestRpcLedgerReader:
    @pytest.mark.asyncio
    async def test_native_balance(self, registry):
        ledger = RpcLedgerReader(make_client(FakeNode({"eth_getBalance": hex(15 * 10**17)})))

        assert await ledger.get_balance(OWNER, registry.get("ETH")) == Decimal("1.5")

    @pytest.mark.asyncio
    async def test_token_balance_and_allowance(self, registry):
        def eth_call(params):
            data = params[0]["data"]
            if data.startswith("0x70a08231"):
                return "0x" + encode_uint(250_000_000)
            return "0x" + encode_uint(5_000_000)

        node = FakeNode({"eth_call": eth_call})
        ledger = RpcLedgerReader(make_client(node))
        usdc = registry.get("USDC")

        assert await ledger.get_balance(OWNER, usdc) == Decimal("250")
        assert await ledger.get_allowance(OWNER, SPENDER, usdc) == Decimal("5")
        assert node.calls[0][1][0]["to"] == usdc.address

    @pytest.mark.asyncio
    async def test_empty_result_reads_as_zero(self, registry):
        ledger = RpcLedgerReader(make_client(FakeNode({"eth_call": "0x"})))

        assert await ledger.get_allowance(OWNER, SPENDER, registry.get("DAI")) == Decimal("0")

    @pytest.mark.asyncio
    async def test_native_has_no_allowance(self, registry):
        ledger = RpcLedgerReader(make_client(FakeNode({})))

        with pytest.raises(ValueError):
            await ledger.get_allowance(OWNER, SPENDER, registry.get("ETH"))


class TestCalldata:
    def test_approval(self, registry):
        payload = TransactionBuilder().build_approval(registry.get("USDC"), SPENDER, 1_000_000)

        assert payload.data.startswith(ERC20_APPROVE_SELECTOR)
        words = decode_words(payload.data)
        assert int(words[0], 16) == int(SPENDER, 16)
        assert int(words[1], 16) == 1_000_000
        assert payload.value == 0
        assert payload.metadata["kind"] == "approve"

    def test_unlimited_approval(self, registry):
        payload = TransactionBuilder().build_approval(registry.get("USDC"), SPENDER)

        assert int(decode_words(payload.data)[1], 16) == MAX_UINT256

    def test_native_cannot_be_approved(self, registry):
        with pytest.raises(ValueError):
            TransactionBuilder().build_approval(registry.get("ETH"), SPENDER, 1)

    def test_stable_pool_exchange(self, registry):
        payload = TransactionBuilder().build_exchange(
            STABLE_POOL, registry.get("USDT"), registry.get("USDC"), Decimal("100"), Decimal("99.5")
        )

        assert payload.to == STABLE_POOL.address
        assert payload.data.startswith(CURVE_EXCHANGE_INT128)
        assert [int(w, 16) for w in decode_words(payload.data)] == [1, 0, 100_000_000, 99_500_000]
        assert payload.metadata["spender"] == STABLE_POOL.address

    def test_native_exchange_carries_value(self, registry):
        payload = TransactionBuilder().build_exchange(
            CRYPTO_POOL, registry.get("ETH"), registry.get("USDC"), Decimal("1.5"), Decimal("5000")
        )

        assert payload.data.startswith(CURVE_EXCHANGE_UINT256)
        assert payload.value == 15 * 10**17

    def test_get_dy(self):
        data = TransactionBuilder().get_dy_call(STABLE_POOL, "USDC", "USDT", 10**6)

        assert data.startswith(CURVE_GET_DY_INT128)
        assert [int(w, 16) for w in decode_words(data)] == [0, 1, 10**6]

    def test_uint256_range(self):
        with pytest.raises(ValueError):
            encode_uint(-1)


class TestRevertClassification:
    def test_decode_error_string(self):
        assert decode_revert_reason(encode_error("pool is killed")) == "pool is killed"
        assert decode_revert_reason("0x") is None
        assert decode_revert_reason(None) is None

    def test_min_output_revert_is_slippage(self):
        error = classify_revert("Exchange resulted in fewer coins than expected", "0xabc")

        assert isinstance(error, SlippageExceeded)
        assert error.reason == FailureReason.SLIPPAGE_EXCEEDED
        assert error.tx_hash == "0xabc"

    def test_other_revert(self):
        error = classify_revert(None)

        assert isinstance(error, TransactionReverted)
        assert error.reason == FailureReason.TRANSACTION_REVERTED


class TestLocalSigner:
    def node(self, **overrides) -> FakeNode:
        results = {
            "eth_estimateGas": "0x5208",
            "eth_gasPrice": "0x3b9aca00",
            "eth_getTransactionCount": "0x7",
            "eth_sendRawTransaction": "0x" + "ab" * 32,
            "eth_getTransactionReceipt": {
                "status": "0x1",
                "gasUsed": "0x5208",
                "effectiveGasPrice": "0x3b9aca00",
                "blockNumber": "0x10",
            },
        }
        results.update(overrides)
        return FakeNode(results)

    def payload(self, registry):
        return TransactionBuilder().build_approval(registry.get("USDC"), SPENDER, 1)

    @pytest.mark.asyncio
    async def test_submit_and_confirm(self, registry):
        node = self.node()
        signer = LocalSigner(make_client(node), TEST_KEY, poll_interval=0)

        handle = await signer.submit(self.payload(registry))
        receipt = await signer.wait_for_confirmation(handle, 1)

        assert handle.tx_hash == "0x" + "ab" * 32
        assert receipt.succeeded
        assert receipt.fee_paid == Decimal(21000 * 10**9) / Decimal(10**18)
        raw = dict(node.calls)["eth_sendRawTransaction"][0]
        assert raw.startswith("0x") and len(raw) > 2
        assert signer._sent == {}

    @pytest.mark.asyncio
    async def test_local_nonce_advances(self, registry):
        signer = LocalSigner(make_client(self.node()), TEST_KEY)

        await signer.submit(self.payload(registry))
        await signer.submit(self.payload(registry))

        assert signer._next_nonce == 9

    @pytest.mark.asyncio
    async def test_gas_estimate_failure_uses_default(self, registry):
        node = self.node(eth_estimateGas=JsonRpcError(3, "execution reverted"))
        signer = LocalSigner(make_client(node), TEST_KEY)

        await signer.submit(self.payload(registry))

        assert "eth_sendRawTransaction" in node.methods()
        assert DEFAULT_GAS_LIMIT == 300_000

    @pytest.mark.asyncio
    async def test_confirm_callback_rejects(self, registry):
        async def decline(payload):
            return False

        node = self.node()
        signer = LocalSigner(make_client(node), TEST_KEY, confirm=decline)

        with pytest.raises(SignerRejected):
            await signer.submit(self.payload(registry))
        assert "eth_sendRawTransaction" not in node.methods()

    @pytest.mark.asyncio
    async def test_revert_reason_replayed(self, registry):
        node = self.node(
            eth_getTransactionReceipt={"status": "0x0", "gasUsed": "0x5208", "blockNumber": "0x10"},
            eth_call=JsonRpcError(
                3, "execution reverted", encode_error("Exchange resulted in fewer coins than expected")
            ),
        )
        signer = LocalSigner(make_client(node), TEST_KEY, poll_interval=0)

        handle = await signer.submit(self.payload(registry))
        receipt = await signer.wait_for_confirmation(handle, 1)

        assert not receipt.succeeded
        assert receipt.revert_reason == "Exchange resulted in fewer coins than expected"
        assert node.calls[-1][1][1] == "0x10"
        assert signer._sent == {}

    @pytest.mark.asyncio
    async def test_confirmation_timeout(self):
        node = self.node(eth_getTransactionReceipt=None)
        signer = LocalSigner(make_client(node), TEST_KEY, poll_interval=0.01)

        with pytest.raises(TransactionTimeout) as exc_info:
            await signer.wait_for_confirmation(TransactionHandle(tx_hash="0xdead"), 0.03)

        assert exc_info.value.tx_hash == "0xdead"
