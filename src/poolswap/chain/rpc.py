"""Minimal async Ethereum JSON-RPC client over httpx."""

import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


class JsonRpcError(Exception):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"JSON-RPC error {code}: {message}")


class JsonRpcClient:
    """Talks to the first reachable endpoint in ``urls``.

    ``connect()`` probes each URL in order and pins the first one that answers
    ``eth_chainId``; calls made before ``connect()`` use the first URL.
    """

    def __init__(
        self,
        urls: list[str],
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not urls:
            raise ValueError("At least one RPC URL is required")
        self.urls = list(urls)
        self.url = self.urls[0]
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._request_id = 0

    async def connect(self, expected_chain_id: Optional[int] = None) -> str:
        """Select the first working endpoint."""
        errors = []
        for url in self.urls:
            try:
                chain_id = int(await self._call(url, "eth_chainId", []), 16)
                if expected_chain_id is not None and chain_id != expected_chain_id:
                    errors.append(f"{url}: chain id {chain_id}")
                    continue
                self.url = url
                logger.info(f"RPC initialized with {url[:50]}")
                return url
            except (httpx.HTTPError, JsonRpcError, ValueError) as e:
                logger.warning(f"RPC failed for {url[:50]}: {e}")
                errors.append(f"{url}: {e}")
        raise httpx.ConnectError(f"All RPC endpoints failed: {'; '.join(errors)}")

    async def close(self) -> None:
        await self._client.aclose()

    async def call(self, method: str, params: list) -> Any:
        return await self._call(self.url, method, params)

    async def _call(self, url: str, method: str, params: list) -> Any:
        self._request_id += 1
        response = await self._client.post(
            url,
            json={"jsonrpc": "2.0", "method": method, "params": params, "id": self._request_id},
        )
        response.raise_for_status()
        data = response.json()
        if "error" in data:
            error = data["error"]
            raise JsonRpcError(error.get("code", 0), error.get("message", ""), error.get("data"))
        return data.get("result")

    # Typed helpers

    async def eth_call(self, to: str, data: str, block: str = "latest", **fields) -> str:
        return await self.call("eth_call", [{"to": to, "data": data, **fields}, block])

    async def get_balance(self, address: str) -> int:
        return int(await self.call("eth_getBalance", [address, "latest"]), 16)

    async def get_transaction_count(self, address: str) -> int:
        return int(await self.call("eth_getTransactionCount", [address, "pending"]), 16)

    async def gas_price(self) -> int:
        return int(await self.call("eth_gasPrice", []), 16)

    async def estimate_gas(self, tx: dict) -> int:
        return int(await self.call("eth_estimateGas", [tx]), 16)

    async def send_raw_transaction(self, raw_tx_hex: str) -> str:
        return await self.call("eth_sendRawTransaction", [raw_tx_hex])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        return await self.call("eth_getTransactionReceipt", [tx_hash])

    async def get_transaction(self, tx_hash: str) -> Optional[dict]:
        return await self.call("eth_getTransactionByHash", [tx_hash])
