# infrastructure/rpc.py
"""
JSON-RPC transport shared by the chain verifiers.
Every call carries a bounded timeout and a limited retry with backoff;
callers decide what an exhausted call means.
"""
import itertools
import logging
from typing import Any, Optional

import httpx

from .errors import RpcError, retry

logger = logging.getLogger("RPC")

# Transient failures worth another attempt
RETRYABLE_ERRORS = (httpx.TransportError, httpx.HTTPStatusError, RpcError, ValueError)


class JsonRpcClient:
    """Minimal async JSON-RPC 2.0 client over httpx"""

    def __init__(
        self,
        url: str,
        chain: str,
        timeout: float = 10.0,
        max_attempts: int = 3,
        retry_delay: float = 0.5,
        backoff: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.chain = chain
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.backoff = backoff
        self._ids = itertools.count(1)
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def call(self, method: str, params: Optional[list] = None) -> Any:
        """Call `method`, retrying transient failures; raises the last error when exhausted."""
        attempt = retry(
            max_attempts=self.max_attempts,
            delay=self.retry_delay,
            backoff=self.backoff,
            exceptions=RETRYABLE_ERRORS,
        )(self._call_once)
        return await attempt(method, params or [])

    async def _call_once(self, method: str, params: list) -> Any:
        payload = {"jsonrpc": "2.0", "method": method, "params": params, "id": next(self._ids)}
        resp = await self._client.post(self.url, json=payload)
        resp.raise_for_status()

        body = resp.json()
        if not isinstance(body, dict):
            raise RpcError(self.chain, method, "malformed response")
        if body.get("error"):
            error = body["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise RpcError(self.chain, method, message)
        if "result" not in body:
            raise RpcError(self.chain, method, "response has no result")
        return body["result"]

    async def aclose(self):
        await self._client.aclose()


def build_rpc_client(url: str, chain: str, blockchain_config, transport=None) -> JsonRpcClient:
    """Create a client using the timeout/retry settings from BlockchainConfig."""
    logger.info(f"[RPC] {chain} endpoint {url[:40]}...")
    return JsonRpcClient(
        url,
        chain,
        timeout=blockchain_config.rpc_timeout,
        max_attempts=blockchain_config.rpc_max_attempts,
        retry_delay=blockchain_config.rpc_retry_delay,
        backoff=blockchain_config.rpc_backoff,
        transport=transport,
    )
