"""
Caching, rate-limited JSON-RPC gateway with multi-endpoint fallback.

Every call consumes one rate-limiter unit, is served from the response
cache when possible and otherwise walks the endpoint list until one answers.
Failures are returned as typed RpcResponse errors, never raised.
"""

import asyncio
import itertools
import logging
from typing import Any

import httpx

from .config import RpcConfig
from .models import (
    INTERNAL_ERROR,
    RATE_LIMITED,
    BlockNumberRequest,
    GetLogsRequest,
    RpcError,
    RpcRequest,
    RpcResponse,
)
from .utils.rate_limiter import RateLimiter
from .utils.ttl_cache import MISS, ResponseCache

logger = logging.getLogger(__name__)


class RpcCallError(RuntimeError):
    """Raised by the convenience helpers when the gateway returns an error."""

    def __init__(self, error: RpcError) -> None:
        super().__init__(f"RPC error {error.code}: {error.message}")
        self.error = error

    @property
    def rate_limited(self) -> bool:
        return self.error.code == RATE_LIMITED


class EndpointError(Exception):
    """A single endpoint failed to produce a usable result."""


class GatewayService:
    """
    Shields callers from RPC flakiness, duplicate work and quota exhaustion.

    One instance is constructed at startup and shared by every caller; it
    owns the rate window, the response cache and the HTTP client.
    """

    def __init__(
        self,
        config: RpcConfig,
        rate_limiter: RateLimiter | None = None,
        response_cache: ResponseCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        """
        Initialize the gateway.

        Args:
            config: Endpoint, timeout, TTL and rate-limit settings
            rate_limiter: Optional pre-built limiter (defaults from config)
            response_cache: Optional pre-built cache (defaults from config)
            transport: Optional httpx transport, used by tests to fake endpoints
        """
        self.config = config
        self.endpoints = config.endpoints
        self.rate_limiter = rate_limiter or RateLimiter(ceiling=config.rate_limit)
        self.response_cache = response_cache or ResponseCache(ttl=config.response_ttl)
        self.client = httpx.AsyncClient(
            transport=transport,
            headers={"Content-Type": "application/json"},
        )
        self._ids = itertools.count(1)

        # Metrics tracking
        self.calls = 0
        self.network_calls = 0
        self.endpoint_failures = 0
        self.exhausted = 0

    async def __aenter__(self) -> "GatewayService":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    def next_id(self) -> int:
        """Return the next monotonically increasing request id."""
        return next(self._ids)

    async def call(self, request: RpcRequest) -> RpcResponse:
        """
        Execute a single JSON-RPC call.

        Args:
            request: The call to execute

        Returns:
            RpcResponse holding either the result or a typed error
        """
        self.calls += 1

        if not self.rate_limiter.allow():
            return RpcResponse(
                id=request.id,
                error=RpcError(
                    code=RATE_LIMITED,
                    message="Rate limit exceeded. Please try again later.",
                ),
            )

        fingerprint = request.fingerprint
        cached = self.response_cache.get(fingerprint)
        if cached is not MISS:
            logger.debug(f"Serving {request.method} from cache")
            return RpcResponse(id=request.id, result=cached, from_cache=True)

        timeout = self._timeout_for(request.method)
        if request.method == GetLogsRequest.METHOD:
            logger.debug(f"Processing eth_getLogs request: {list(request.params)}")

        last_error = "Internal RPC error"
        for endpoint in self.endpoints:
            try:
                # Hard deadline for the whole exchange; httpx limits each phase separately
                result = await asyncio.wait_for(self._post(endpoint, request, timeout), timeout)
            except asyncio.TimeoutError:
                self.endpoint_failures += 1
                last_error = f"Request to {endpoint} timed out after {timeout:g}s"
                logger.info(f"RPC endpoint {endpoint} failed: {last_error}")
                continue
            except (httpx.HTTPError, EndpointError) as e:
                self.endpoint_failures += 1
                last_error = str(e) or type(e).__name__
                logger.info(f"RPC endpoint {endpoint} failed: {last_error}")
                continue

            self.response_cache.put(fingerprint, result)
            return RpcResponse(id=request.id, result=result)

        self.exhausted += 1
        logger.error(f"All RPC endpoints failed for {request.method}")
        return RpcResponse(
            id=request.id,
            error=RpcError(
                code=INTERNAL_ERROR,
                message=last_error,
                data={"details": "All RPC endpoints failed to respond"},
            ),
        )

    async def send(self, request: BlockNumberRequest | GetLogsRequest) -> RpcResponse:
        """Assign the next id to a typed request and execute it."""
        return await self.call(request.to_rpc(self.next_id()))

    async def get_block_number(self) -> int:
        """
        Resolve the latest block number.

        Raises:
            RpcCallError: If the gateway returned an error
        """
        response = await self.send(BlockNumberRequest())
        if response.error is not None:
            raise RpcCallError(response.error)
        try:
            return int(response.result, 16)
        except (TypeError, ValueError) as e:
            raise RpcCallError(
                RpcError(code=INTERNAL_ERROR, message=f"Invalid block number: {response.result!r}")
            ) from e

    async def get_logs(self, request: GetLogsRequest) -> list[dict[str, Any]]:
        """
        Fetch raw log objects for one block window.

        Raises:
            RpcCallError: If the gateway returned an error or a non-list result
        """
        response = await self.send(request)
        if response.error is not None:
            raise RpcCallError(response.error)
        if not isinstance(response.result, list):
            raise RpcCallError(
                RpcError(code=INTERNAL_ERROR, message="eth_getLogs returned a non-list result")
            )
        return response.result

    def _timeout_for(self, method: str) -> float:
        # Range queries are slow on public endpoints
        if method == GetLogsRequest.METHOD:
            return self.config.logs_timeout
        return self.config.request_timeout

    async def _post(self, endpoint: str, request: RpcRequest, timeout: float) -> Any:
        self.network_calls += 1
        response = await self.client.post(endpoint, json=request.to_payload(), timeout=timeout)
        response.raise_for_status()

        try:
            body = response.json()
        except ValueError as e:
            raise EndpointError(f"Invalid JSON from {endpoint}") from e

        if not isinstance(body, dict):
            raise EndpointError(f"Unexpected response shape from {endpoint}")
        if body.get("error"):
            error = body["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise EndpointError(f"RPC error from {endpoint}: {message}")
        if "result" not in body:
            raise EndpointError(f"Empty RPC result from {endpoint}")

        return body["result"]

    def get_stats(self) -> dict[str, Any]:
        """
        Get current gateway statistics.

        Returns:
            Dictionary with call, cache and rate-limit metrics
        """
        return {
            "calls": self.calls,
            "network_calls": self.network_calls,
            "endpoint_failures": self.endpoint_failures,
            "exhausted": self.exhausted,
            "cache": self.response_cache.get_stats(),
            "rate_limit": self.rate_limiter.get_stats(),
        }
