"""
HTTP service exposing the RPC proxy and the ingested coin set.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from web3 import Web3

from .gateway import GatewayService
from .ingestion import CoinIngestion
from .metadata import MetadataResolver
from .models import INTERNAL_ERROR, INVALID_REQUEST, RATE_LIMITED, RpcError, RpcRequest, RpcResponse

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    RATE_LIMITED: 429,
    INTERNAL_ERROR: 500,
    INVALID_REQUEST: 400,
}


def create_app(
    gateway: GatewayService,
    ingestion: CoinIngestion | None = None,
    resolver: MetadataResolver | None = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        gateway: Shared RPC gateway backing /api/rpc
        ingestion: Optional facade backing the /api/coins routes
        resolver: Metadata resolver backing /api/metadata (defaults to the
            ingestion facade's resolver)
    """
    if resolver is None and ingestion is not None:
        resolver = ingestion.resolver

    app = FastAPI(title="Coin Scanner")
    app.state.gateway = gateway
    app.state.ingestion = ingestion
    app.state.resolver = resolver

    @app.post("/api/rpc")
    async def rpc_proxy(request: Request) -> JSONResponse:
        """Proxy a single JSON-RPC call through the gateway."""
        try:
            body = await request.json()
        except ValueError:
            body = None

        try:
            rpc_request = RpcRequest.from_payload(body)
        except ValueError as e:
            request_id = body.get("id") if isinstance(body, dict) else None
            response = RpcResponse(
                id=request_id,
                error=RpcError(code=INVALID_REQUEST, message=str(e)),
            )
            return JSONResponse(response.to_payload(), status_code=400)

        response = await gateway.call(rpc_request)
        if response.error is not None:
            status_code = ERROR_STATUS.get(response.error.code, 500)
            return JSONResponse(response.to_payload(), status_code=status_code)
        if response.from_cache:
            logger.debug("Serving RPC response from cache")
        return JSONResponse(response.to_payload())

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        stats: dict[str, Any] = {"gateway": gateway.get_stats()}
        if ingestion is not None:
            stats["scanner"] = ingestion.scanner.get_stats()
            stats["ingestion"] = ingestion.get_stats()
        return stats

    if resolver is not None:
        @app.get("/api/metadata")
        async def metadata(cid: str | None = None) -> JSONResponse:
            """Fetch a metadata document by CID through the gateway list."""
            if not cid:
                return JSONResponse({"error": "Missing CID parameter"}, status_code=400)
            document = await resolver.fetch_document(f"ipfs://{cid}")
            if document is None:
                return JSONResponse({"error": "Failed to fetch metadata"}, status_code=500)
            return JSONResponse(document)

    if ingestion is None:
        return app

    @app.get("/api/coins")
    async def list_coins() -> dict[str, Any]:
        return {
            "coins": [coin.to_dict() for coin in ingestion.coins],
            "status": ingestion.status.to_dict(),
        }

    @app.post("/api/coins/refresh", status_code=202)
    async def refresh_coins() -> dict[str, Any]:
        generation = ingestion.schedule_refresh()
        return {"generation": generation}

    @app.get("/api/coins/{address}")
    async def get_coin(address: str) -> JSONResponse:
        coin = ingestion.get_coin(address)
        if coin is None:
            return JSONResponse({"error": "Coin not found"}, status_code=404)
        return JSONResponse(coin.to_dict())

    @app.get("/api/artist-coins")
    async def artist_coins(address: str | None = None) -> JSONResponse:
        if not address:
            return JSONResponse({"error": "Address is required"}, status_code=400)
        if not Web3.is_address(address):
            return JSONResponse({"error": "Invalid address"}, status_code=400)
        coins = ingestion.coins_by_artist(address)
        return JSONResponse({"count": len(coins)})

    return app
