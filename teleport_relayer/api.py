"""
Relayer HTTP API.

Provides REST endpoints for:
- Mint completion polling (GET /mint-status/{address})
- Mint completion stream (GET /mint-status/{address}/stream)
- Health checks (GET /health)
- Chain cursors (GET /chains)
- Dead-letter inspection and requeue (operator, X-API-Key)

Every route is also served under /api.
"""

import asyncio
import json
from contextlib import asynccontextmanager, suppress
from typing import AsyncGenerator, AsyncIterator, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from . import __version__
from .auth import verify_api_token
from .db import STATUS_DEAD_LETTER
from .models import (
    ChainStatusResponse,
    DeadLetterResponse,
    HealthResponse,
    MintStatusResponse,
    RequeueRequest,
    RequeueResponse,
)
from .relayer import TeleportRelayer
from .store import CompletionStore

logger = structlog.get_logger()

router = APIRouter()

DEFAULT_STREAM_TIMEOUT = 120.0


def get_relayer(request: Request) -> TeleportRelayer:
    return request.app.state.relayer


def get_store(request: Request) -> CompletionStore:
    return request.app.state.relayer.store


def _sse(event: str, payload: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


# ============================================================================
# Health Check
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Liveness probe. No side effects."""
    return HealthResponse(status="ok", version=__version__)


# ============================================================================
# Mint Status
# ============================================================================


@router.get(
    "/mint-status/{address}",
    response_model=MintStatusResponse,
    response_model_exclude_none=True,
)
async def mint_status(
    address: str,
    store: CompletionStore = Depends(get_store),
) -> MintStatusResponse:
    """
    Return and consume the oldest completed mint for address.

    Not idempotent: a record is returned by at most one call.
    """
    record = store.consume_next(address)
    if record is not None:
        logger.info(
            "mint_status_delivered",
            depositor=address,
            tx_hash=record.tx_hash,
        )
    return MintStatusResponse.from_record(record)


@router.get("/mint-status/{address}/stream")
async def mint_status_stream(
    address: str,
    timeout: float = Query(DEFAULT_STREAM_TIMEOUT, gt=0, le=600),
    store: CompletionStore = Depends(get_store),
) -> StreamingResponse:
    """
    Server-sent events variant of /mint-status.

    Emits one `mint` event as soon as a completion is consumed, or a
    `timeout` event if none arrives within `timeout` seconds.
    """

    async def events() -> AsyncIterator[str]:
        record = await store.wait_for_next(address, timeout)
        if record is None:
            yield _sse("timeout", {"completed": False})
            return
        logger.info("mint_status_streamed", depositor=address, tx_hash=record.tx_hash)
        payload = MintStatusResponse.from_record(record).model_dump(
            by_alias=True, exclude_none=True
        )
        yield _sse("mint", payload)

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )


# ============================================================================
# Chains
# ============================================================================


@router.get("/chains", response_model=list[ChainStatusResponse])
async def chains(relayer: TeleportRelayer = Depends(get_relayer)) -> list[ChainStatusResponse]:
    """Configured source chains with their cursors and tick status."""
    return await relayer.chain_statuses()


# ============================================================================
# Dead Letters (operator)
# ============================================================================


@router.get(
    "/admin/dead-letters",
    response_model=list[DeadLetterResponse],
    dependencies=[Depends(verify_api_token)],
)
async def dead_letters(
    relayer: TeleportRelayer = Depends(get_relayer),
) -> list[DeadLetterResponse]:
    """Deposits whose mint exhausted its retries."""
    return [
        DeadLetterResponse(
            source_chain=entry.source_chain,
            source_chain_id=entry.source_chain_id,
            tx_hash=entry.tx_hash,
            log_index=entry.log_index,
            depositor=entry.depositor,
            amount=str(entry.amount),
            block_number=entry.block_number,
            attempts=entry.attempts,
            mint_tx_hash=entry.mint_tx_hash,
            last_error=entry.last_error,
        )
        for entry in await relayer.db.get_by_status(STATUS_DEAD_LETTER)
    ]


@router.post(
    "/admin/dead-letters/requeue",
    response_model=RequeueResponse,
    dependencies=[Depends(verify_api_token)],
)
async def requeue_dead_letter(
    request: RequeueRequest,
    relayer: TeleportRelayer = Depends(get_relayer),
) -> RequeueResponse:
    """Put a dead-lettered deposit back on the retry queue."""
    requeued = await relayer.db.requeue(
        request.source_chain_id, request.tx_hash.lower(), request.log_index
    )
    if not requeued:
        raise HTTPException(status_code=404, detail="No dead-lettered deposit matches")
    return RequeueResponse(success=True)


# ============================================================================
# App
# ============================================================================


def create_app(relayer: TeleportRelayer, start_relayer: bool = True) -> FastAPI:
    """
    Build the API app around a relayer.

    With start_relayer, the app's lifespan also runs the polling scheduler.
    """
    settings = relayer.config.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        task: Optional[asyncio.Task] = None
        if start_relayer:
            scheduler = await relayer.start()
            task = asyncio.create_task(scheduler.run())

        logger.info(
            "api_started",
            version=__version__,
            host=settings.host,
            port=settings.port,
            relayer=start_relayer,
        )

        yield

        if task is not None:
            relayer.stop()
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
            await relayer.close()

        logger.info("api_stopped")

    app = FastAPI(
        title="Teleport Relayer",
        description="Lock-and-mint relayer status API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.relayer = relayer
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(router)
    app.include_router(router, prefix="/api")
    return app
