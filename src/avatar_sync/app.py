"""FastAPI application for AvatarSync."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated, Any

from fastapi import Body, Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from avatar_sync import __version__
from avatar_sync.db import init_db
from avatar_sync.errors import ResolutionFailed
from avatar_sync.resolution.engine import AssetResolutionEngine, open_engine
from avatar_sync.services.batch import BatchOrchestrator
from avatar_sync.utils.urls import cache_busted


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler."""
    await init_db()
    async with open_engine() as engine:
        app.state.engine = engine
        yield


app = FastAPI(
    title="AvatarSync",
    description="Cross-identity profile image resolution and reconciliation",
    version=__version__,
    lifespan=lifespan,
)


def get_engine(request: Request) -> AssetResolutionEngine:
    return request.app.state.engine


Engine = Annotated[AssetResolutionEngine, Depends(get_engine)]


@app.exception_handler(ResolutionFailed)
async def resolution_failed_handler(request: Request, exc: ResolutionFailed) -> JSONResponse:
    # Callers render the initials locally and carry on; this is never page-blocking
    return JSONResponse(
        status_code=503,
        content={
            "error": "resolution_failed",
            "detail": str(exc),
            "fallback_initials": exc.initials,
        },
    )


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok", "version": __version__}


@app.post("/images/batch-cleanup")
async def batch_cleanup(engine: Engine) -> dict[str, Any]:
    """Resolve, propagate and collect for every known person."""
    report = await BatchOrchestrator(engine).run()
    return report.to_dict()


@app.get("/images/{identity}")
async def resolve_image(identity: str, engine: Engine) -> dict[str, Any]:
    """Resolve the authoritative image URL without writing anything back."""
    outcome = await engine.resolve(identity)
    return {**outcome.to_dict(), "display_url": cache_busted(outcome.image_url)}


@app.get("/images/{identity}/inspect")
async def inspect_image(identity: str, engine: Engine) -> dict[str, Any]:
    """List every candidate the engine can see, with liveness."""
    report = await engine.inspect(identity)
    return report.to_dict()


@app.post("/images/{identity}/reconcile")
async def reconcile_image(identity: str, engine: Engine) -> dict[str, Any]:
    outcome = await engine.reconcile(identity)
    return outcome.to_dict()


@app.post("/images/{identity}/cleanup")
async def cleanup_images(
    identity: str,
    engine: Engine,
    keep_filenames: Annotated[list[str] | None, Body(embed=True)] = None,
) -> dict[str, Any]:
    outcome = await engine.cleanup(identity, keep_filenames)
    return outcome.to_dict()


@app.post("/images/{identity}/placeholder")
async def create_placeholder(identity: str, engine: Engine) -> dict[str, Any]:
    """Force a fresh placeholder, even when a live image exists."""
    outcome = await engine.create_placeholder(identity)
    return outcome.to_dict()
