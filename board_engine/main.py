"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from board_engine.api import router as api_router
from board_engine.core.cache import TTLCache
from board_engine.core.config import get_settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Shared per-process cache for model catalogue and persona id lookups
    app.state.cache = TTLCache(get_settings().RECENT_DOCS_CACHE_TTL_SECONDS)
    yield
    app.state.cache.clear()


app = FastAPI(
    title="Persona Board Engine",
    description="Chat-driven editing of persona and social post documents",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "ok"}, status_code=200)


# Include v1 API router
app.include_router(api_router, prefix="/v1", tags=["v1"])
