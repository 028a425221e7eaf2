"""
streamvault - FastAPI Backend

Secure playback resolution for a streaming catalog: stream credentials stay
on the server, clients get signed short-lived tokens.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from streamvault.config import get_settings
from streamvault.dependencies import limiter
from streamvault.services.rate_limiter import get_rate_limiter
from streamvault.services.secret_store import get_secret_store
from streamvault.routers import channels, mobile, playback

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    logger.info("Starting streamvault backend...")

    store = await get_secret_store()
    logger.info(f"Secret store initialized ({await store.count_secrets()} records)")

    yield

    logger.info("Shutting down streamvault backend...")


# Create FastAPI app
settings = get_settings()
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Secure playback resolution, DRM license proxy and stream proxy",
    lifespan=lifespan
)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """slowapi rejection with a Retry-After header."""
    return JSONResponse(
        status_code=429,
        content={"detail": f"Rate limit exceeded: {exc.detail}"},
        headers={"Retry-After": str(exc.limit.limit.get_expiry())},
    )


# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(channels.router)
app.include_router(playback.router)
app.include_router(mobile.router)


# API endpoints
@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "rate_limit_store": "rest" if get_rate_limiter().primary_configured else "memory",
    }


# Error handlers
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "streamvault.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
