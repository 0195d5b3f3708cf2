"""
KAMRI Storefront API - dropship integration

Lifespan owns the CJ client so its HTTP connection pool is closed on
shutdown. The throttle is process-wide and shared by every client.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from starlette.responses import JSONResponse

from app.api.routes import dropship
from app.core.config import settings
from app.core.exceptions import ConfigError, RateLimitError, StorefrontError
from app.services.cj.client import CJAPIClient

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.cj_client = CJAPIClient.create()
    logger.info(f"CJ client ready ({settings.CJ_API_BASE_URL})")

    yield

    await app.state.cj_client.close()
    logger.info("CJ HTTP client closed")


app = FastAPI(
    lifespan=lifespan,
    title=settings.APP_NAME,
    description="Dropship provider integration: shipping checks and cart grouping.",
    version="1.0.0",
    docs_url="/docs" if not settings.is_production else None,
    redoc_url=None,
)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    if isinstance(exc, ConfigError):
        status_code = 503
    elif isinstance(exc, RateLimitError):
        status_code = 429
    else:
        status_code = 502
    logger.error(f"{request.method} {request.url.path} failed: {exc!r}")
    body = exc.to_dict()
    if settings.is_production:
        body.pop("details", None)
    return JSONResponse(status_code=status_code, content=body)


app.include_router(dropship.router, prefix="/api/dropship", tags=["Dropship"])


@app.get("/health", tags=["Health"])
async def health_check():
    return {"status": "healthy", "environment": settings.ENVIRONMENT}
