"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from salonops.api.middleware import IdempotencyMiddleware, RequestContextMiddleware
from salonops.api.routes import api_router
from salonops.domain.errors import ClientMergeError
from salonops.infrastructure.redis import redis_client
from salonops.logging_config import setup_logging
from salonops.settings import settings

# Setup logging
setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    await redis_client.connect()
    yield
    await redis_client.disconnect()


# Create FastAPI app
app = FastAPI(
    title="SalonOps API",
    description="Client identity merge engine for multi-tenant salon operations",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(IdempotencyMiddleware)
# Added last so it wraps everything and the request ID is set for all logs
app.add_middleware(RequestContextMiddleware)


@app.exception_handler(ClientMergeError)
async def client_merge_error_handler(request: Request, exc: ClientMergeError) -> JSONResponse:
    """Render domain errors as {"error": message} with their status code."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code, content={"error": exc.message}, headers=headers
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed or incomplete request bodies are a 400."""
    errors = exc.errors()
    if any(error["type"] == "missing" for error in errors):
        message = "Missing required fields"
    else:
        message = "; ".join(
            f"{'.'.join(str(p) for p in error['loc'][1:])}: {error['msg']}" for error in errors
        )
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


# Include API routes
app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
