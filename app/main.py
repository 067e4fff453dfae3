import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from app.api.router import api_router
from app.config import settings
from app.core.database import init_db
from app.core.exceptions import GatewayError, SignatureError


def setup_logging() -> None:
    """Configure application logging."""
    # Format: timestamp - level - logger name - message
    log_format = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
    date_format = "%H:%M:%S"

    # Configure root logger
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format=log_format,
        datefmt=date_format,
        stream=sys.stdout,
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    # Quieten uvicorn access logs (we'll log requests ourselves)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Application lifespan: startup and shutdown events."""
    # Startup
    setup_logging()
    logger.info("Billing API starting up")
    if not settings.stripe_enabled:
        logger.warning("STRIPE_SECRET_KEY not configured, billing endpoints will return 400")
    if settings.debug:
        await init_db()
    yield
    # Shutdown
    logger.info("Billing API shutting down")


app = FastAPI(
    title="Billing API",
    description="Stripe subscription billing and webhook reconciliation",
    version="0.1.0",
    lifespan=lifespan,
)

# Proxy headers middleware - trust X-Forwarded-For from the reverse proxy
# so webhook rate limiting keys on the real client address
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests, skipping OPTIONS preflight."""
    # Skip OPTIONS (CORS preflight) and health checks
    if request.method == "OPTIONS" or request.url.path == "/health":
        return await call_next(request)

    response = await call_next(request)

    # Only log non-2xx or billing-changing endpoints
    path = request.url.path
    if response.status_code >= 400 or any(
        keyword in path for keyword in ["webhooks", "checkout", "cancel", "refund"]
    ):
        logger.info(f"{request.method} {path} -> {response.status_code}")

    return response


@app.exception_handler(GatewayError)
async def gateway_error_handler(_request: Request, exc: GatewayError) -> JSONResponse:
    """Stripe call failed: 502 with Stripe's customer-facing message when it gave one."""
    return JSONResponse(
        status_code=502,
        content={"detail": exc.user_message or "Billing provider request failed"},
    )


@app.exception_handler(SignatureError)
async def signature_error_handler(_request: Request, exc: SignatureError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": exc.message})


# Include API routes
app.include_router(api_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
