import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rewind.config import settings
from rewind.database import async_session
from rewind.exceptions import (
    AuthenticationError, AuthorizationError, BadRequestError, ExternalServiceError, NotFoundError,
    PaymentRequiredError, RewindException, ServiceUnavailableError, SignatureInvalidError,
)
from rewind.routers import (
    analytics, payments, questions, readiness, recordings, revisions, solutions, subscription,
    user_questions, webhooks,
)
from rewind.schemas import HealthResponse
from rewind.services.subscription_service import run_subscription_reaper, subscription_service

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

STATUS_CODES = {
    BadRequestError: status.HTTP_400_BAD_REQUEST,
    AuthenticationError: status.HTTP_401_UNAUTHORIZED,
    SignatureInvalidError: status.HTTP_401_UNAUTHORIZED,
    PaymentRequiredError: status.HTTP_402_PAYMENT_REQUIRED,
    AuthorizationError: status.HTTP_403_FORBIDDEN,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ServiceUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
    ExternalServiceError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    logger.info(f"🚀 Starting Rewind API on port {settings.port}")
    logger.info(f"🌍 Environment: {settings.environment}")
    if not settings.payments_enabled:
        logger.warning("⚠️ Razorpay not configured, payments disabled")

    reaper = asyncio.create_task(
        run_subscription_reaper(
            subscription_service,
            async_session,
            settings.subscription_reaper_interval_seconds,
        )
    )
    yield
    reaper.cancel()
    try:
        await reaper
    except asyncio.CancelledError:
        pass
    logger.info("👋 Shutting down Rewind API")


app = FastAPI(
    title="Rewind API",
    description="Backend API for the Rewind interview practice coach",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RewindException)
async def rewind_exception_handler(request: Request, exc: RewindException):
    """Map application exceptions to HTTP responses."""
    if isinstance(exc, PaymentRequiredError):
        return JSONResponse(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            content={"error": "Subscription required", "code": exc.code, "message": exc.message},
        )

    status_code = next(
        (code for cls, code in STATUS_CODES.items() if isinstance(exc, cls)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path}: {type(exc).__name__}: {exc}")
        detail = "Upstream service error" if isinstance(exc, ExternalServiceError) else str(exc)
    else:
        logger.warning(f"⚠️ {request.method} {request.url.path}: {type(exc).__name__}: {exc}")
        detail = str(exc)
    return JSONResponse(status_code=status_code, content={"detail": detail})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Last resort: log the traceback, hide details from the client."""
    logger.error(f"❌ Unhandled exception on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# Include routers
app.include_router(questions.router, prefix="/api")
app.include_router(user_questions.router, prefix="/api")
app.include_router(solutions.router, prefix="/api")
app.include_router(recordings.router, prefix="/api")
app.include_router(revisions.router, prefix="/api")
app.include_router(readiness.router, prefix="/api")
app.include_router(analytics.router, prefix="/api")
app.include_router(subscription.router, prefix="/api")
app.include_router(payments.router, prefix="/api")
app.include_router(webhooks.router, prefix="/api")


@app.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check() -> HealthResponse:
    """Health check endpoint"""
    return HealthResponse()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "rewind.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
    )
