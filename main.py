"""
Stock Bridge - FastAPI Backend

Keeps store inventory (Shopify, WooCommerce) in line with the Contífico ERP:
pulls authoritative stock into stores and pushes order movements into the ERP.
"""
import os
from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi import status
import uvicorn
import logging

from routes.api import register_routes
from app.database import engine, Base
from app.config import settings
from app.workers.scheduler import start_background_workers, stop_background_workers

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Stock Bridge API",
    description="Store and ERP inventory synchronization API",
    version="1.0.0",
    docs_url="/docs" if settings.IS_DEVELOPMENT else None,  # Disable docs in production
    redoc_url="/redoc" if settings.IS_DEVELOPMENT else None,  # Disable redoc in production
)

# Log startup information
logger.info(f"🚀 Starting Stock Bridge API")
logger.info(f"📊 Environment: {settings.ENV}")
logger.info(f"🌐 Production: {settings.IS_PRODUCTION}")
logger.info(f"☁️  Cloud: {settings.IS_CLOUD}")
logger.info(f"🔗 Host: {settings.HOST}:{settings.PORT}")

# Startup config validation (warn only)
if settings.IS_PRODUCTION and getattr(settings, "JWT_SECRET", "").strip() in ("", "supersecret_fallback_key_change_in_production"):
    logger.warning("⚠️ JWT_SECRET is default or empty in production. Set a strong JWT_SECRET in environment.")
if settings.IS_PRODUCTION and getattr(settings, "ENCRYPTION_KEY", "").strip() in ("", "your-32-character-encryption-key!!"):
    logger.warning("⚠️ ENCRYPTION_KEY is default or empty in production. Stored API keys are not protected.")
if not (getattr(settings, "DATABASE_URL", "") or "").strip():
    logger.warning("⚠️ DATABASE_URL is not set. Database operations will fail.")
if settings.IS_PRODUCTION and not (os.getenv("ALLOWED_ORIGINS", "") or "").strip():
    logger.warning("⚠️ ALLOWED_ORIGINS is not set in production. Set your frontend origin(s) (comma-separated) to avoid CORS issues.")


def get_cors_headers(request: Request) -> dict:
    """Get CORS headers for a request"""
    origin = request.headers.get("origin", "")
    allowed_origins = settings.ALLOWED_ORIGINS

    # Check if origin is in allowed list
    if origin in allowed_origins:
        cors_origin = origin
    elif settings.IS_DEVELOPMENT and (origin.startswith("http://localhost") or origin.startswith("http://127.0.0.1")):
        # Allow localhost in development
        cors_origin = origin
    elif allowed_origins:
        # Use first allowed origin as fallback
        cors_origin = allowed_origins[0]
    else:
        cors_origin = "*"

    return {
        "Access-Control-Allow-Origin": cors_origin,
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": "GET, POST, PUT, PATCH, DELETE, OPTIONS",
        "Access-Control-Allow-Headers": "*",
    }


# Add exception handler for validation errors
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": jsonable_errors(exc),
            "message": "Validation error: Please check your request format"
        },
        headers=get_cors_headers(request)
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    """Validation errors without non-serializable context (pydantic may attach exceptions in ctx)."""
    return [{k: v for k, v in err.items() if k != "ctx"} for err in exc.errors()]


# Add exception handler for HTTPException to ensure CORS headers
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTPException and ensure CORS headers are sent"""
    headers = get_cors_headers(request)
    # Preserve any existing headers from the exception
    if exc.headers:
        headers.update(exc.headers)

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=headers
    )


# Add global exception handler to ensure CORS headers are always sent
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler to ensure CORS headers are always sent"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "message": str(exc) if settings.IS_DEVELOPMENT else "An error occurred"
        },
        headers=get_cors_headers(request)
    )


# CORS configuration - Fully dynamic based on ALLOWED_ORIGINS environment variable
cors_kwargs = {
    "allow_origins": settings.ALLOWED_ORIGINS,
    "allow_credentials": True,
    "allow_methods": ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    "allow_headers": ["*"],
    "expose_headers": ["*"],
}

# Only add regex if it's set (not None)
cors_regex = settings.CORS_ORIGIN_REGEX
if cors_regex:
    cors_kwargs["allow_origin_regex"] = cors_regex

app.add_middleware(CORSMiddleware, **cors_kwargs)

logger.info(f"✅ CORS configured for {len(settings.ALLOWED_ORIGINS)} origin(s)")
if cors_regex:
    logger.info(f"   + Regex pattern: {cors_regex}")

# Register all API routes (prefix /api)
register_routes(app, settings)


@app.get("/health")
async def health():
    """Health check endpoint. Includes DB connectivity check."""
    db_status = "ok"
    try:
        from sqlalchemy import text
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("Health check DB ping failed: %s", e)
        db_status = "error"
    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "service": "api",
        "db": db_status,
        "environment": settings.ENV,
        "production": settings.IS_PRODUCTION,
        "cloud": settings.IS_CLOUD,
    }


@app.on_event("startup")
async def startup_database() -> None:
    """Create database tables (Alembic manages them in managed deployments)."""
    Base.metadata.create_all(bind=engine)


@app.on_event("startup")
async def startup_workers() -> None:
    """Recover stale movements and start the push and scheduled pull workers."""
    if not settings.BACKGROUND_WORKERS_ENABLED:
        logger.info("Background workers disabled (BACKGROUND_WORKERS_ENABLED=false)")
        return
    start_background_workers()


@app.on_event("shutdown")
async def shutdown_workers() -> None:
    stop_background_workers()


@app.get("/api")
async def root():
    """API root endpoint"""
    return {
        "message": "Welcome to Stock Bridge API",
        "version": "1.0.0",
        "environment": settings.ENV,
        "docs": "/docs" if settings.IS_DEVELOPMENT else "disabled in production"
    }

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.IS_DEVELOPMENT,  # Auto-reload only in development
        log_level=settings.LOG_LEVEL.lower()
    )
