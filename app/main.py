# app/main.py

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
import sys
import time
import psutil

from app.core.database import test_connection, init_db
from app.core.config import settings
from app.core.rate_limiter import limiter

# Routers
from app.api.endpoints import (
    certificates as certificates_router,
    verification as verification_router,
)

# ------------------------------------------------------------
# LOGURU CONFIGURATION
# ------------------------------------------------------------
logger.remove()
logger.add(
    sys.stdout,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
           "<level>{level}</level> | "
           "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
           "<level>{message}</level>",
    colorize=True,
    backtrace=True,
    diagnose=settings.ENV != "prod",
)

# ------------------------------------------------------------
# FASTAPI APP INIT
# ------------------------------------------------------------
app = FastAPI(
    title="HCTS Certificates Backend",
    version="1.0.0",
    description="Certificate issuance and verification for the HCTS healthcare services marketplace.",
)

START_TIME = time.time()

# ------------------------------------------------------------
# RATE LIMITING
# ------------------------------------------------------------
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ------------------------------------------------------------
# METRICS API (process health)
# ------------------------------------------------------------
@app.get("/api/metrics", tags=["System"])
async def metrics():
    uptime_seconds = int(time.time() - START_TIME)
    cpu_usage = psutil.cpu_percent(interval=None)
    ram_usage = psutil.virtual_memory().percent

    db_start = time.time()
    try:
        await test_connection()
        db_status = "Connected"
        db_latency = round((time.time() - db_start) * 1000, 2)
    except Exception:
        logger.exception("Health check: database unreachable")
        db_status = "Error"
        db_latency = 0

    return {
        "status": "Online",
        "version": app.version,
        "cpu": cpu_usage,
        "ram": ram_usage,
        "uptime": uptime_seconds,
        "database": db_status,
        "db_latency": db_latency,
    }


# ------------------------------------------------------------
# CORS CONFIGURATION
# ------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
    expose_headers=["Content-Disposition"],
)

# ------------------------------------------------------------
# REGISTER ROUTERS
# ------------------------------------------------------------
app.include_router(certificates_router.router)
app.include_router(verification_router.router)

# ------------------------------------------------------------
# APPLICATION STARTUP EVENTS
# ------------------------------------------------------------
@app.on_event("startup")
async def on_startup():
    logger.info("🚀 Starting HCTS Certificates Backend...")

    try:
        await test_connection()
        logger.success("Database connection established.")
    except Exception:
        logger.exception("Startup aborted: Database connection failed.")
        return

    try:
        await init_db()
        logger.success("Database tables ready.")
    except Exception as e:
        logger.warning(f"Table initialization encountered an issue: {e}")

    logger.success("Backend startup completed successfully.\n")


# ------------------------------------------------------------
# ROOT HEALTH CHECK
# ------------------------------------------------------------
@app.get("/", tags=["System"])
async def root():
    return {
        "status": "ok",
        "service": "HCTS Certificates Backend",
        "version": app.version,
        "message": "Backend running successfully 🚀",
    }
