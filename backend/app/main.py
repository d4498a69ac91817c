"""
Multistore Commerce - Backend API
Multi-tenant store dashboard, public storefront and payment webhooks
"""
import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(env_path)

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import (
    attributes, audit, auth, brands, categories, exports, orders, products,
    storefront, stores, subscriptions, webhooks,
)
from app.core.config import settings
from app.core.database import get_db_connection_with_retry
from app.core.errors import register_exception_handlers
from app.core.job_queue import job_queue
from app.core.logging_config import setup_logging
from app.core.rate_limit import RateLimitMiddleware
from app.services.export_service import register_export_handlers
from app.services.maintenance_service import register_maintenance_handlers

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    register_export_handlers(job_queue)
    maintenance = register_maintenance_handlers(job_queue)
    if job_queue.config.auto_start:
        job_queue.start()
        maintenance.schedule()
        logger.info("In-process job queue started")
    yield
    if job_queue.is_running:
        job_queue.stop()
        logger.info("In-process job queue stopped")


app = FastAPI(
    title=settings.API_TITLE,
    version=settings.API_VERSION,
    description=settings.API_DESCRIPTION,
    lifespan=lifespan,
)

app.add_middleware(RateLimitMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
    expose_headers=["*"],
)

register_exception_handlers(app)

# Dashboard API
app.include_router(auth.router, prefix="/api/v1/auth", tags=["Auth"])
app.include_router(stores.router, prefix="/api/v1/stores", tags=["Stores"])
app.include_router(products.router, prefix="/api/v1/products", tags=["Products"])
app.include_router(categories.router, prefix="/api/v1/categories", tags=["Categories"])
app.include_router(brands.router, prefix="/api/v1/brands", tags=["Brands"])
app.include_router(attributes.router, prefix="/api/v1/attributes", tags=["Attributes"])
app.include_router(orders.router, prefix="/api/v1/orders", tags=["Orders"])
app.include_router(exports.router, prefix="/api/v1/exports", tags=["Exports"])
app.include_router(audit.router, prefix="/api/v1/audit-logs", tags=["Audit"])
app.include_router(subscriptions.router, prefix="/api/v1/subscriptions", tags=["Subscriptions"])

# Public storefront and provider callbacks
app.include_router(storefront.router, prefix="/api/v1/storefront", tags=["Storefront"])
app.include_router(webhooks.router, prefix="/api/v1/webhooks", tags=["Webhooks"])


@app.get("/")
async def root():
    """Root endpoint - API status"""
    return {
        "message": settings.API_TITLE,
        "status": "online",
        "version": settings.API_VERSION,
    }


@app.get("/health")
async def health():
    """Health check endpoint for monitoring - tests database connectivity"""
    start_time = time.time()

    db_status = "unknown"
    db_latency_ms = None
    db_error = None

    try:
        # Fast check: a single connection attempt
        conn = get_db_connection_with_retry(max_retries=1, retry_delay=0.5)
        cursor = conn.cursor()

        db_start = time.time()
        cursor.execute("SELECT 1")
        cursor.fetchone()
        db_latency_ms = round((time.time() - db_start) * 1000, 2)

        cursor.close()
        conn.close()
        db_status = "connected"
    except Exception as e:
        db_status = "disconnected"
        db_error = str(e)

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "service": "multistore-api",
        "version": settings.API_VERSION,
        "database": {
            "status": db_status,
            "latency_ms": db_latency_ms,
            "error": db_error,
        },
        "jobQueue": job_queue.stats(),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
    }
