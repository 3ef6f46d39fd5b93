"""
Main FastAPI application for the automotive service API.
Serves appointments, the AI assistant, diagnostics, invoices and real-time notifications.
"""

import logging
from contextlib import asynccontextmanager

from app.config import settings
from app.errors import register_exception_handlers
from app.routes import ai, appointments, diagnostics, health, invoices, notifications
from app.services.chat_completer import build_chat_completer
from app.services.chat_pipeline import ChatPipeline
from app.services.chat_sessions import build_session_store
from app.services.database import close_db, init_db
from app.services.notifications import NotificationHub
from app.services.redis_client import close_redis, init_redis
from app.utils.retry import with_retry
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown tasks."""
    # Startup
    if not settings.JWT_SECRET:
        raise RuntimeError("JWT_SECRET must be set")

    await init_db()
    uses_redis = settings.CHAT_SESSION_BACKEND == "redis"
    if uses_redis:
        await with_retry(init_redis, max_retries=5, operation_name="Redis connection")

    hub = NotificationHub()
    completer = build_chat_completer()
    app.state.hub = hub
    app.state.completer = completer
    app.state.chat_pipeline = ChatPipeline(completer, build_session_store(), hub=hub)
    logger.info(f"Startup complete (assistant mode: {completer.mode}, environment: {settings.APP_ENV})")

    yield
    # Shutdown
    await hub.drain()
    await close_db()
    if uses_redis:
        await close_redis()


app = FastAPI(
    title="Automotive Service API",
    description="Appointment scheduling, AI assistant, diagnostics and invoicing for an auto repair shop",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Register routes
app.include_router(health.router, prefix="/api/v1", tags=["health"])
app.include_router(appointments.router, prefix="/api/v1/appointments", tags=["appointments"])
app.include_router(ai.router, prefix="/api/v1/ai", tags=["ai"])
app.include_router(diagnostics.router, prefix="/api/v1/diagnostics", tags=["diagnostics"])
app.include_router(invoices.router, prefix="/api/v1/invoices", tags=["invoices"])
app.include_router(notifications.router, prefix="/api/v1/notifications", tags=["notifications"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "AutoCure Service API",
        "version": "1.0.0",
        "status": "running",
    }
