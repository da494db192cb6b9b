"""
Main FastAPI application
"""
import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from routewise.config.database import DatabaseConfig
from routewise.config.settings import Settings, settings as default_settings
from routewise.database.db_operations import DocumentStore
from routewise.database.memory_store import MemoryDocumentStore
from routewise.database.mongo_store import MongoDocumentStore
from routewise.routes import admin, bookings, cron, payments
from routewise.services.container import ServiceContainer, build_container
from routewise.services.errors import RouteWiseError
from routewise.services.scheduler import run_trip_scheduler

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[DocumentStore] = None,
    container: Optional[ServiceContainer] = None,
) -> FastAPI:
    """
    Build the app. Tests pass a ready container (or store); otherwise the
    store is chosen by STORE_BACKEND when the app starts.
    """
    settings = settings or (container.settings if container else default_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan - startup and shutdown events"""
        # Startup
        logging.basicConfig(level=logging.DEBUG if settings.DEBUG else logging.INFO)
        db_config = None
        if container is None:
            app_store = store
            if app_store is None and settings.STORE_BACKEND == "memory":
                app_store = MemoryDocumentStore(settings.BATCH_LIMIT, settings.TRANSACTION_MAX_RETRIES)
                print("⚠️ Using in-memory document store (data is lost on restart)")
            elif app_store is None:
                db_config = DatabaseConfig(settings)
                await db_config.connect_db()
                app_store = MongoDocumentStore(db_config, settings.BATCH_LIMIT, settings.TRANSACTION_MAX_RETRIES)
                await app_store.ensure_indexes()
            app.state.container = build_container(settings, app_store)

        scheduler_task = None
        if settings.ENABLE_SCHEDULER:
            scheduler_task = asyncio.create_task(
                run_trip_scheduler(app.state.container, settings.SCHEDULER_INTERVAL_SECONDS)
            )
        print(f"🚀 {settings.APP_NAME} v{settings.VERSION} started")
        yield
        # Shutdown
        if scheduler_task:
            scheduler_task.cancel()
            try:
                await scheduler_task
            except asyncio.CancelledError:
                pass
        if db_config:
            await db_config.close_db()
        print("👋 Application shutdown")

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    if container is not None:
        app.state.container = container

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        # Round-trip through json with default=str to handle non-serializable objects (e.g. ValueError)
        safe_errors = json.loads(json.dumps(exc.errors(), default=str))
        logger.warning("❌ 422 VALIDATION ERROR on %s %s: %s", request.method, request.url.path, safe_errors)
        return JSONResponse(status_code=422, content={"detail": safe_errors})

    @app.exception_handler(RouteWiseError)
    async def domain_exception_handler(request: Request, exc: RouteWiseError):
        if exc.status_code >= 500:
            logger.error("❌ %s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
        else:
            logger.info("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    # Request logging middleware
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time
        logger.info("🌐 %s %s - %d (%.2fs)", request.method, request.url.path, response.status_code, duration)
        return response

    # Include routers
    app.include_router(bookings.router, prefix="/api")
    app.include_router(payments.router, prefix="/api")
    app.include_router(admin.router, prefix="/api")
    app.include_router(cron.router, prefix="/api")

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "app": settings.APP_NAME,
            "version": settings.VERSION,
            "status": "running",
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy"}

    return app


app = create_app()
