# catalog_access/main.py
import logging
import random
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware

from catalog_access.core.cleanup import run_cleanup
from catalog_access.core.config import Settings, get_settings
from catalog_access.core.email_client import EmailSender, SmtpEmailSender
from catalog_access.core.errors import register_exception_handlers
from catalog_access.core.rate_limit import SlidingWindowRateLimiter
from catalog_access.core.security import get_client_ip
from catalog_access.database import build_engine, create_db_and_tables, storage_scope
from catalog_access.repositories.memory import MemoryStorage
from catalog_access.repositories.storage import Storage

# Routers
from catalog_access.routers.auth import router as auth_router
from catalog_access.routers.users import router as users_router
from catalog_access.services.user_service import seed_primary_admin

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("uvicorn")


def _cleanup(app: FastAPI) -> None:
    with storage_scope(app) as storage:
        run_cleanup(storage)


def create_app(
    settings: Settings | None = None,
    storage: Storage | None = None,
    email_sender: EmailSender | None = None,
) -> FastAPI:
    """
    Build the API.

    Tests pass an in-memory ``storage`` and a fake ``email_sender``; in
    production both come from the environment (STORAGE_BACKEND, SMTP_*).
    """
    settings = settings or get_settings()

    if storage is None and settings.STORAGE_BACKEND == "memory":
        storage = MemoryStorage()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan handler.

        Startup:
          - Verify DB connectivity and create tables (SQL backend only).
          - Seed the primary admin from ADMIN_PHONE / ADMIN_PASSWORD.

        Shutdown:
          - Dispose the engine's connection pool.
        """
        if app.state.engine is not None:
            logger.info("Startup: connecting to the database...")
            try:
                create_db_and_tables(app.state.engine)
                logger.info("Startup: DB connection OK, tables verified.")
            except Exception as e:
                logger.error(f"Startup: DB connection FAILED: {e}")
                raise

        with storage_scope(app) as scoped:
            seed_primary_admin(scoped, settings)

        yield

        if app.state.engine is not None:
            app.state.engine.dispose()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.storage = storage
    app.state.engine = None if storage is not None else build_engine(settings.DATABASE_URL)
    app.state.email_sender = email_sender or SmtpEmailSender(settings)
    app.state.access_limiter = SlidingWindowRateLimiter(
        settings.TOKEN_RATE_LIMIT_MAX, settings.TOKEN_RATE_LIMIT_WINDOW_SECONDS
    )
    app.state.login_limiter = SlidingWindowRateLimiter(
        settings.LOGIN_RATE_LIMIT_MAX, settings.LOGIN_RATE_LIMIT_WINDOW_SECONDS
    )

    register_exception_handlers(app, production=settings.is_production)

    # --- Housekeeping: a small random share of requests sweeps expired rows ---
    @app.middleware("http")
    async def opportunistic_cleanup(request: Request, call_next):
        response = await call_next(request)
        if random.random() < settings.CLEANUP_PROBABILITY:
            try:
                await run_in_threadpool(_cleanup, app)
            except Exception:
                logger.exception("Opportunistic cleanup failed")
        return response

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "%s %s %s %.1fms %s",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            get_client_ip(request),
        )
        return response

    # --- CORS configuration ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_router, prefix=settings.API_PREFIX)
    app.include_router(users_router, prefix=settings.API_PREFIX)

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"status": "ok"}

    @app.get("/")
    def root():
        return {"status": "ok", "service": "catalog-access"}

    return app


app = create_app()
