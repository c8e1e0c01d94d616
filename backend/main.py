import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.errors import register_exception_handlers
from api.routes import auth
from config import Settings, get_settings
from db.database import create_engine_from_settings, create_session_factory, init_db
from middleware.logging import RequestLoggingMiddleware, configure_request_logging
from middleware.rate_limit import RateLimitMiddleware, parse_trusted_proxies
from schemas.common import HealthResponse
from services.auth_service import Hashers
from services.clock import Clock, SystemClock
from services.sweeper import RevocationSweeper

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # Silence noisy loggers
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown: database, then the expired token sweeper."""
    settings: Settings = app.state.settings

    # === STARTUP ===
    logger.info(f"Starting session auth service in {settings.APP_MODE.value} mode...")

    owns_engine = getattr(app.state, "engine", None) is None
    if owns_engine:
        app.state.engine = create_engine_from_settings(settings)
        app.state.session_factory = create_session_factory(app.state.engine)
    await init_db(app.state.engine)

    sweeper = RevocationSweeper(
        app.state.session_factory,
        app.state.clock,
        interval_seconds=settings.TOKEN_SWEEP_INTERVAL_SECONDS,
    )
    app.state.sweeper = sweeper
    if settings.TOKEN_SWEEP_ENABLED:
        sweeper.start()

    yield

    # === SHUTDOWN ===
    await sweeper.stop()
    if owns_engine:
        await app.state.engine.dispose()
        app.state.engine = None
    logger.info("Shutting down session auth service...")


def create_app(
    settings: Optional[Settings] = None,
    clock: Optional[Clock] = None,
    engine=None,
) -> FastAPI:
    """
    Build the application.

    Tests pass their own settings, clock and engine; ``engine`` is then owned
    by the caller and not disposed on shutdown.
    """
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title="Session Auth Service",
        description="Access/refresh token issuance, validation and revocation",
        version=API_VERSION,
        lifespan=lifespan,
        debug=settings.is_dev and settings.DEBUG,
    )

    app.state.settings = settings
    app.state.clock = clock or SystemClock()
    app.state.hashers = Hashers.from_settings(settings)
    app.state.trusted_networks = parse_trusted_proxies(settings.TRUSTED_PROXIES)
    app.state.engine = engine
    if engine is not None:
        app.state.session_factory = create_session_factory(engine)

    register_exception_handlers(app, settings)

    # Middlewares (order matters - first added = last executed)
    app.add_middleware(RateLimitMiddleware, settings=settings)

    if settings.is_dev:
        configure_request_logging(settings.LOG_LEVEL)
        app.add_middleware(RequestLoggingMiddleware)

    # CORS must be last (first to process incoming requests)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type"],
        expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "Retry-After"],
    )

    api_v1_router = APIRouter(prefix="/api/v1")
    api_v1_router.include_router(auth.router)
    app.include_router(api_v1_router)

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint"""
        return HealthResponse(mode=settings.APP_MODE.value, version=API_VERSION)

    return app


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "main:create_app",
        factory=True,
        host=_settings.HOST,
        port=_settings.PORT,
        reload=_settings.is_dev,
    )
