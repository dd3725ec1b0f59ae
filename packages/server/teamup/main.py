"""
TeamUp API Server

Entry point for the FastAPI application.
"""

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from teamup.core.config import get_settings
from teamup.core.database import engine, get_session_context
from teamup.core.errors import TeamupError, teamup_error_handler
from teamup.core.fanout import build_fanout
from teamup.core.logging import configure_logging
from teamup.core.middleware import RequestContextMiddleware, SecurityHeadersMiddleware
from teamup.core.presence import build_presence
from teamup.core.redis import close_redis, redis_is_ready
from teamup.api.v1 import router as api_v1_router
from teamup.api.v1.auth import router as auth_router
from teamup.api.v1.presence import router as presence_router
from teamup.services.teams import seed_teams

settings = get_settings()
log = structlog.get_logger()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="TeamUp",
        description="Event registration and team formation lobby.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # Middleware (last added is outermost)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )
    app.add_middleware(RequestContextMiddleware)

    app.add_exception_handler(TeamupError, teamup_error_handler)

    # Auth routes
    app.include_router(auth_router, prefix="/auth", tags=["Authentication"])

    # API routes
    app.include_router(api_v1_router, prefix="/api/v1")

    # WebSocket routes
    app.include_router(presence_router, tags=["Presence"])

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness checks."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        """Readiness check: database always, Redis when it backs presence."""
        checks = {"database": True, "redis": True}
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError):
            checks["database"] = False
        if settings.presence_backend == "redis":
            checks["redis"] = await redis_is_ready()

        if not all(checks.values()):
            return JSONResponse(status_code=503, content={"status": "unavailable", "checks": checks})
        return {"status": "ready", "checks": checks}

    @app.on_event("startup")
    async def on_startup():
        configure_logging(settings.log_level, settings.log_format)
        app.state.fanout = build_fanout(settings)
        app.state.presence = build_presence(settings, app.state.fanout)
        await app.state.presence.start()

        try:
            async with get_session_context() as session:
                await seed_teams(session)
        except SQLAlchemyError:
            # Join and lobby handlers seed again on first use
            log.warning("teams.seed_failed", exc_info=True)

        log.info(
            "TeamUp starting",
            presence_backend=settings.presence_backend,
            team_pool_size=settings.team_pool_size,
        )

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("TeamUp shutting down")
        await app.state.presence.stop()
        await app.state.fanout.close()
        await close_redis()
        await engine.dispose()

    return app


app = create_app()


def serve() -> None:
    """Console entry point: run the API with uvicorn."""
    import uvicorn

    uvicorn.run("teamup.main:app", host=settings.host, port=settings.port, log_level=settings.log_level)
