"""
User Directory: Main FastAPI Application
========================================
Initializes the app with middleware, routes, error handling and lifecycle events.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from user_directory.api.v1.router import api_v1_router
from user_directory.core.config import get_settings
from user_directory.core.exceptions import AuthenticationError, DirectoryError
from user_directory.core.logging import get_logger, setup_logging
from user_directory.core.security_middleware import apply_security_middleware

settings = get_settings()
logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown events."""
    # ── Startup ──────────────────────────────────────────────────────────
    setup_logging()
    logger.info("Starting %s (env=%s)", settings.APP_NAME, settings.APP_ENV)
    logger.info("API prefix: %s", settings.API_PREFIX)

    try:
        from sqlalchemy import func, select

        from user_directory.core.database import Base, async_session_factory, engine
        from user_directory.models.user import User

        # In production, rely on Alembic migrations exclusively.
        if settings.is_production:
            logger.info("Production mode: using Alembic migrations only (skipping create_all)")
        else:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables verified (dev mode, create_all)")

        async with async_session_factory() as session:
            user_count = (await session.execute(select(func.count(User.id)))).scalar()
            if user_count == 0:
                logger.warning(
                    "Directory is empty, provision an admin with "
                    "`python -m user_directory.create_admin`"
                )
            else:
                logger.info("Directory has %d users", user_count)
    except Exception as e:
        logger.error("Database setup error: %s", str(e))

    yield

    # ── Shutdown ─────────────────────────────────────────────────────────
    from user_directory.core.database import engine

    logger.info("Shutting down %s...", settings.APP_NAME)
    await engine.dispose()


async def directory_error_handler(request: Request, exc: DirectoryError) -> JSONResponse:
    """Render a domain error as JSON with its status code."""
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def create_app() -> FastAPI:
    """Application factory."""
    app = FastAPI(
        title=f"{settings.APP_NAME} API",
        description=(
            "User directory service: user records, role-based access, "
            "status lifecycle, search, paging and statistics."
        ),
        version=settings.APP_VERSION,
        debug=settings.DEBUG,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # ── Middleware ───────────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_security_middleware(app)

    # ── Errors ───────────────────────────────────────────────────────────
    app.add_exception_handler(DirectoryError, directory_error_handler)

    # ── Routes ───────────────────────────────────────────────────────────
    app.include_router(api_v1_router, prefix=settings.API_PREFIX)

    @app.get("/", tags=["Root"])
    async def root():
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/docs",
            "health": f"{settings.API_PREFIX}/health",
        }

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("user_directory.main:app", host=settings.HOST, port=settings.PORT)
