"""FastAPI application entrypoint for the dental-auth backend.

:func:`create_app` builds the engine, the services and the application from
one :class:`Settings` instance. The lifespan context initializes the
database on startup and drains pending audit writes and disposes the
engine on shutdown.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta

import uvicorn
from dental_auth.api.errors import register_exception_handlers
from dental_auth.api.routes.audit import router as audit_router
from dental_auth.api.routes.auth import router as auth_router
from dental_auth.config.config import Settings, get_settings
from dental_auth.core.logging import configure_logging, logger
from dental_auth.core.rate_limit import RateLimiter
from dental_auth.core.security import PasswordHasher
from dental_auth.db.session import (
    create_engine_from_settings,
    create_session_factory,
    initialize_database,
)
from dental_auth.services.audit_sink import AuditSink
from dental_auth.services.auth_service import AuthService
from dental_auth.services.credential_store import CredentialStore
from dental_auth.services.email_service import EmailService
from dental_auth.services.lockout_guard import LockoutGuard
from dental_auth.services.password_policy import PasswordPolicy
from dental_auth.services.token_manager import TokenManager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context to run startup and shutdown routines.

    On startup this will attempt to create the metadata tables, retrying a
    few times if the DB isn't ready yet.

    Yields:
        None: Control is returned to FastAPI while the app is running.
    """

    logger.info("Starting up")

    max_retries = 5
    for attempt in range(max_retries):
        try:
            await initialize_database(app.state.engine)
            break
        except Exception as e:
            # NOTE: the database container may still be starting
            if attempt < max_retries - 1:
                logger.warning(
                    "Database connection attempt {} failed: {}. Retrying..",
                    attempt + 1,
                    e,
                )
                await asyncio.sleep(2)
            else:
                logger.exception("Failed to create database tables after {} attempts", max_retries)
                raise

    yield

    logger.info("Shutting down")
    await app.state.audit.flush()
    await app.state.rate_limiter.close()
    await app.state.engine.dispose()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application and its services from ``settings``.

    Args:
        settings: Settings to use; defaults to the process-wide instance.

    Returns:
        FastAPI: The configured application.
    """
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    engine = create_engine_from_settings(settings)
    session_factory = create_session_factory(engine)
    store = CredentialStore(session_factory)
    audit = AuditSink(session_factory)
    hasher = PasswordHasher(rounds=settings.BCRYPT_ROUNDS)
    tokens = TokenManager(settings, session_factory, store)
    lockout = LockoutGuard(
        store,
        audit,
        max_attempts=settings.MAX_FAILED_ATTEMPTS,
        lockout_duration=timedelta(minutes=settings.LOCKOUT_DURATION_MINUTES),
    )
    auth_service = AuthService(
        settings,
        store=store,
        hasher=hasher,
        policy=PasswordPolicy(min_length=settings.PASSWORD_MIN_LENGTH),
        lockout=lockout,
        tokens=tokens,
        audit=audit,
        email=EmailService(settings),
    )

    app = FastAPI(title="Dental Auth", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.store = store
    app.state.audit = audit
    app.state.tokens = tokens
    app.state.auth_service = auth_service
    app.state.rate_limiter = RateLimiter(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app, is_production=settings.is_production)

    @app.get("/api/health")
    async def health():
        """Return a simple health check response."""
        return {"status": "ok"}

    app.include_router(auth_router, prefix="/api")
    app.include_router(audit_router, prefix="/api")

    if settings.SECRET_KEY == "change-me":
        logger.warning("SECRET_KEY is the built-in default; set it in the environment")
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("dental_auth.main:app", host="0.0.0.0", port=8000, reload=True)
