"""FastAPI application factory for the warden token service."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError

from warden.api.deps import NEW_ACCESS_TOKEN_HEADER, NEW_REFRESH_TOKEN_HEADER
from warden.api.routes_jwks import router as jwks_router
from warden.api.routes_keys import router as keys_router
from warden.api.routes_sessions import router as sessions_router
from warden.core.errors import AuthError, StoreUnavailableError, UnauthorizedError
from warden.core.logging import configure_logging, get_logger
from warden.core.settings import AuthSettings
from warden.crypto.token_codec import TokenCodec
from warden.db.cache import close_redis, get_redis
from warden.db.engine import dispose_engine
from warden.keys.manager import KeyLifecycleManager
from warden.keys.store import KeyStore
from warden.sessions.lifecycle import SessionLifecycleEngine

logger = get_logger(__name__)


async def _auth_error_handler(_request: Request, exc: AuthError) -> JSONResponse:
    headers = {}
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        challenge = "Bearer"
        if exc.code != UnauthorizedError.code:
            challenge += f' error="{exc.code}"'
        headers["WWW-Authenticate"] = challenge
    if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("request_failed", code=exc.code, detail=str(exc))
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code},
        headers=headers,
    )


async def _database_unavailable_handler(
    _request: Request, exc: Exception
) -> JSONResponse:
    logger.error("database_unavailable", detail=str(exc))
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"error": StoreUnavailableError.code},
    )


def create_app(key_store: KeyStore | None = None) -> FastAPI:
    """Build and configure the FastAPI application."""
    settings = AuthSettings()
    configure_logging(settings.log_level, json_output=settings.log_json)

    store = key_store or KeyStore(get_redis())
    key_manager = KeyLifecycleManager(
        store,
        fernet_key=settings.signing_key_encryption_key,
        max_keys=settings.jwks_max_keys,
    )
    codec = TokenCodec(
        key_manager,
        issuer=settings.issuer,
        access_ttl=settings.access_token_ttl,
        refresh_ttl=settings.refresh_token_ttl,
    )
    lifecycle = SessionLifecycleEngine(
        codec, max_sessions=settings.max_concurrent_sessions
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        try:
            active = await key_manager.ensure_active_key()
            logger.info("signing_key_ready", kid=active.kid)
        except StoreUnavailableError:
            logger.warning("signing_key_deferred")
        yield
        await close_redis()
        await dispose_engine()

    app = FastAPI(
        title="Warden Token Service",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.key_manager = key_manager
    app.state.token_codec = codec
    app.state.session_lifecycle = lifecycle

    origins = settings.get_cors_origin_list()
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["Authorization", "Content-Type", "X-Refresh-Token"],
            expose_headers=[NEW_ACCESS_TOKEN_HEADER, NEW_REFRESH_TOKEN_HEADER],
        )

    app.add_exception_handler(AuthError, _auth_error_handler)
    app.add_exception_handler(OperationalError, _database_unavailable_handler)
    app.add_exception_handler(InterfaceError, _database_unavailable_handler)

    app.include_router(jwks_router)
    app.include_router(keys_router)
    app.include_router(sessions_router)

    return app
