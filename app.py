"""FastAPI application factory for the haven middleware."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import haven_config as config
from errors import Forbidden, InvalidInput, StorageFailure, Unauthorized, UpstreamUnavailable
from git_proxy import GitSyncProxy
from handler import router
from invites import InviteProtocolHandler
from kvs import Store, create_store
from poller import NotificationPoller
from registrar import IdentityRegistrar

log = logging.getLogger(__name__)


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(InvalidInput)
    async def _invalid_input(request: Request, exc: InvalidInput) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def _invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": "Invalid request body"})

    @app.exception_handler(Unauthorized)
    async def _unauthorized(request: Request, exc: Unauthorized) -> JSONResponse:
        return JSONResponse(status_code=403, content={"error": "Unauthorized"})

    @app.exception_handler(Forbidden)
    async def _forbidden(request: Request, exc: Forbidden) -> JSONResponse:
        return JSONResponse(status_code=403, content={"error": "Forbidden"})

    @app.exception_handler(StorageFailure)
    async def _storage_failure(request: Request, exc: StorageFailure) -> JSONResponse:
        log.error("storage failure on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"error": "Storage failure"})

    @app.exception_handler(UpstreamUnavailable)
    async def _upstream_unavailable(request: Request, exc: UpstreamUnavailable) -> JSONResponse:
        return JSONResponse(status_code=502, content={"error": "Bad gateway"})

    @app.exception_handler(Exception)
    async def _generic(request: Request, exc: Exception) -> JSONResponse:
        log.exception("unhandled error on %s", request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


def _install_services(app: FastAPI, store: Store, git_proxy: GitSyncProxy) -> None:
    app.state.store = store
    app.state.registrar = IdentityRegistrar(store, username_max_length=config.USERNAME_MAX_LENGTH)
    app.state.invites = InviteProtocolHandler(store, mailbox_ttl_seconds=config.MAILBOX_TTL_SECONDS)
    app.state.poller = NotificationPoller(store)
    app.state.git_proxy = git_proxy


def _default_git_proxy() -> GitSyncProxy:
    return GitSyncProxy(
        upstream_url=config.GIT_UPSTREAM_URL,
        account=config.GH_USERNAME,
        token=config.GH_TOKEN,
        timeout_seconds=config.GIT_PROXY_TIMEOUT_SECONDS,
    )


def create_app(
    store: Store | None = None,
    git_proxy: GitSyncProxy | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    When called without a store (production), the store is built from
    configuration inside the lifespan context and closed on shutdown. When a
    store is passed (tests), it is installed immediately and left open.
    """
    _provided_store = store
    _git_proxy = git_proxy or _default_git_proxy()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        if _provided_store is not None:
            yield
            return

        _store = create_store(config.STORE_BACKEND, redis_url=config.REDIS_URL, prefix=config.KVS_PREFIX)
        _install_services(app, _store, _git_proxy)
        try:
            yield
        finally:
            _store.close()

    app = FastAPI(title="Haven Middleware", lifespan=lifespan)

    if _provided_store is not None:
        _install_services(app, _provided_store, _git_proxy)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ALLOW_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )

    _register_exception_handlers(app)

    app.include_router(router)

    return app
