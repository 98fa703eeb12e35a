"""FastAPI router for the identity/mailbox relay and the git sync proxy."""

from __future__ import annotations

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.concurrency import run_in_threadpool

from errors import Forbidden
from git_proxy import GitSyncProxy
from invites import InviteProtocolHandler
from poller import NotificationPoller
from registrar import IdentityRegistrar

router = APIRouter()

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

# ---------------------------------------------------------------------------
# Dependency providers
# ---------------------------------------------------------------------------


def get_registrar(request: Request) -> IdentityRegistrar:
    return request.app.state.registrar  # type: ignore[no-any-return]


def get_invites(request: Request) -> InviteProtocolHandler:
    return request.app.state.invites  # type: ignore[no-any-return]


def get_poller(request: Request) -> NotificationPoller:
    return request.app.state.poller  # type: ignore[no-any-return]


def get_git_proxy(request: Request) -> GitSyncProxy:
    return request.app.state.git_proxy  # type: ignore[no-any-return]


# ---------------------------------------------------------------------------
# Relay routes
# ---------------------------------------------------------------------------


@router.get("/healthz")
def route_healthz() -> JSONResponse:
    return JSONResponse({"status": "ok"})


@router.post("/api/register")
def route_register(
    body: dict[str, object] = Body(default={}),
    registrar: IdentityRegistrar = Depends(get_registrar),
) -> JSONResponse:
    identity = registrar.register(body.get("username"))
    return JSONResponse(identity.to_dict())


@router.post("/api/invite")
def route_invite(
    body: dict[str, object] = Body(default={}),
    invites: InviteProtocolHandler = Depends(get_invites),
) -> JSONResponse:
    invites.invite(
        target_tag=body.get("targetTag"),
        sender_tag=body.get("senderTag"),
        ip=body.get("ip"),
        world_name=body.get("worldName"),
    )
    return JSONResponse({"success": True})


@router.post("/api/respond")
def route_respond(
    body: dict[str, object] = Body(default={}),
    invites: InviteProtocolHandler = Depends(get_invites),
) -> JSONResponse:
    invites.respond(
        sender_tag=body.get("senderTag"),
        target_tag=body.get("targetTag"),
        action=body.get("action"),
    )
    return JSONResponse({"success": True})


@router.post("/api/notifications")
def route_notifications(
    body: dict[str, object] = Body(default={}),
    poller: NotificationPoller = Depends(get_poller),
) -> JSONResponse:
    entries = poller.notifications(body.get("tag"), body.get("secret"))
    return JSONResponse({"notifications": entries})


# ---------------------------------------------------------------------------
# Git sync proxy
# ---------------------------------------------------------------------------


@router.api_route("/git", methods=PROXY_METHODS, include_in_schema=False)
@router.api_route("/git/{rest:path}", methods=PROXY_METHODS, include_in_schema=False)
async def route_git_proxy(
    request: Request,
    git_proxy: GitSyncProxy = Depends(get_git_proxy),
) -> StreamingResponse:
    # Raw body: git packfiles are binary and must not go through JSON parsing.
    body = await request.body()
    proxied = await run_in_threadpool(
        git_proxy.forward,
        request.method,
        # Undecoded path: %2F, %3F and %2e must reach the upstream as sent.
        request.scope.get("raw_path", request.url.path.encode("utf-8")).split(b"?", 1)[0].decode("latin-1"),
        request.url.query,
        [(name.decode("latin-1"), value.decode("latin-1")) for name, value in request.headers.raw],
        body,
    )
    response = StreamingResponse(proxied.body, status_code=proxied.status)
    for name, value in proxied.headers:
        response.headers.append(name, value)
    return response


@router.api_route("/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
def route_forbidden(path: str) -> JSONResponse:
    raise Forbidden("Forbidden")
