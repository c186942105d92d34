# Copyright 2025 ATP Project Contributors
# Licensed under the Apache License, Version 2.0

"""Starlette / FastAPI integration.

``HMACAuthMiddleware`` authenticates every request before it reaches the app;
``require_signed_request`` does the same as a FastAPI dependency for individual
routes. Both annotate ``request.state`` with ``authenticated``, ``api_key``,
``secret`` and ``signature``.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable

from fastapi import HTTPException, Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from .exceptions import AuthError, ErrorCode
from .models import AuthResult
from .server import IncomingRequest, Server

logger = logging.getLogger(__name__)

RejectionHandler = Callable[[AuthError, Request], Awaitable[Response]]
AcceptanceHandler = Callable[[AuthResult, Request], Awaitable[None]]


def status_for_error(error: AuthError) -> int:
    """HTTP status to answer an authentication failure with."""
    if error.code == ErrorCode.BODY_TOO_LARGE:
        return 413
    if error.code in (ErrorCode.INTERNAL_ERROR_SECRET_DISCOVERY, ErrorCode.INTERNAL_ERROR_SECRET_TIMEOUT):
        return 500
    return 401


async def default_rejection_handler(error: AuthError, request: Request) -> Response:
    return JSONResponse(status_code=status_for_error(error), content={"error": error.to_dict()})


async def incoming_request(request: Request, body_size_limit_bytes: int) -> IncomingRequest:
    """Build the verifier's view of a Starlette request, reading its body.

    The body is read with ``request.body()`` so it stays available to the app.
    """
    content_length = request.headers.get("content-length")
    if content_length is not None and content_length.isdigit() and int(content_length) > body_size_limit_bytes:
        raise AuthError(
            f"Maximum body length ({body_size_limit_bytes} bytes) exceeded.",
            ErrorCode.BODY_TOO_LARGE,
        )

    body = await request.body()
    if len(body) > body_size_limit_bytes:
        raise AuthError(
            f"Maximum body length ({body_size_limit_bytes} bytes) exceeded.",
            ErrorCode.BODY_TOO_LARGE,
        )

    # Sign over the path and query exactly as they came over the wire
    raw_path = request.scope.get("raw_path")
    if raw_path:
        path = raw_path.split(b"?", 1)[0].decode("latin-1")
    else:
        path = request.url.path

    url = path
    query_string = request.scope.get("query_string", b"").decode("latin-1")
    if query_string:
        url = f"{path}?{query_string}"

    return IncomingRequest(
        method=request.method,
        url=url,
        headers=dict(request.headers.items()),
        query=dict(request.query_params),
        raw_body=body,
    )


def _annotate(request: Request, incoming: IncomingRequest) -> None:
    request.state.authenticated = incoming.authenticated
    request.state.api_key = incoming.api_key
    request.state.secret = incoming.secret
    request.state.signature = incoming.signature


async def authenticate_request(server: Server, request: Request) -> AuthResult:
    """Authenticate a Starlette request and annotate its state."""
    request.state.authenticated = False
    request.state.api_key = None
    request.state.secret = None
    request.state.signature = None

    incoming = await incoming_request(request, server.config.body_size_limit_bytes)
    try:
        return await server.authenticate(incoming, incoming.raw_body)
    finally:
        _annotate(request, incoming)


class HMACAuthMiddleware(BaseHTTPMiddleware):
    """Middleware that rejects requests without a valid signature."""

    def __init__(
        self,
        app,
        server: Server,
        on_rejected: RejectionHandler | None = None,
        on_accepted: AcceptanceHandler | None = None,
        exclude_paths: Iterable[str] = (),
    ):
        super().__init__(app)
        self.server = server
        self.on_rejected = on_rejected or default_rejection_handler
        self.on_accepted = on_accepted

        # Paths served without authentication (health checks, etc.)
        self.exclude_paths = set(exclude_paths)

    async def dispatch(self, request: Request, call_next):
        """Authenticate the request, then hand it to the app or the rejection handler."""
        if request.url.path in self.exclude_paths:
            return await call_next(request)

        try:
            result = await authenticate_request(self.server, request)
        except AuthError as e:
            logger.warning(
                f"Rejected {request.method} {request.url.path}: {e.code_value}",
                extra={"code": e.code_value, "api_key": request.state.api_key},
            )
            return await self.on_rejected(e, request)

        if self.on_accepted is not None:
            await self.on_accepted(result, request)

        return await call_next(request)


def require_signed_request(server: Server):
    """
    Dependency that requires a valid signature.

    Example:
        @app.post("/v1/items/")
        async def create_item(auth: AuthResult = Depends(require_signed_request(server))):
            ...
    """

    async def checker(request: Request) -> AuthResult:
        try:
            return await authenticate_request(server, request)
        except AuthError as e:
            logger.warning(f"Rejected {request.method} {request.url.path}: {e.code_value}")
            raise HTTPException(status_code=status_for_error(e), detail=e.to_dict())

    return checker
