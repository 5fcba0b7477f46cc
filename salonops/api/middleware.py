"""Middleware for request context and idempotency."""

import json
import uuid
from contextvars import ContextVar
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from salonops.core.idempotency import IDEMPOTENCY_HEADER, generate_idempotency_key
from salonops.core.tenant_context import clear_organization_context
from salonops.infrastructure.redis import redis_client
from salonops.settings import settings

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)


def get_current_request_id() -> str | None:
    """Get the ID of the request being handled, if any."""
    return request_id_var.get()


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assigns a request ID and clears organization context per request."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
            clear_organization_context()
        response.headers["X-Request-ID"] = request_id
        return response


class IdempotencyMiddleware(BaseHTTPMiddleware):
    """Replays cached successes for writes that carry an Idempotency-Key header.

    Requests without the header always run.
    """

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        """Process request with idempotency check.

        Args:
            request: FastAPI request
            call_next: Next middleware/handler

        Returns:
            Response (cached if idempotent, or new)
        """
        if request.method not in ("POST", "PUT", "PATCH", "DELETE"):
            return await call_next(request)

        client_key = request.headers.get(IDEMPOTENCY_HEADER)
        if not client_key:
            return await call_next(request)

        await redis_client.connect()
        if not redis_client.enabled:
            return await call_next(request)

        # Keys are scoped to the caller so one actor never replays another's response
        idempotency_key = generate_idempotency_key(
            request.method,
            str(request.url.path),
            client_key,
            actor=request.headers.get("Authorization", ""),
        )

        cached_response = await redis_client.get_json(f"idempotency:{idempotency_key}")
        if cached_response:
            return JSONResponse(
                content=cached_response["body"],
                status_code=cached_response["status_code"],
            )

        response = await call_next(request)

        # Only successful responses are replayed; failed merges may be retried
        if 200 <= response.status_code < 300:
            response_body = b""
            async for chunk in response.body_iterator:
                response_body += chunk

            try:
                body_dict = json.loads(response_body.decode())
            except json.JSONDecodeError:
                body_dict = response_body.decode()

            await redis_client.set_json(
                f"idempotency:{idempotency_key}",
                {"body": body_dict, "status_code": response.status_code},
                ttl=settings.idempotency_ttl_seconds,
            )

            headers = {
                k: v for k, v in response.headers.items() if k.lower() != "content-length"
            }
            return JSONResponse(
                content=body_dict,
                status_code=response.status_code,
                headers=headers,
            )

        return response
