from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import time
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from starlette.exceptions import HTTPException as StarletteHTTPException

from chatdesk.apps.api.errors import (
    chatdesk_error_handler,
    http_exception_handler,
    tenant_predicate_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from chatdesk.apps.api.response import API_VERSION
from chatdesk.apps.api.routes.admin import router as admin_router
from chatdesk.apps.api.routes.auth import router as auth_router
from chatdesk.apps.api.routes.chat import router as chat_router
from chatdesk.apps.api.routes.health import router as health_router
from chatdesk.apps.api.routes.tenants import router as tenants_router
from chatdesk.apps.api.routes.widget import router as widget_router
from chatdesk.core.config import get_settings
from chatdesk.core.errors import ChatdeskError
from chatdesk.core.logging import configure_logging
from chatdesk.persistence.guards import TenantPredicateError
from chatdesk.services.usage import DeferredUsageAccounting, get_usage_accounting


logger = logging.getLogger(__name__)

_PUBLIC_PATHS = {"/v1/health", "/v1/widget/config", "/v1/chat/message", "/v1/auth/signup", "/v1/auth/login"}

# Called from tenant sites; origins here are checked per tenant, not against the dashboard list.
_WIDGET_PATH_PREFIXES = (f"/{API_VERSION}/widget/", f"/{API_VERSION}/chat/")
_WIDGET_PREFLIGHT_MAX_AGE = "600"
_EXPOSED_HEADERS = ["X-Request-Id", "X-Usage-Limit", "X-Usage-Used", "X-Usage-Remaining"]


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    accounting = get_usage_accounting()
    # Let in-flight usage increments land before the process exits.
    if isinstance(accounting, DeferredUsageAccounting):
        await accounting.drain()


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="Chatdesk API", lifespan=_lifespan)

    # Dashboard origins only; widget routes are checked against tenant whitelists instead.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=_EXPOSED_HEADERS,
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.debug(
            "request_completed method=%s path=%s status=%s latency_ms=%.1f",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.middleware("http")
    async def widget_cors_middleware(request: Request, call_next):  # type: ignore[override]
        origin = request.headers.get("origin")
        if not origin or not request.url.path.startswith(_WIDGET_PATH_PREFIXES):
            return await call_next(request)
        if request.method == "OPTIONS" and "access-control-request-method" in request.headers:
            # Preflights carry no client id; the real request is still origin-checked.
            return Response(
                status_code=204,
                headers={
                    "Access-Control-Allow-Origin": origin,
                    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
                    "Access-Control-Allow-Headers": request.headers.get(
                        "access-control-request-headers", "Content-Type"
                    ),
                    "Access-Control-Max-Age": _WIDGET_PREFLIGHT_MAX_AGE,
                    "Vary": "Origin",
                },
            )
        response = await call_next(request)
        if getattr(request.state, "widget_origin_allowed", False):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Expose-Headers"] = ", ".join(_EXPOSED_HEADERS)
        response.headers.add_vary_header("Origin")
        return response

    app.add_exception_handler(ChatdeskError, chatdesk_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(TenantPredicateError, tenant_predicate_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    for router in (health_router, auth_router, widget_router, chat_router, tenants_router, admin_router):
        app.include_router(router, prefix=f"/{API_VERSION}")

    def custom_openapi() -> dict:
        # Advertise the session cookie on every route that is not public.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(title="Chatdesk API", version=API_VERSION, routes=app.routes)
        components = schema.setdefault("components", {})
        components.setdefault("securitySchemes", {})["SessionCookie"] = {
            "type": "apiKey",
            "in": "cookie",
            "name": settings.auth_cookie_name,
        }
        for path, operations in schema.get("paths", {}).items():
            if path in _PUBLIC_PATHS:
                continue
            for operation in operations.values():
                operation.setdefault("security", [{"SessionCookie": []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi

    return app


app = create_app()
