"""FastAPI application exposing the acquisitions HTTP surface."""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from .config import Settings, settings as default_settings
from .database import init_db
from .logger import configure_logging
from .middleware import (
    AccessLogMiddleware,
    CookieParserMiddleware,
    JSONBodyMiddleware,
    SecurityHeadersMiddleware,
    URLEncodedBodyMiddleware,
)
from .routes.auth import create_auth_app
from .routes.users import create_users_app

logger = logging.getLogger(__name__)

PROCESS_STARTED_AT = time.monotonic()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


def _utc_now_iso() -> str:
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class RouteNotFound:
    """ASGI endpoint answering every method with the not-found payload."""

    async def __call__(self, scope, receive, send):
        response = JSONResponse({"error": "Route not found"}, status_code=404)
        await response(scope, receive, send)


class _CollectionRoot:
    """Serve the bare prefix as the collection's ``/``.

    The request is rewritten to ``prefix + "/"`` and routed again, so the
    mount answers it without a redirect.
    """

    def __init__(self, router, prefix: str):
        self.router = router
        self.path = prefix + "/"

    async def __call__(self, scope, receive, send):
        scope = dict(scope, path=self.path, raw_path=self.path.encode())
        await self.router(scope, receive, send)


def _mount_collection(app: FastAPI, prefix: str, collection) -> None:
    """Hand ``prefix`` and everything below it to ``collection``."""
    app.add_route(prefix, _CollectionRoot(app.router, prefix), include_in_schema=False)
    app.mount(prefix, collection)



def create_app(
    settings: Settings | None = None, auth_routes=None, users_routes=None
) -> FastAPI:
    """Build the application with its middleware stack and routes.

    ``auth_routes`` and ``users_routes`` are ASGI applications mounted under
    ``/api/auth`` and ``/api/users``; the bundled collections are used when
    they are omitted.
    """
    settings = settings or default_settings
    configure_logging(settings.log_level)

    app = FastAPI(
        title=settings.api_title,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    # Starlette runs the last added middleware first, so register innermost first
    app.add_middleware(CookieParserMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(URLEncodedBodyMiddleware, limit=settings.body_limit)
    app.add_middleware(JSONBodyMiddleware, limit=settings.body_limit)
    app.add_middleware(SecurityHeadersMiddleware)

    @app.get("/", response_class=PlainTextResponse)
    def root():
        logger.info("hello from acquisition")
        return "Hello from acquisitions"

    @app.get("/health")
    def health():
        """Report liveness; uptime counts from when the package was imported."""
        return {
            "status": "OK",
            "timestamp": _utc_now_iso(),
            "uptime": time.monotonic() - PROCESS_STARTED_AT,
        }

    @app.get("/api")
    def api_root():
        return {"message": "Acquisitions API is running!"}

    _mount_collection(app, "/api/auth", auth_routes or create_auth_app())
    _mount_collection(app, "/api/users", users_routes or create_users_app())

    # An ASGI endpoint is registered without a method list, so every method matches
    app.add_route("/{path:path}", RouteNotFound(), include_in_schema=False)

    return app


app = create_app()
