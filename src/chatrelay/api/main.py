from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from dotenv import load_dotenv
import logging
import os
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from ..config import AppConfig
from ..domain.errors import ChatRelayError, RateLimitExceeded
from ..observability.metrics import metrics_middleware_factory
from .deps import Services, build_services, shutdown, startup
from .routers.auth import router as auth_router
from .routers.chat import router as chat_router

load_dotenv()  # Load environment variables from .env if present (GEMINI_API_KEY, JWT_SECRET, MONGODB_URI)

logging.basicConfig(level=logging.INFO)

logger = logging.getLogger("chatrelay.api")

APP_NAME = "ChatRelay API"
APP_VERSION = "0.1.0"


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    msg = first.get("msg", "invalid value")
    return f"{loc}: {msg}" if loc else msg


def create_app(config: Optional[AppConfig] = None, services: Optional[Services] = None) -> FastAPI:
    """Build the API with its collaborators.

    Tests pass a ready ``Services`` with fake backends; production builds them
    from the environment.
    """
    if services is None:
        services = build_services(config or AppConfig.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await startup(services)
        try:
            yield
        finally:
            await shutdown(services)

    app = FastAPI(title=APP_NAME, version=APP_VERSION, lifespan=lifespan)
    app.state.services = services

    # Observability: request latency histogram
    app.middleware("http")(metrics_middleware_factory())

    @app.exception_handler(ChatRelayError)
    async def _chat_relay_error(request: Request, exc: ChatRelayError) -> JSONResponse:
        headers = None
        if isinstance(exc, RateLimitExceeded):
            headers = {"Retry-After": str(exc.retry_after_seconds)}
        if exc.status_code >= 500:
            logger.warning("request_failed", extra={"path": request.url.path, "status": exc.status_code, "error": exc.message})
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message}, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": _validation_message(exc)})

    # Routers
    app.include_router(auth_router)
    app.include_router(chat_router)

    # Also expose the same routers under /api
    app.include_router(auth_router, prefix="/api")
    app.include_router(chat_router, prefix="/api")

    # CORS (for the web client dev server on localhost:3000)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def root():
        return {"name": APP_NAME, "version": APP_VERSION}

    def health():
        return {
            "status": "ok",
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "components": {
                "api": "ok",
                "store": services.config.store.impl,
                "llm": "configured" if services.config.generation.configured else "missing_key",
            },
        }

    def metrics() -> Response:
        # Expose Prometheus metrics
        data = generate_latest(REGISTRY)
        return Response(content=data, media_type=CONTENT_TYPE_LATEST)

    for prefix in ("", "/api"):
        app.add_api_route(prefix or "/", root, methods=["GET"])
        app.add_api_route(f"{prefix}/health", health, methods=["GET"])
        app.add_api_route(f"{prefix}/metrics", metrics, methods=["GET"])

    return app


app = create_app()


def run() -> None:
    """Serve the API with uvicorn (``chatrelay`` console script)."""
    import uvicorn

    uvicorn.run(
        "src.chatrelay.api.main:app",
        host=os.getenv("CHATRELAY_HOST", "0.0.0.0"),
        port=int(os.getenv("CHATRELAY_PORT", "8000")),
    )


if __name__ == "__main__":
    run()
