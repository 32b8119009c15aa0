"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from nutrition_engine.api.routes import router as nutrition_router
from nutrition_engine.app_logging import configure_logging
from nutrition_engine.config import parse_allowed_origins
from nutrition_engine.containers import AppContainer
from nutrition_engine.errors import NutritionEngineError, RateLimitedError
from nutrition_engine.services.cache import utc_now


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container
    app.add_middleware(
        CORSMiddleware,
        allow_origins=parse_allowed_origins(container.settings.cors_allowed_origins),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
        expose_headers=["X-RateLimit-Remaining", "Retry-After"],
    )

    app.include_router(nutrition_router)

    @app.exception_handler(NutritionEngineError)
    async def engine_error_handler(
        request: Request, exc: NutritionEngineError
    ) -> JSONResponse:
        if exc.status_code >= 500:  # noqa: PLR2004
            logger.warning(
                "%s %s failed: %s (%s)",
                request.method,
                request.url.path,
                exc,
                exc.code,
            )
        headers = (
            {"Retry-After": str(exc.retry_after)}
            if isinstance(exc, RateLimitedError)
            else None
        )
        return JSONResponse(
            status_code=exc.status_code, content=exc.to_payload(), headers=headers
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "error": "Invalid or missing request body",
                "code": "MISSING_INPUT",
            },
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.exception("Unexpected error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": "An unexpected error occurred",
                "code": "UNEXPECTED_ERROR",
            },
        )

    @app.middleware("http")
    async def rate_limit_header(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        response = await call_next(request)
        _apply_rate_limit_headers(request, response)
        return response

    @app.get("/health")
    async def health(request: Request) -> dict[str, object]:
        """Liveness check with process uptime."""
        state_container: AppContainer = request.app.state.container
        now = utc_now()
        return {
            "status": "ok",
            "timestamp": now.isoformat(),
            "uptime": (now - state_container.started_at).total_seconds(),
        }

    return app


def _apply_rate_limit_headers(request: Request, response: Response) -> None:
    remaining = getattr(request.state, "rate_limit_remaining", None)
    if remaining is not None and "X-RateLimit-Remaining" not in response.headers:
        response.headers["X-RateLimit-Remaining"] = str(remaining)
