"""FastAPI app factory for the NPA recovery API."""

from __future__ import annotations

import argparse
import logging

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from npatrack.api.customers import router as customers_router
from npatrack.api.owners import router as owners_router
from npatrack.api.visits import router as visits_router
from npatrack.errors import ErrorKind, NpaTrackError
from npatrack.services.customers.models import describe_validation_errors
from npatrack.settings import get_settings

LOGGER = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UNAUTHORIZED: 403,
    ErrorKind.INTERNAL: 500,
}


def _envelope(message: str, kind: ErrorKind, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message, "kind": kind.value})


async def _handle_domain_error(request: Request, exc: NpaTrackError) -> JSONResponse:
    status_code = exc.status_code or STATUS_BY_KIND.get(exc.kind, 500)
    if status_code >= 500:
        LOGGER.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return _envelope(exc.message, exc.kind, status_code)


async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _envelope(describe_validation_errors(exc.errors()), ErrorKind.VALIDATION, 400)


async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    LOGGER.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _envelope("Server error", ErrorKind.INTERNAL, 500)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance.
    """
    app = FastAPI(title="NPA Recovery Tracker API", version="0.1")
    app.include_router(customers_router)
    app.include_router(owners_router)
    app.include_router(visits_router)
    app.add_exception_handler(NpaTrackError, _handle_domain_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation)
    app.add_exception_handler(Exception, _handle_unexpected)
    return app


# For uvicorn, expose `app` at module level
app = create_app()


def main(argv: list[str] | None = None) -> int:
    """Serve the API with uvicorn (``npatrack-api``)."""

    parser = argparse.ArgumentParser(description="Run the NPA recovery API")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    uvicorn.run("npatrack.api.app:app", host=args.host, port=args.port, reload=args.reload)
    return 0


__all__ = ["STATUS_BY_KIND", "app", "create_app", "main"]
