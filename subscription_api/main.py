"""
Subscription API - FastAPI Application
Paid-plan subscriptions for authenticated users, billed through Stripe.
"""
from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException

from subscription_api.api.context import log_completed, start_request
from subscription_api.api.routes import subscriptions
from subscription_api.config import Settings
from subscription_api.core.exceptions import APIError
from subscription_api.core.logging import get_logger
from subscription_api.database import check_namespace
from subscription_api.integrations.payments import ErrorProxy, PayerProxy
from subscription_api.version import APPLICATION_NAME, __version__

logger = get_logger(__name__, component="api")


def _error_response(code: int, msg: str) -> JSONResponse:
    return JSONResponse(status_code=code, content={"code": code, "msg": msg})


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ()) if p != "body")
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "failed to decode payload: " + "; ".join(parts)


def create_app(
    settings: Settings,
    session_factory: sessionmaker,
    payer_proxy: Optional[PayerProxy] = None,
) -> FastAPI:
    """Build the API with its collaborators injected."""
    check_namespace(settings)
    app = FastAPI(
        title="Subscription API",
        description="Create, view, update and cancel paid subscriptions",
        version=__version__,
    )
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.payer_proxy = payer_proxy or ErrorProxy()

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_request(request)
        try:
            response = await call_next(request)
        except Exception:
            log_completed(request, 500)
            raise
        log_completed(request, response.status_code)
        return response

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
        return _error_response(exc.code, exc.msg)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error_response(400, _validation_message(exc))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error: %s", exc, exc_info=exc)
        return _error_response(500, "Internal server error")

    @app.get("/")
    async def hello() -> dict:
        return {"version": __version__, "application": APPLICATION_NAME}

    app.include_router(subscriptions.router, prefix="/subscriptions", tags=["Subscriptions"])

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE"],
        allow_headers=["Accept", "Authorization", "Content-Type"],
    )

    logger.info("Subscription API %s configured", __version__)
    return app
