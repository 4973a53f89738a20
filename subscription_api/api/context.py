"""Per-request context assembled before every protected route."""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from subscription_api.config import Settings
from subscription_api.core.exceptions import APIError, BadRequest
from subscription_api.core.logging import FieldLogger, get_logger
from subscription_api.core.security import TokenClaims, extract_token
from subscription_api.database import get_db
from subscription_api.integrations.payments import PayerProxy

logger = get_logger("subscription_api.api", component="api")


@dataclass
class RequestContext:
    request_id: str
    start_time: datetime
    config: Settings
    db: Session
    payer_proxy: PayerProxy
    claims: TokenClaims
    is_admin: bool
    logger: FieldLogger

    @property
    def user_id(self) -> str:
        return self.claims.user_id

    def with_fields(self, **fields: Any) -> FieldLogger:
        self.logger = self.logger.with_fields(**fields)
        return self.logger


def new_request_id() -> str:
    return str(uuid.uuid4())


def start_request(request: Request) -> None:
    """Stamp the request with an id and its start time."""
    request.state.request_id = new_request_id()
    request.state.start_time = datetime.now(timezone.utc)
    request.state.start_ns = time.perf_counter_ns()


def get_request_context(request: Request, db: Session = Depends(get_db)) -> RequestContext:
    if getattr(request.state, "request_id", None) is None:
        start_request(request)

    settings: Settings = request.app.state.settings
    log = logger.with_fields(
        request_id=request.state.request_id,
        method=request.method,
        path=request.url.path,
    )
    request.state.logger = log
    log.info("Started request")

    try:
        claims = extract_token(request.headers.get("Authorization"), settings.jwt_secret.get_secret_value())
    except APIError as exc:
        log.info("Failed to parse token: %s", exc.msg)
        raise

    if claims is None:
        log.info("Attempted to make unauthenticated request")
        raise BadRequest("Must provide a valid JWT Token")

    is_admin = settings.admin_group_name in claims.groups
    log = log.with_fields(is_admin=is_admin, user_id=claims.user_id)
    request.state.logger = log

    return RequestContext(
        request_id=request.state.request_id,
        start_time=request.state.start_time,
        config=settings,
        db=db,
        payer_proxy=request.app.state.payer_proxy,
        claims=claims,
        is_admin=is_admin,
        logger=log,
    )


def log_completed(request: Request, status_code: int) -> None:
    log = getattr(request.state, "logger", None)
    if log is None:
        log = logger.with_fields(request_id=getattr(request.state, "request_id", ""))
    log = log.with_fields(status=status_code)
    start = getattr(request.state, "start_ns", None)
    if start is not None:
        log = log.with_fields(duration=time.perf_counter_ns() - start)
    log.info(
        "Completed request %s. path: %s, method: %s, status: %d",
        getattr(request.state, "request_id", ""),
        request.url.path,
        request.method,
        status_code,
    )


__all__ = [
    "RequestContext",
    "get_request_context",
    "log_completed",
    "start_request",
]
