"""Custom exception types for domain and API layers."""
from __future__ import annotations

from typing import Any, Dict


class AppError(Exception):
    """Base app exception."""


class APIError(AppError):
    """Error rendered to the client as ``{"code": ..., "msg": ...}``."""

    code = 500

    def __init__(self, msg: str, code: int | None = None):
        super().__init__(msg)
        self.msg = msg
        if code is not None:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "msg": self.msg}

    def __str__(self) -> str:
        return f"{self.code}: {self.msg}"


class BadRequest(APIError):
    code = 400


class Unauthorized(APIError):
    code = 401


class NotFound(APIError):
    code = 404


class InternalServerError(APIError):
    code = 500


class PaymentProxyError(AppError):
    """Payment processor call failure."""


class StoreError(AppError):
    """Persistence failure, including rejected records."""
