"""Bearer token verification for identity-system JWTs."""
from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import jwt
from pydantic import BaseModel, Field

from subscription_api.core.exceptions import BadRequest, Unauthorized

ALGORITHM = "HS256"
TOKEN_TTL_MINUTES = 60
BEARER_PATTERN = re.compile(r"^bearer (\S+)$", re.IGNORECASE)


class TokenClaims(BaseModel):
    sub: str = ""
    id: str = ""
    email: str = ""
    groups: List[str] = Field(default_factory=list)
    exp: int

    @property
    def user_id(self) -> str:
        return self.id or self.sub

    def expires_at(self) -> datetime:
        return datetime.fromtimestamp(self.exp, tz=timezone.utc)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def create_access_token(
    secret: str,
    user_id: str,
    email: str = "",
    groups: Optional[List[str]] = None,
    expires_in: timedelta = timedelta(minutes=TOKEN_TTL_MINUTES),
    extra: Dict[str, Any] | None = None,
) -> str:
    payload: Dict[str, Any] = {
        "sub": user_id,
        "id": user_id,
        "email": email,
        "groups": list(groups or []),
        "iat": int(now_utc().timestamp()),
        "exp": int((now_utc() + expires_in).timestamp()),
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def decode_token(token: str, secret: str) -> TokenClaims:
    """
    Verify the signature and algorithm of ``token`` and return its claims.

    Expiry is checked separately so the error can name the instant.
    """
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[ALGORITHM],
            options={"verify_exp": False, "verify_aud": False, "require": ["exp"]},
        )
        claims = TokenClaims.model_validate(payload)
    except (jwt.PyJWTError, ValueError):
        raise Unauthorized("Invalid Token")

    if claims.exp <= int(now_utc().timestamp()):
        raise Unauthorized(f"Token expired at {claims.expires_at().isoformat()}")
    return claims


def extract_token(authorization: Optional[str], secret: str) -> Optional[TokenClaims]:
    """
    Return the verified claims carried by an ``Authorization`` header.

    ``None`` means no header was sent at all; the caller decides whether an
    anonymous request is acceptable.
    """
    if not authorization:
        return None

    match = BEARER_PATTERN.match(authorization)
    if match is None:
        raise BadRequest("Bad authentication header")
    return decode_token(match.group(1), secret)
