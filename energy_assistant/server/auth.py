"""Bearer-token authentication.

Tokens are HS256 JWTs issued by the external auth service and carry the
user's ``id`` and ``email`` claims. Verification only; issuing tokens is out
of scope here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from jose import ExpiredSignatureError, JWTError, jwt

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


class AuthenticationError(Exception):
    """Missing, malformed, expired, or otherwise invalid bearer token."""


@dataclass(frozen=True)
class Principal:
    """The authenticated user a request acts for."""

    id: str
    email: str


def decode_token(token: str, secret: str) -> Principal:
    """Verify ``token`` and return its principal.

    Raises
    ------
    AuthenticationError
        When the signature, expiry, or required claims do not check out.
    """
    try:
        claims = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise AuthenticationError("Token expired") from exc
    except JWTError as exc:
        raise AuthenticationError("Invalid token") from exc

    user_id = claims.get("id")
    email = claims.get("email")
    if not user_id or not email:
        raise AuthenticationError("Invalid token")
    return Principal(id=str(user_id), email=str(email))


def principal_from_header(authorization: Optional[str], secret: str) -> Principal:
    if not authorization:
        raise AuthenticationError("No token provided")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("No token provided")
    return decode_token(token.strip(), secret)


def make_principal_dependency(
    secret: str, header: Any, http_exc: Any, status_mod: Any
) -> Callable[..., Principal]:
    """Return a FastAPI dependency resolving the request's principal."""

    def _principal_dependency(
        authorization: Optional[str] = header(default=None),
    ) -> Principal:
        try:
            return principal_from_header(authorization, secret)
        except AuthenticationError as exc:
            logger.info("http.auth.rejected", extra={"reason": str(exc)})
            raise http_exc(
                status_code=status_mod.HTTP_401_UNAUTHORIZED, detail=str(exc)
            ) from exc

    return _principal_dependency
