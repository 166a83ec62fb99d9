"""
Password hashing and session tokens.

Tokens are stateless HMAC-signed JWTs carrying the user's id, email and
name. There is no server-side session store, so a token stays valid until
it expires.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Header
from passlib.context import CryptContext
from pydantic import ValidationError as PydanticValidationError

from . import schemas
from .config import JWTSettings, get_settings
from .errors import AuthError, ConfigurationError
from .log import get_logger

logger = get_logger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=10)

HMAC_ALGORITHMS = ("HS256", "HS384", "HS512")


def signing_settings() -> JWTSettings:
    """Token settings, raising ConfigurationError when JWT_SECRET is absent."""
    try:
        return get_settings().jwt
    except PydanticValidationError as exc:
        raise ConfigurationError("JWT_SECRET is not set") from exc


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(
    user_id: int,
    email: str,
    name: str,
    secret: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    settings = signing_settings()
    if secret is None:
        secret = settings.secret
    if not secret:
        raise ConfigurationError("JWT_SECRET is not set")

    now = datetime.now(timezone.utc)
    expire = now + (expires_delta if expires_delta is not None else timedelta(hours=settings.expire_hours))
    payload = {
        "user_id": user_id,
        "email": email,
        "name": name,
        "iss": settings.issuer,
        "sub": str(user_id),
        "iat": now,
        "nbf": now,
        "exp": expire,
    }
    return jwt.encode(payload, secret, algorithm=settings.algorithm)


def decode_access_token(token: str, secret: Optional[str] = None) -> schemas.TokenData:
    """Verify a token and return the identity it carries.

    Only HMAC algorithms are accepted. Raises AuthError with reason
    ``bad_signature``, ``expired`` or ``invalid``.
    """
    settings = signing_settings()
    if secret is None:
        secret = settings.secret
    if not secret:
        raise ConfigurationError("JWT_SECRET is not configured")

    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=list(HMAC_ALGORITHMS),
            issuer=settings.issuer,
            options={"require": ["exp", "iat", "nbf"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthError(
            "Your session has expired. Please login again",
            error="Token expired",
            reason="expired",
        )
    except jwt.InvalidSignatureError:
        raise AuthError(
            "The token signature is invalid",
            error="Invalid token signature",
            reason="bad_signature",
        )
    except jwt.InvalidTokenError:
        raise AuthError("The provided token is invalid", error="Invalid token")

    try:
        return schemas.TokenData(
            user_id=claims["user_id"], email=claims["email"], name=claims["name"]
        )
    except (KeyError, ValueError):
        raise AuthError("The token is not valid", error="Invalid token")


def get_current_user(authorization: Optional[str] = Header(None)) -> schemas.TokenData:
    """Dependency that authenticates the ``Authorization: Bearer <token>`` header."""
    if not authorization:
        _reject(AuthError(
            "Please provide a valid JWT token in the Authorization header",
            error="Authorization header is required",
            reason="missing_header",
        ))

    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        _reject(AuthError(
            "Authorization header must be in format: Bearer <token>",
            error="Invalid authorization format",
            reason="bad_format",
        ))

    try:
        return decode_access_token(parts[1])
    except AuthError as exc:
        _reject(exc)


def _reject(exc: AuthError):
    logger.warning("token_rejected", reason=exc.reason)
    raise exc
