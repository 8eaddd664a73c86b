"""
Security module for JWT authentication.
Implements token issuing and validation and role extraction.

Tokens are verified with the shared JWT_SECRET_KEY, or against the public
keys published at JWT_JWKS_URL when that is configured (RS256).

Roles:
- student: submits and manages their own leave requests
- admin: reviews every leave request and may act on a student's behalf
"""

from datetime import datetime, timedelta, timezone
from typing import Annotated, Any

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient
from pydantic import BaseModel

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

# HTTP Bearer scheme for JWT tokens
security = HTTPBearer()

ROLE_STUDENT = "student"
ROLE_ADMIN = "admin"
KNOWN_ROLES = {ROLE_STUDENT, ROLE_ADMIN}

# JWKS client for fetching and caching public keys (only when configured)
jwks_client = (
    PyJWKClient(uri=settings.JWT_JWKS_URL, cache_keys=True, max_cached_keys=16)
    if settings.JWT_JWKS_URL
    else None
)


class TokenData(BaseModel):
    """
    Decoded token data structure.
    Contains the user's identity and profile claims.
    """

    sub: str  # Subject (user ID)
    role: str = ROLE_STUDENT
    name: str | None = None
    email: str | None = None
    roll_number: str | None = None
    stream: str | None = None
    exp: int | None = None  # Expiration
    iat: int | None = None  # Issued at
    raw_claims: dict[str, Any] = {}  # All other claims


def create_access_token(
    user_id: str,
    role: str = ROLE_STUDENT,
    expires_delta: timedelta | None = None,
    **claims: Any,
) -> str:
    """
    Issue an HS256 access token signed with JWT_SECRET_KEY.

    Args:
        user_id: Subject of the token
        role: "student" or "admin"
        expires_delta: Token lifetime (defaults to JWT_EXPIRE_MINUTES)
        **claims: Extra profile claims (name, email, roll_number, stream)

    Returns:
        Encoded JWT string
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.JWT_EXPIRE_MINUTES))
    payload = {
        "sub": user_id,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
        **{key: value for key, value in claims.items() if value is not None},
    }
    if settings.JWT_ISSUER:
        payload["iss"] = settings.JWT_ISSUER
    if settings.JWT_AUDIENCE:
        payload["aud"] = settings.JWT_AUDIENCE
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def _decode_payload(token: str) -> dict[str, Any]:
    decode_options = {
        "verify_signature": True,
        "verify_exp": True,
        "verify_aud": settings.JWT_AUDIENCE is not None,
        "verify_iss": settings.JWT_ISSUER is not None,
    }
    kwargs: dict[str, Any] = {"options": decode_options}
    if settings.JWT_AUDIENCE:
        kwargs["audience"] = settings.JWT_AUDIENCE
    if settings.JWT_ISSUER:
        kwargs["issuer"] = settings.JWT_ISSUER

    if jwks_client is not None:
        signing_key = jwks_client.get_signing_key_from_jwt(token)
        return jwt.decode(token, signing_key.key, algorithms=["RS256"], **kwargs)
    return jwt.decode(
        token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM], **kwargs
    )


def decode_token(token: str) -> TokenData:
    """
    Decode and validate a JWT token.

    Args:
        token: JWT token string

    Returns:
        TokenData with decoded information

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        payload = _decode_payload(token)
    except jwt.ExpiredSignatureError:
        logger.warning("Token has expired")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        logger.warning(f"Invalid token: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except Exception as e:
        logger.error(f"Error decoding token: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    role = payload.get("role", ROLE_STUDENT)
    if role not in KNOWN_ROLES:
        logger.warning(f"Unknown role '{role}' for subject {payload.get('sub')}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Unknown role: {role}",
        )

    logger.debug(f"Token decoded successfully for subject: {payload.get('sub')}")

    return TokenData(
        sub=str(payload.get("sub", "")),
        role=role,
        name=payload.get("name"),
        email=payload.get("email"),
        roll_number=payload.get("roll_number"),
        stream=payload.get("stream"),
        exp=payload.get("exp"),
        iat=payload.get("iat"),
        raw_claims=payload,
    )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> TokenData:
    """
    Dependency to get the current authenticated user from JWT token.

    Raises:
        HTTPException: 401 if authentication fails
    """
    return decode_token(credentials.credentials)
