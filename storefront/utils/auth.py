# =============================================
# File: storefront/utils/auth.py
# Purpose: Bearer JWT verification for the HTTP endpoints (HS256, audience "authenticated")
# =============================================
"""
All authenticated endpoints depend on `require_auth`:

    @router.post("/interaction")
    def post_interaction(user: AuthUser = Depends(require_auth)):
        user.id  # verified subject from the token
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from storefront.errors import AuthenticationError

security = HTTPBearer(
    scheme_name="Session JWT",
    description="Access token issued by the auth provider after login.",
    auto_error=False,  # we raise our own AuthenticationError
)


def _jwt_settings() -> tuple[str, str]:
    """Read at call time so tests/env overrides take effect."""
    secret = os.getenv("AUTH_JWT_SECRET", "dev-secret-change-me")
    audience = os.getenv("AUTH_JWT_AUDIENCE", "authenticated")
    return secret, audience


@dataclass
class AuthUser:
    id: str
    email: Optional[str] = None
    role: str = "authenticated"
    session_id: Optional[str] = None


def verify_jwt(token: str) -> dict:
    secret, audience = _jwt_settings()
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            audience=audience,
            options={"require": ["sub", "exp", "aud"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except jwt.InvalidAudienceError:
        raise AuthenticationError("Invalid token audience")
    except jwt.InvalidTokenError as e:
        raise AuthenticationError(f"Invalid token: {e}")


def extract_user(payload: dict) -> AuthUser:
    return AuthUser(
        id=str(payload["sub"]),
        email=payload.get("email"),
        role=payload.get("role", "authenticated"),
        session_id=payload.get("session_id"),
    )


def require_auth(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthUser:
    if not credentials or not credentials.credentials:
        raise AuthenticationError("Authorization header required")
    return extract_user(verify_jwt(credentials.credentials))
