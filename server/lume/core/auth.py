from __future__ import annotations
from typing import Any, Dict, Optional

import jwt  # PyJWT
from fastapi import Request

from lume.config import get_settings
from lume.errors import Forbidden


class AuthUser(Dict[str, Any]):
    """Minimal user payload extracted from a frontend-issued JWT."""


def verify_bearer_token(request: Request) -> Optional[AuthUser]:
    """
    Best-effort verification of a JWT from Authorization: Bearer <token>.
    - Uses AUTH_SECRET (HS256) to verify the signature.
    - Returns the decoded payload on success, or None if absent/invalid.
    """
    auth = request.headers.get("authorization")
    if not auth or not auth.lower().startswith("bearer "):
        return None

    token = auth.split(" ", 1)[1].strip()
    secret = get_settings().auth_secret
    if not secret:
        return None

    try:
        payload = jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.PyJWTError:
        return None
    if isinstance(payload, dict):
        return AuthUser(payload)
    return None


def get_effective_owner(request: Request) -> Optional[str]:
    """Resolve the owner key for this request.
    Priority:
    1) Authenticated user -> sub or email
    2) Guest ID header 'x-guest-id' provided by the client
    3) None (anonymous)
    """
    user = verify_bearer_token(request)
    if user:
        uid = user.get("sub") or user.get("email")
        if uid:
            return str(uid)
    guest_id = request.headers.get("x-guest-id")
    if guest_id:
        return str(guest_id)
    return None


def ensure_owner(row_owner: Optional[str], owner: Optional[str]) -> None:
    """Rows created anonymously are shared; owned rows only match their owner."""
    if row_owner is not None and row_owner != owner:
        raise Forbidden("Forbidden")
