"""
API key authentication for the wallet summary endpoint.

Clients send the shared secret as `Authorization: Bearer <API_SECRET_KEY>`.
"""

import os
import secrets
from typing import Optional

from fastapi import Header, HTTPException

API_SECRET_KEY = os.getenv("API_SECRET_KEY", "")


def check_api_key(authorization: Optional[str], expected: str) -> bool:
    """
    Compare a bearer Authorization header with the expected secret.

    Args:
        authorization: Raw Authorization header value (may be None)
        expected: Configured secret; an empty secret rejects every request

    Returns:
        True if the header carries the expected secret
    """
    if not expected or not authorization or not authorization.startswith("Bearer "):
        return False
    token = authorization[len("Bearer "):].strip()
    return secrets.compare_digest(token, expected)


def require_api_key(authorization: Optional[str] = Header(None)) -> None:
    """
    FastAPI dependency: reject requests without the configured bearer secret.

    Raises:
        HTTPException: 401 if the header is missing or wrong
    """
    if not check_api_key(authorization, API_SECRET_KEY):
        print("[Auth] Rejected request with missing or invalid API key")
        raise HTTPException(status_code=401, detail="Unauthorized")
