# opportunity_api/auth.py
"""
Admin key check for the policy and lifecycle endpoints.

The key is read from ADMIN_API_KEY on every request. When it is unset the
admin routes refuse everything with 500 instead of opening up.
"""

import logging
import os
import secrets

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

logger = logging.getLogger(__name__)

ADMIN_KEY_HEADER = "X-API-Key"

admin_key_header = APIKeyHeader(
    name=ADMIN_KEY_HEADER,
    auto_error=False,
    description="Admin API key (ADMIN_API_KEY)",
)


def _keys_match(given: str, expected: str) -> bool:
    return secrets.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


def require_admin_key(api_key: str | None = Security(admin_key_header)) -> None:
    """Dependency for admin routers. Returns nothing; raises on refusal."""
    expected = os.getenv("ADMIN_API_KEY")

    if not expected:
        logger.error(
            "Admin request refused: ADMIN_API_KEY is not configured",
            extra={"event": "admin_auth_unconfigured"},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "AuthNotConfigured", "message": "Admin authentication is not configured"},
        )

    if not api_key or not _keys_match(api_key, expected):
        logger.warning(
            f"Admin request refused: {'wrong' if api_key else 'missing'} {ADMIN_KEY_HEADER}",
            extra={"event": "admin_auth_rejected"},
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "Unauthorized", "message": f"Invalid or missing {ADMIN_KEY_HEADER} header"},
            headers={"WWW-Authenticate": "ApiKey"},
        )
