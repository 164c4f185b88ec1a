"""
Authentication — API-key bearer auth for the operator API.

Include: Authorization: Bearer <API_KEY>
In development with no API_KEY set, auth is skipped for local dev.
Cron endpoints use CRON_SECRET instead (see routers/cron.py).
"""

import hmac
import logging
from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from adpilot.config import get_settings

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


async def require_auth(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
) -> str:
    """Accept the configured API_KEY as a bearer token."""
    settings = get_settings()
    api_key = settings.api_key

    # Dev convenience: skip auth when no key is configured
    if not api_key:
        if settings.is_production:
            raise HTTPException(
                status_code=500,
                detail="Server misconfiguration: API_KEY must be set in production.",
            )
        return "dev-no-auth"

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Missing authorization. Include header: Authorization: Bearer <API_KEY>",
        )

    if not hmac.compare_digest(credentials.credentials, api_key):
        raise HTTPException(status_code=401, detail="Invalid API key.")
    return "api-key"


async def require_cron_secret(
    x_cron_secret: str | None = Header(None, alias="X-Cron-Secret"),
    authorization: str | None = Header(None),
) -> None:
    """Verify a scheduler call carries CRON_SECRET (X-Cron-Secret header or Bearer token)."""
    secret = get_settings().cron_secret
    if not secret:
        raise HTTPException(500, "CRON_SECRET not configured")
    token = x_cron_secret
    if not token and authorization and authorization.startswith("Bearer "):
        token = authorization[7:]
    if not token or not hmac.compare_digest(token, secret):
        raise HTTPException(401, "Invalid cron secret")
