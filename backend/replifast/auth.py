"""
Service authentication — API-key bearer auth for the pipeline endpoints,
and the cron secret for scheduler callbacks.

- Programmatic callers: Authorization: Bearer <API_KEY>
- Scheduler: X-Cron-Secret: <CRON_SECRET> (or Authorization: Bearer <CRON_SECRET>)

In development with no API_KEY set, API-key auth is skipped for local dev.
"""

import logging
import secrets
from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from replifast.config import get_settings

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


async def require_auth(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
) -> str:
    """Require the service API key. Returns the key, or "dev-no-auth" in keyless development."""
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
            detail="Missing authorization. Include header: Authorization: Bearer <token>",
        )

    if not secrets.compare_digest(credentials.credentials, api_key):
        raise HTTPException(status_code=401, detail="Invalid API key.")
    return credentials.credentials


async def require_cron_secret(
    x_cron_secret: str | None = Header(None, alias="X-Cron-Secret"),
    authorization: str | None = Header(None),
) -> None:
    """Verify the request came from the scheduler with a valid secret."""
    secret = get_settings().cron_secret
    if not secret:
        raise HTTPException(500, "CRON_SECRET not configured")
    # Accept X-Cron-Secret header or Bearer token
    token = x_cron_secret
    if not token and authorization and authorization.startswith("Bearer "):
        token = authorization[7:]
    if not token or not secrets.compare_digest(token, secret):
        raise HTTPException(401, "Invalid cron secret")
