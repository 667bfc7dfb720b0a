"""
Token Service — Google OAuth credential storage and automatic refresh.
Tokens are Fernet-encrypted at rest; access tokens are refreshed shortly
before expiry and on demand when Google answers 401.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx

from replifast.config import get_settings
from replifast.crypto import decrypt_value, encrypt_value
from replifast.google_client import (
    GoogleBusinessClient,
    GoogleBusinessError,
    GoogleErrorType,
    create_google_client,
)
from replifast.models import Business, ConnectionStatus
from replifast.repositories import BusinessRepository
from replifast.utils import utcnow

logger = logging.getLogger(__name__)

TOKEN_URL = "https://oauth2.googleapis.com/token"

# Refresh 5 minutes before actual expiry to avoid race conditions
REFRESH_BUFFER = timedelta(minutes=5)


class CredentialError(GoogleBusinessError):
    """Stored credentials are missing or could not be refreshed. The user must reconnect."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, status_code=status_code, error_type=GoogleErrorType.TOKEN_REFRESH_FAILED)


async def refresh_access_token(
    client_id: str,
    client_secret: str,
    refresh_token: str,
    http_client: Optional[httpx.AsyncClient] = None,
) -> dict:
    """
    Exchange a refresh token for a new access token at Google's token endpoint.
    Returns dict with access_token, expires_in, token_type (and sometimes refresh_token).
    """
    data = {
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
        "client_id": client_id,
        "client_secret": client_secret,
    }
    headers = {"Content-Type": "application/x-www-form-urlencoded"}
    if http_client is not None:
        response = await http_client.post(TOKEN_URL, data=data, headers=headers, timeout=30)
    else:
        async with httpx.AsyncClient() as client:
            response = await client.post(TOKEN_URL, data=data, headers=headers, timeout=30)
    response.raise_for_status()
    return response.json()


def _make_aware(dt: datetime) -> datetime:
    """Ensure a datetime is timezone-aware (UTC). DB returns naive datetimes."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _token_is_expired(business: Business) -> bool:
    if not business.google_token_expires_at:
        # No expiry tracked, refresh if we can
        return business.google_refresh_token is not None
    expires_at = _make_aware(business.google_token_expires_at)
    return datetime.now(timezone.utc) >= (expires_at - REFRESH_BUFFER)


class CredentialStore:
    """Per-business Google OAuth tokens: storage, refresh-on-expiry, client construction."""

    def __init__(self, businesses: BusinessRepository, http_client: Optional[httpx.AsyncClient] = None):
        self.businesses = businesses
        self._http = http_client
        self._settings = get_settings()

    def has_credentials(self, business: Business) -> bool:
        return bool(business.google_refresh_token) and business.is_connected

    async def store_tokens(
        self,
        business: Business,
        access_token: str,
        refresh_token: Optional[str],
        expires_in: int,
        account_id: str,
        location_id: str,
    ) -> None:
        """Persist a completed OAuth connection. The location reference is only set together with connected."""
        business.google_access_token = encrypt_value(access_token)
        if refresh_token:
            business.google_refresh_token = encrypt_value(refresh_token)
        business.google_token_expires_at = utcnow() + timedelta(seconds=expires_in)
        business.google_account_id = account_id
        business.google_location_id = location_id
        await self.businesses.set_connection_status(business, ConnectionStatus.CONNECTED)
        logger.info(f"Stored Google credentials for business {business.id}")

    async def force_refresh(self, business: Business) -> str:
        """Refresh now, regardless of expiry. Downgrades the business on failure."""
        refresh_token = decrypt_value(business.google_refresh_token)
        if not refresh_token:
            await self.businesses.set_connection_status(business, ConnectionStatus.NEEDS_RECONNECTION)
            raise CredentialError("No refresh token stored. Please reconnect your Google Business Profile.")
        if not self._settings.google_client_id or not self._settings.google_client_secret:
            raise CredentialError("Google OAuth client is not configured (GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET).")

        logger.info(f"Refreshing Google access token for business {business.id}")
        try:
            token_data = await refresh_access_token(
                client_id=self._settings.google_client_id,
                client_secret=self._settings.google_client_secret,
                refresh_token=refresh_token,
                http_client=self._http,
            )
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Token refresh failed for business {business.id}: {e.response.status_code} {e.response.text}"
            )
            await self.businesses.set_connection_status(business, ConnectionStatus.NEEDS_RECONNECTION)
            raise CredentialError(
                "Google connection expired. Please reconnect your Google Business Profile.",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Token refresh failed for business {business.id}: {e}")
            await self.businesses.set_connection_status(business, ConnectionStatus.NEEDS_RECONNECTION)
            raise CredentialError(f"Token refresh failed: {e}") from e
        except ValueError as e:
            logger.error(f"Token refresh for business {business.id} returned a non-JSON body")
            raise CredentialError("Token refresh failed: unreadable response from Google.") from e

        access_token = token_data.get("access_token") if isinstance(token_data, dict) else None
        if not access_token:
            logger.error(f"Token refresh for business {business.id} returned no access_token")
            raise CredentialError("Token refresh failed: Google returned no access token.")
        expires_in = token_data.get("expires_in", 3600)
        business.google_access_token = encrypt_value(access_token)
        business.google_token_expires_at = utcnow() + timedelta(seconds=expires_in)
        if token_data.get("refresh_token"):
            business.google_refresh_token = encrypt_value(token_data["refresh_token"])
        await self.businesses.save(business)
        logger.info(f"Token refreshed for business {business.id}, expires in {expires_in}s")
        return access_token

    async def get_access_token(self, business: Business) -> str:
        """Return a usable access token, refreshing it first when expired or about to expire."""
        if _token_is_expired(business):
            return await self.force_refresh(business)
        token = decrypt_value(business.google_access_token)
        if not token:
            return await self.force_refresh(business)
        return token

    async def get_client(self, business: Business) -> GoogleBusinessClient:
        """
        Reviews client with a guaranteed fresh access token.
        This is the main entry point; use this instead of create_google_client directly.
        """
        if not business.google_account_id or not business.google_location_id:
            raise CredentialError("Business has no connected Google location.")
        access_token = await self.get_access_token(business)

        async def _refresh() -> str:
            return await self.force_refresh(business)

        return create_google_client(
            account_id=business.google_account_id,
            location_id=business.google_location_id,
            access_token=access_token,
            refresh_callback=_refresh,
            http_client=self._http,
        )
