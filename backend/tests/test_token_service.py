"""
Tests for Google credential storage and refresh.
"""

import os
from datetime import timedelta
from unittest.mock import patch

import httpx
import pytest

from replifast.config import get_settings
from replifast.models import ConnectionStatus
from replifast.services.token_service import CredentialError, CredentialStore
from replifast.utils import utcnow

from fakes import FakeBusinessRepository, make_business


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def oauth_client():
    with patch.dict(os.environ, {"GOOGLE_CLIENT_ID": "cid", "GOOGLE_CLIENT_SECRET": "csecret"}, clear=False):
        get_settings.cache_clear()
        yield
    get_settings.cache_clear()


def _store(business, handler) -> CredentialStore:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CredentialStore(FakeBusinessRepository([business]), http_client=http)


def test_has_credentials_requires_connected_location():
    business = make_business()
    store = CredentialStore(FakeBusinessRepository([business]))
    assert store.has_credentials(business)
    business.connection_status = ConnectionStatus.NEEDS_RECONNECTION.value
    assert not store.has_credentials(business)
    business.connection_status = ConnectionStatus.CONNECTED.value
    business.google_refresh_token = None
    assert not store.has_credentials(business)


@pytest.mark.anyio
async def test_fresh_token_is_used_without_refresh(oauth_client):
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("token endpoint should not be called")

    business = make_business(google_token_expires_at=utcnow() + timedelta(hours=1))
    assert await _store(business, handler).get_access_token(business) == "access-token"


@pytest.mark.anyio
async def test_expired_token_is_refreshed(oauth_client):
    def handler(request: httpx.Request) -> httpx.Response:
        assert b"grant_type=refresh_token" in request.content
        return httpx.Response(200, json={"access_token": "new-access", "expires_in": 3600})

    business = make_business(google_token_expires_at=utcnow() - timedelta(minutes=1))
    token = await _store(business, handler).get_access_token(business)
    assert token == "new-access"
    assert business.google_token_expires_at > utcnow() + timedelta(minutes=50)


@pytest.mark.anyio
async def test_token_inside_refresh_buffer_is_refreshed(oauth_client):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"access_token": "new-access", "expires_in": 3600})

    business = make_business(google_token_expires_at=utcnow() + timedelta(minutes=2))
    assert await _store(business, handler).get_access_token(business) == "new-access"


@pytest.mark.anyio
async def test_refresh_failure_marks_business_for_reconnection(oauth_client):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "invalid_grant"})

    business = make_business(google_token_expires_at=utcnow() - timedelta(minutes=1))
    with pytest.raises(CredentialError) as exc_info:
        await _store(business, handler).get_access_token(business)
    assert exc_info.value.requires_reauth
    assert business.connection_status == ConnectionStatus.NEEDS_RECONNECTION.value


@pytest.mark.anyio
async def test_missing_refresh_token_raises(oauth_client):
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("token endpoint should not be called")

    business = make_business(google_refresh_token=None, google_token_expires_at=utcnow() - timedelta(minutes=1))
    with pytest.raises(CredentialError):
        await _store(business, handler).force_refresh(business)
    assert business.connection_status == ConnectionStatus.NEEDS_RECONNECTION.value


@pytest.mark.anyio
async def test_store_tokens_connects_business():
    business = make_business(
        connection_status=ConnectionStatus.CONNECTING.value,
        google_account_id=None,
        google_location_id=None,
    )
    store = CredentialStore(FakeBusinessRepository([business]))
    await store.store_tokens(business, "acc", "ref", 3600, "accounts/1", "locations/2")
    assert business.connection_status == ConnectionStatus.CONNECTED.value
    assert business.google_location_id == "locations/2"
    assert store.has_credentials(business)


@pytest.mark.anyio
async def test_refresh_without_access_token_is_a_credential_error(oauth_client):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"token_type": "Bearer", "expires_in": 3600})

    business = make_business(google_token_expires_at=utcnow() - timedelta(minutes=1))
    with pytest.raises(CredentialError, match="no access token"):
        await _store(business, handler).get_access_token(business)
    assert business.google_access_token == "access-token"
