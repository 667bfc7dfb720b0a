"""
Tests for the Google Business Profile reviews client (httpx.MockTransport, no network).
"""

from datetime import timedelta

import httpx
import pytest

from replifast.google_client import (
    ExternalReview,
    GoogleBusinessClient,
    GoogleBusinessError,
    GoogleErrorType,
    classify_status,
    parse_star_rating,
)
from replifast.utils import utcnow


@pytest.fixture
def anyio_backend():
    return "asyncio"


def _raw(review_id: str, days_old: int = 1, rating: str = "FIVE", reply: str | None = None) -> dict:
    created = (utcnow() - timedelta(days=days_old)).isoformat() + "Z"
    data = {
        "name": f"accounts/123/locations/456/reviews/{review_id}",
        "reviewer": {"displayName": "Sam"},
        "starRating": rating,
        "comment": "Great service",
        "createTime": created,
        "updateTime": created,
    }
    if reply:
        data["reviewReply"] = {"comment": reply, "updateTime": created}
    return data


def _client(handler, refresh=None) -> GoogleBusinessClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GoogleBusinessClient("accounts/123", "locations/456", "token-1", refresh_callback=refresh, http_client=http)


def test_classify_status():
    assert classify_status(401) == GoogleErrorType.CONNECTION_EXPIRED
    assert classify_status(403) == GoogleErrorType.INSUFFICIENT_PERMISSIONS
    assert classify_status(404) == GoogleErrorType.LOCATION_NOT_FOUND
    assert classify_status(429) == GoogleErrorType.API_RATE_LIMIT
    assert classify_status(503) == GoogleErrorType.API_UNAVAILABLE
    assert classify_status(418) == GoogleErrorType.UNKNOWN_ERROR


def test_error_flags():
    assert GoogleBusinessError("x", status_code=401).requires_reauth
    assert not GoogleBusinessError("x", status_code=401).is_retryable
    assert GoogleBusinessError("x", status_code=429).is_retryable
    assert not GoogleBusinessError("x", status_code=404).requires_reauth


def test_parse_star_rating():
    assert parse_star_rating("ONE") == 1
    assert parse_star_rating("four") == 4
    assert parse_star_rating(3) == 3
    assert parse_star_rating("STAR_RATING_UNSPECIFIED") == 5
    assert parse_star_rating(None) == 5


def test_external_review_from_api():
    review = ExternalReview.from_api(_raw("abc", rating="TWO", reply="Thanks!"))
    assert review.review_id == "abc"
    assert review.rating == 2
    assert review.reviewer_name == "Sam"
    assert review.reply_comment == "Thanks!"
    assert review.create_time is not None and review.create_time.tzinfo is None


@pytest.mark.anyio
async def test_paging_follows_next_token():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if "pageToken" not in request.url.params:
            return httpx.Response(200, json={"reviews": [_raw("r1"), _raw("r2")], "nextPageToken": "p2"})
        return httpx.Response(200, json={"reviews": [_raw("r3")]})

    client = _client(handler)
    reviews = await client.fetch_reviews(max_count=50)
    assert [r.review_id for r in reviews] == ["r1", "r2", "r3"]
    assert len(calls) == 2
    assert calls[0].url.path == "/v4/accounts/123/locations/456/reviews"
    assert calls[0].headers["Authorization"] == "Bearer token-1"


@pytest.mark.anyio
async def test_max_count_stops_paging():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"reviews": [_raw(f"r{i}") for i in range(10)], "nextPageToken": "more"})

    reviews = await _client(handler).fetch_reviews(max_count=10)
    assert len(reviews) == 10


@pytest.mark.anyio
async def test_window_stops_after_too_many_old_reviews():
    pages = {
        None: {"reviews": [_raw("new1"), *[_raw(f"old{i}", days_old=60) for i in range(5)]], "nextPageToken": "p2"},
        "p2": {"reviews": [_raw("never")]},
    }

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=pages[request.url.params.get("pageToken")])

    reviews = await _client(handler).fetch_reviews(window_cutoff=utcnow() - timedelta(days=30), max_count=50)
    assert [r.review_id for r in reviews] == ["new1"]


@pytest.mark.anyio
async def test_401_refreshes_once_and_retries():
    seen_tokens = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_tokens.append(request.headers["Authorization"])
        if request.headers["Authorization"] == "Bearer token-1":
            return httpx.Response(401, json={"error": {"message": "expired"}})
        return httpx.Response(200, json={"reviews": [_raw("r1")]})

    async def refresh() -> str:
        return "token-2"

    reviews = await _client(handler, refresh=refresh).fetch_reviews()
    assert [r.review_id for r in reviews] == ["r1"]
    assert seen_tokens == ["Bearer token-1", "Bearer token-2"]


@pytest.mark.anyio
async def test_error_response_raises_classified_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": {"message": "Location not found"}})

    with pytest.raises(GoogleBusinessError) as exc_info:
        await _client(handler).fetch_reviews()
    assert exc_info.value.error_type == GoogleErrorType.LOCATION_NOT_FOUND
    assert "Location not found" in str(exc_info.value)


@pytest.mark.anyio
async def test_network_error_is_wrapped():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GoogleBusinessError) as exc_info:
        await _client(handler).fetch_reviews()
    assert exc_info.value.error_type == GoogleErrorType.NETWORK_ERROR
    assert exc_info.value.is_retryable


@pytest.mark.anyio
async def test_post_reply_puts_comment():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["method"] = request.method
        captured["path"] = request.url.path
        captured["body"] = request.content
        return httpx.Response(200, json={"comment": "Thanks!"})

    await _client(handler).post_reply("abc", "Thanks!")
    assert captured["method"] == "PUT"
    assert captured["path"].endswith("/reviews/abc/reply")
    assert b'"comment"' in captured["body"]

    await _client(handler).update_reply("abc", "Edited reply")
    assert captured["path"].endswith("/reviews/abc/reply")
    assert b"Edited reply" in captured["body"]


@pytest.mark.anyio
async def test_non_json_success_body_raises_classified_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>proxy</html>")

    with pytest.raises(GoogleBusinessError) as exc_info:
        await _client(handler).post_reply("abc", "Thanks!")
    assert exc_info.value.error_type == GoogleErrorType.UNKNOWN_ERROR
    assert "non-JSON" in str(exc_info.value)
