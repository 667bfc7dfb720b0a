"""
Google Business Profile Reviews Client
Talks to the My Business v4 reviews API over httpx: paged review listing,
reply posting, and error classification. A 401 triggers one token refresh
through an injected callback, then one retry.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import httpx

from replifast.utils import parse_timestamp

logger = logging.getLogger(__name__)

API_BASE = "https://mybusiness.googleapis.com/v4"
MAX_PAGE_SIZE = 50
MIN_PAGE_SIZE = 10
# Reviews older than the window on one page before paging stops
TOO_OLD_STOP = 5

STAR_RATINGS = {"ONE": 1, "TWO": 2, "THREE": 3, "FOUR": 4, "FIVE": 5}


class GoogleErrorType(str, enum.Enum):
    CONNECTION_EXPIRED = "CONNECTION_EXPIRED"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    LOCATION_NOT_FOUND = "LOCATION_NOT_FOUND"
    API_RATE_LIMIT = "API_RATE_LIMIT"
    API_UNAVAILABLE = "API_UNAVAILABLE"
    NETWORK_ERROR = "NETWORK_ERROR"
    TOKEN_REFRESH_FAILED = "TOKEN_REFRESH_FAILED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


_REAUTH_TYPES = {
    GoogleErrorType.CONNECTION_EXPIRED,
    GoogleErrorType.INSUFFICIENT_PERMISSIONS,
    GoogleErrorType.TOKEN_REFRESH_FAILED,
}
_RETRYABLE_TYPES = {
    GoogleErrorType.API_RATE_LIMIT,
    GoogleErrorType.API_UNAVAILABLE,
    GoogleErrorType.NETWORK_ERROR,
    GoogleErrorType.UNKNOWN_ERROR,
}


def classify_status(status_code: Optional[int]) -> GoogleErrorType:
    if status_code == 401:
        return GoogleErrorType.CONNECTION_EXPIRED
    if status_code == 403:
        return GoogleErrorType.INSUFFICIENT_PERMISSIONS
    if status_code == 404:
        return GoogleErrorType.LOCATION_NOT_FOUND
    if status_code == 429:
        return GoogleErrorType.API_RATE_LIMIT
    if status_code is not None and status_code >= 500:
        return GoogleErrorType.API_UNAVAILABLE
    return GoogleErrorType.UNKNOWN_ERROR


class GoogleBusinessError(Exception):
    """Raised when a Google Business Profile call fails."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_type: Optional[GoogleErrorType] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_type = error_type or classify_status(status_code)

    @property
    def requires_reauth(self) -> bool:
        return self.error_type in _REAUTH_TYPES

    @property
    def is_retryable(self) -> bool:
        return self.error_type in _RETRYABLE_TYPES

    @classmethod
    def from_response(cls, response: httpx.Response) -> "GoogleBusinessError":
        detail = response.text
        try:
            body = response.json()
            if isinstance(body, dict) and isinstance(body.get("error"), dict):
                detail = body["error"].get("message") or detail
        except ValueError:
            pass
        return cls(f"Google API error {response.status_code}: {detail}", status_code=response.status_code)


def parse_star_rating(value: Any) -> int:
    """Google sends "ONE".."FIVE"; some payloads carry ints. Unknown values count as 5."""
    if isinstance(value, int) and 1 <= value <= 5:
        return value
    if isinstance(value, str):
        if value.isdigit() and 1 <= int(value) <= 5:
            return int(value)
        return STAR_RATINGS.get(value.upper(), 5)
    return 5


def _strip_prefix(value: str, prefix: str) -> str:
    return value[len(prefix):] if value.startswith(prefix) else value


@dataclass
class ExternalReview:
    """One review as returned by Google, normalised."""
    review_id: str
    reviewer_name: str
    rating: int
    comment: str
    create_time: Optional[datetime] = None
    update_time: Optional[datetime] = None
    reviewer_photo_url: Optional[str] = None
    reply_comment: Optional[str] = None
    reply_update_time: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: dict) -> "ExternalReview":
        reviewer = data.get("reviewer") or {}
        reply = data.get("reviewReply") or {}
        return cls(
            review_id=data.get("reviewId") or (data.get("name") or "").rsplit("/", 1)[-1],
            reviewer_name=reviewer.get("displayName") or "Anonymous",
            reviewer_photo_url=reviewer.get("profilePhotoUrl"),
            rating=parse_star_rating(data.get("starRating")),
            comment=data.get("comment") or "",
            create_time=parse_timestamp(data.get("createTime")),
            update_time=parse_timestamp(data.get("updateTime")),
            reply_comment=reply.get("comment") or None,
            reply_update_time=parse_timestamp(reply.get("updateTime")),
        )


class GoogleBusinessClient:
    """
    Reviews API wrapper for one Google location.
    refresh_callback returns a fresh access token; it is used once per request on 401.
    """

    def __init__(
        self,
        account_id: str,
        location_id: str,
        access_token: str,
        refresh_callback: Optional[Callable[[], Awaitable[str]]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.account_id = _strip_prefix(account_id, "accounts/")
        self.location_id = _strip_prefix(location_id, "locations/")
        self.access_token = access_token
        self._refresh_callback = refresh_callback
        self._http = http_client
        self.timeout = timeout

    @property
    def reviews_url(self) -> str:
        return f"{API_BASE}/accounts/{self.account_id}/locations/{self.location_id}/reviews"

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    async def _send(self, method: str, url: str, params: Optional[dict] = None, json: Optional[dict] = None) -> httpx.Response:
        try:
            if self._http is not None:
                return await self._http.request(method, url, params=params, json=json, headers=self.headers, timeout=self.timeout)
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.request(method, url, params=params, json=json, headers=self.headers)
        except httpx.TransportError as e:
            raise GoogleBusinessError(
                f"Network error calling Google: {e}", error_type=GoogleErrorType.NETWORK_ERROR
            ) from e

    async def _request(self, method: str, url: str, params: Optional[dict] = None, json: Optional[dict] = None) -> dict:
        response = await self._send(method, url, params=params, json=json)
        if response.status_code == 401 and self._refresh_callback is not None:
            logger.info(f"Google returned 401 for location {self.location_id}, refreshing token and retrying")
            self.access_token = await self._refresh_callback()
            response = await self._send(method, url, params=params, json=json)
        if response.is_error:
            raise GoogleBusinessError.from_response(response)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise GoogleBusinessError(
                f"Google returned a non-JSON response ({response.status_code})",
                status_code=response.status_code,
                error_type=GoogleErrorType.UNKNOWN_ERROR,
            ) from e

    async def fetch_review_page(self, page_size: int = MAX_PAGE_SIZE, page_token: Optional[str] = None) -> dict:
        """Raw page: {"reviews": [...], "nextPageToken": ..., "totalReviewCount": ...}."""
        params = {"pageSize": str(page_size), "orderBy": "updateTime desc"}
        if page_token:
            params["pageToken"] = page_token
        return await self._request("GET", self.reviews_url, params=params)

    async def iter_review_pages(
        self,
        window_cutoff: Optional[datetime] = None,
        max_count: int = 50,
    ) -> AsyncIterator[list[ExternalReview]]:
        """
        Yield pages of reviews newest first, filtered to the window.
        Stops at max_count, at the last page, or after TOO_OLD_STOP reviews older than the cutoff.
        """
        yielded = 0
        page_token = None
        while yielded < max_count:
            page_size = min(MAX_PAGE_SIZE, max(MIN_PAGE_SIZE, max_count - yielded))
            page = await self.fetch_review_page(page_size=page_size, page_token=page_token)
            raw_reviews = page.get("reviews") or []
            if not raw_reviews:
                return

            batch: list[ExternalReview] = []
            too_old = 0
            for raw in raw_reviews:
                review = ExternalReview.from_api(raw)
                if window_cutoff and review.create_time and review.create_time < window_cutoff:
                    too_old += 1
                    if too_old >= TOO_OLD_STOP:
                        break
                    continue
                batch.append(review)
                if yielded + len(batch) >= max_count:
                    break

            if batch:
                yielded += len(batch)
                yield batch

            page_token = page.get("nextPageToken")
            if too_old >= TOO_OLD_STOP or not page_token:
                return

    async def fetch_reviews(self, window_cutoff: Optional[datetime] = None, max_count: int = 50) -> list[ExternalReview]:
        reviews: list[ExternalReview] = []
        async for page in self.iter_review_pages(window_cutoff=window_cutoff, max_count=max_count):
            reviews.extend(page)
        return reviews

    async def post_reply(self, review_id: str, text: str) -> dict:
        """Create or replace the owner reply on a review."""
        logger.info(f"Posting reply to Google review {review_id}")
        return await self._request("PUT", f"{self.reviews_url}/{review_id}/reply", json={"comment": text})

    async def update_reply(self, review_id: str, text: str) -> dict:
        # Google uses the same PUT for create and update
        logger.info(f"Updating reply on Google review {review_id}")
        return await self._request("PUT", f"{self.reviews_url}/{review_id}/reply", json={"comment": text})


def create_google_client(
    account_id: str,
    location_id: str,
    access_token: str,
    refresh_callback: Optional[Callable[[], Awaitable[str]]] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> GoogleBusinessClient:
    """Factory function to create a reviews client for one location."""
    return GoogleBusinessClient(
        account_id=account_id,
        location_id=location_id,
        access_token=access_token,
        refresh_callback=refresh_callback,
        http_client=http_client,
    )
