"""
Review Sync Service — mirrors Google reviews into the local reviews table.

Two modes: a one-time full backfill (widest window, highest count) until the
business has completed one, then incremental syncs with caller options.
Fetched reviews are reconciled by (business, Google review id): new ones are
inserted, changed rating/text is refreshed without touching reply state, and
unchanged ones are skipped. Failures are collected, never raised.
"""

import logging
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Optional

from replifast.google_client import ExternalReview, GoogleBusinessError
from replifast.models import Business, Review, ReviewStatus
from replifast.repositories import ActivityRepository, BusinessRepository, ReviewRepository
from replifast.services.token_service import CredentialStore
from replifast.utils import camelize, isoformat, utcnow

logger = logging.getLogger(__name__)

TIME_PERIODS: dict[str, Optional[timedelta]] = {
    "all": None,
    "7days": timedelta(days=7),
    "30days": timedelta(days=30),
    "3months": timedelta(days=90),
    "6months": timedelta(days=180),
}
REVIEW_COUNTS = (10, 25, 50, 100, 200)


@dataclass(frozen=True)
class FetchOptions:
    time_period: str = "30days"
    review_count: int = 50

    def __post_init__(self):
        if self.time_period not in TIME_PERIODS:
            raise ValueError(f"Invalid timePeriod {self.time_period!r}. Use one of: {', '.join(TIME_PERIODS)}")
        if self.review_count not in REVIEW_COUNTS:
            raise ValueError(f"Invalid reviewCount {self.review_count!r}. Use one of: {', '.join(map(str, REVIEW_COUNTS))}")

    def window_cutoff(self, now: datetime) -> Optional[datetime]:
        delta = TIME_PERIODS[self.time_period]
        return now - delta if delta else None

    def capped(self, max_reviews: int) -> "FetchOptions":
        """Clamp review_count to a plan limit (-1 = unlimited) using the largest allowed count."""
        if max_reviews == -1 or self.review_count <= max_reviews:
            return self
        allowed = [c for c in REVIEW_COUNTS if c <= max_reviews] or [REVIEW_COUNTS[0]]
        return FetchOptions(self.time_period, max(allowed))


BACKFILL_OPTIONS = FetchOptions("all", 200)
INCREMENTAL_OPTIONS = FetchOptions("30days", 50)


@dataclass
class SyncResult:
    success: bool = False
    message: str = ""
    total_fetched: int = 0
    new_reviews: int = 0
    updated_reviews: int = 0
    skipped_reviews: int = 0
    errors: list[str] = field(default_factory=list)
    last_sync_time: Optional[datetime] = None
    fetch_options: Optional[FetchOptions] = None
    backfill: bool = False
    requires_reauth: bool = False

    @property
    def status_code(self) -> int:
        return 200 if self.success else 207

    @property
    def fatal(self) -> bool:
        """Nothing usable came back: no reviews fetched and at least one error."""
        return bool(self.errors) and self.total_fetched == 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["last_sync_time"] = isoformat(self.last_sync_time)
        return camelize(data)


class ReviewSyncService:
    def __init__(
        self,
        businesses: BusinessRepository,
        reviews: ReviewRepository,
        activities: ActivityRepository,
        credentials: CredentialStore,
    ):
        self.businesses = businesses
        self.reviews = reviews
        self.activities = activities
        self.credentials = credentials

    async def sync(
        self,
        business_id: uuid.UUID,
        time_period: str = INCREMENTAL_OPTIONS.time_period,
        review_count: int = INCREMENTAL_OPTIONS.review_count,
        business: Optional[Business] = None,
    ) -> SyncResult:
        """
        Sync one business. Invalid options raise ValueError; everything after
        validation is reported through SyncResult.errors.
        """
        options = FetchOptions(time_period, review_count)
        result = SyncResult(fetch_options=options)

        if business is None:
            business = await self.businesses.get(business_id)
        if business is None:
            result.errors.append("Business not found")
            result.message = "Sync failed: business not found"
            return result

        if not business.initial_backfill_complete:
            logger.info(f"Business {business.id} has no completed backfill, fetching full history")
            options = BACKFILL_OPTIONS
            result.backfill = True
            result.fetch_options = options

        now = utcnow()
        fetched_any = False
        fetch_failed = False
        try:
            client = await self.credentials.get_client(business)
            async for page in client.iter_review_pages(
                window_cutoff=options.window_cutoff(now),
                max_count=options.review_count,
            ):
                fetched_any = True
                for external in page:
                    result.total_fetched += 1
                    await self._reconcile_one(business.id, external, result)
        except GoogleBusinessError as e:
            fetch_failed = True
            result.requires_reauth = e.requires_reauth
            result.errors.append(str(e))
            logger.warning(f"Review fetch failed for business {business.id}: {e}")
        except Exception as e:
            fetch_failed = True
            result.errors.append(f"Unexpected sync error: {e}")
            logger.exception(f"Review sync crashed for business {business.id}")

        if fetched_any or not fetch_failed:
            await self.businesses.mark_synced(business, now)
            result.last_sync_time = now
        if result.backfill and not fetch_failed:
            await self.businesses.mark_backfill_complete(business)
            logger.info(f"Initial backfill complete for business {business.id}")

        result.success = not result.errors
        result.message = (
            f"Synced {result.total_fetched} reviews: {result.new_reviews} new, "
            f"{result.updated_reviews} updated, {result.skipped_reviews} unchanged"
        )
        if result.errors:
            result.message += f" ({len(result.errors)} errors)"
        logger.info(f"Review sync for business {business.id}: {result.message}")

        await self.activities.log(
            action="review_sync",
            category="sync",
            description=result.message,
            business_id=business.id,
            details={
                "backfill": result.backfill,
                "time_period": options.time_period,
                "review_count": options.review_count,
                "new": result.new_reviews,
                "updated": result.updated_reviews,
                "errors": result.errors[:10],
            },
            entity_type="business",
            entity_id=str(business.id),
            status="success" if result.success else "failure",
        )
        return result

    async def _reconcile_one(self, business_id: uuid.UUID, external: ExternalReview, result: SyncResult) -> None:
        """Reconcile one review inside a savepoint so a bad row doesn't poison the batch."""
        try:
            async with self.reviews.savepoint():
                outcome = await self.reconcile(business_id, external)
        except Exception as e:
            logger.error(f"Failed to reconcile review {external.review_id} for business {business_id}: {e}")
            result.errors.append(f"Error processing review {external.review_id}: {e}")
            return
        if outcome == "new":
            result.new_reviews += 1
        elif outcome == "updated":
            result.updated_reviews += 1
        else:
            result.skipped_reviews += 1

    async def reconcile(self, business_id: uuid.UUID, external: ExternalReview) -> str:
        """Insert, refresh content, or skip. Returns "new", "updated", or "skipped"."""
        existing = await self.reviews.get_by_external_id(business_id, external.review_id)
        now = utcnow()

        if existing is None:
            review = Review(
                business_id=business_id,
                google_review_id=external.review_id,
                customer_name=external.reviewer_name,
                customer_avatar_url=external.reviewer_photo_url,
                rating=external.rating,
                review_text=external.comment,
                review_date=external.create_time or now,
                status=ReviewStatus.PENDING.value,
                automated_reply=False,
                auto_approved=False,
                automation_failed=False,
                created_at=now,
                updated_at=now,
            )
            if external.reply_comment:
                # Already answered on Google; never auto-reply to it again
                review.status = ReviewStatus.POSTED.value
                review.final_reply = external.reply_comment
                review.posted_at = external.reply_update_time or now
            await self.reviews.add(review)
            return "new"

        if existing.rating != external.rating or (existing.review_text or "") != external.comment:
            existing.rating = external.rating
            existing.review_text = external.comment
            await self.reviews.save(existing)
            return "updated"

        return "skipped"
