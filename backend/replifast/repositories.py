"""
Persistence layer for the review pipeline.

Each repository wraps an injected AsyncSession; nothing here commits it.
Callers decide the unit of work (request via get_db, or a cron scope). The
automation lease is the one exception: it uses short sessions of its own.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update, func, and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from replifast.database import async_session
from replifast.models import (
    ActivityLog,
    AutomationLease,
    AutomationRun,
    Business,
    BusinessSettings,
    ConnectionStatus,
    Review,
    ReviewStatus,
    Subscription,
)
from replifast.utils import utcnow

logger = logging.getLogger(__name__)


class BusinessRepository:
    def __init__(self, db: AsyncSession, lease_sessions: async_sessionmaker = async_session):
        self.db = db
        # The lease lives in its own short transactions, never in the caller's
        self.lease_sessions = lease_sessions

    async def get(self, business_id: uuid.UUID) -> Optional[Business]:
        return await self.db.get(Business, business_id)

    async def get_for_user(self, business_id: uuid.UUID, user_id: uuid.UUID) -> Optional[Business]:
        result = await self.db.execute(
            select(Business).where(Business.id == business_id, Business.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_settings(self, business_id: uuid.UUID) -> Optional[BusinessSettings]:
        result = await self.db.execute(
            select(BusinessSettings).where(BusinessSettings.business_id == business_id)
        )
        return result.scalar_one_or_none()

    async def list_slot_candidates(self, slot_id: str) -> list[tuple[Business, BusinessSettings]]:
        """Connected businesses with auto sync enabled for the given slot."""
        result = await self.db.execute(
            select(Business, BusinessSettings)
            .join(BusinessSettings, BusinessSettings.business_id == Business.id)
            .where(
                BusinessSettings.auto_sync_enabled.is_(True),
                BusinessSettings.auto_sync_slot == slot_id,
                Business.connection_status == ConnectionStatus.CONNECTED.value,
                Business.google_location_id.is_not(None),
            )
        )
        return [(row[0], row[1]) for row in result.all()]

    async def mark_synced(self, business: Business, when: Optional[datetime] = None) -> None:
        business.last_review_sync = when or utcnow()
        await self.db.flush()

    async def mark_backfill_complete(self, business: Business) -> None:
        business.initial_backfill_complete = True
        await self.db.flush()

    async def set_connection_status(self, business: Business, status: ConnectionStatus) -> None:
        business.connection_status = status.value
        business.last_connection_attempt = utcnow()
        await self.db.flush()

    async def save(self, business: Business) -> None:
        await self.db.flush()

    async def acquire_lease(self, business_id: uuid.UUID, owner: str, ttl_seconds: int) -> bool:
        """
        Take the per-business automation lease if it is free or expired.
        Single conditional UPDATE, so two passes can never both win. Committed
        at once, so a concurrent pass sees it and defers instead of waiting.
        """
        async with self.lease_sessions() as session:
            if await session.get(AutomationLease, business_id) is None:
                session.add(AutomationLease(business_id=business_id))
                try:
                    await session.commit()
                except IntegrityError:
                    # Row created by a concurrent pass
                    await session.rollback()

            now = utcnow()
            result = await session.execute(
                update(AutomationLease)
                .where(
                    AutomationLease.business_id == business_id,
                    or_(AutomationLease.expires_at.is_(None), AutomationLease.expires_at < now),
                )
                .values(owner=owner, expires_at=now + timedelta(seconds=ttl_seconds))
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        return result.rowcount == 1

    async def release_lease(self, business_id: uuid.UUID, owner: str) -> None:
        """Clear the lease if this pass still owns it. A crashed pass leaves it to expire."""
        async with self.lease_sessions() as session:
            await session.execute(
                update(AutomationLease)
                .where(AutomationLease.business_id == business_id, AutomationLease.owner == owner)
                .values(owner=None, expires_at=None)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def save_settings(self, settings: BusinessSettings) -> None:
        await self.db.flush()


class ReviewRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    def savepoint(self):
        """SAVEPOINT context: a failed row rolls back alone, the outer transaction survives."""
        return self.db.begin_nested()

    async def get_by_external_id(self, business_id: uuid.UUID, google_review_id: str) -> Optional[Review]:
        result = await self.db.execute(
            select(Review).where(
                Review.business_id == business_id,
                Review.google_review_id == google_review_id,
            )
        )
        return result.scalar_one_or_none()

    async def add(self, review: Review) -> Review:
        self.db.add(review)
        await self.db.flush()
        return review

    async def save(self, review: Review) -> None:
        review.updated_at = utcnow()
        await self.db.flush()

    async def list_automation_candidates(
        self,
        business_id: uuid.UUID,
        limit: int,
        created_since: Optional[datetime] = None,
    ) -> list[Review]:
        """Pending, never-automated, non-quarantined reviews, oldest first."""
        conditions = [
            Review.business_id == business_id,
            Review.status == ReviewStatus.PENDING.value,
            Review.automated_reply.is_(False),
            Review.automation_failed.is_(False),
        ]
        if created_since is not None:
            conditions.append(Review.created_at >= created_since)
        result = await self.db.execute(
            select(Review).where(and_(*conditions)).order_by(Review.created_at.asc()).limit(limit)
        )
        return list(result.scalars().all())

    async def list_failed(self, business_id: uuid.UUID, limit: int) -> list[Review]:
        result = await self.db.execute(
            select(Review)
            .where(Review.business_id == business_id, Review.automation_failed.is_(True))
            .order_by(Review.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def recent_ai_replies(self, business_id: uuid.UUID, limit: int = 20) -> list[str]:
        result = await self.db.execute(
            select(Review.ai_reply)
            .where(Review.business_id == business_id, Review.ai_reply.is_not(None))
            .order_by(Review.updated_at.desc())
            .limit(limit)
        )
        return [r for r in result.scalars().all() if r]

    async def count_posted_since(self, business_id: uuid.UUID, since: datetime) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(Review).where(
                Review.business_id == business_id,
                Review.status == ReviewStatus.POSTED.value,
                Review.posted_at >= since,
                Review.ai_reply.is_not(None),
            )
        )
        return result.scalar() or 0


class ActivityRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: str,
        category: str,
        description: str,
        business_id: Optional[uuid.UUID] = None,
        details: Optional[dict] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        status: str = "success",
    ) -> ActivityLog:
        entry = ActivityLog(
            business_id=business_id,
            action=action,
            category=category,
            description=description,
            details=details,
            entity_type=entity_type,
            entity_id=entity_id,
            status=status,
            created_at=utcnow(),
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def recent(self, business_id: uuid.UUID, categories: Optional[list[str]] = None, limit: int = 10) -> list[ActivityLog]:
        query = select(ActivityLog).where(ActivityLog.business_id == business_id)
        if categories:
            query = query.where(ActivityLog.category.in_(categories))
        result = await self.db.execute(query.order_by(ActivityLog.created_at.desc()).limit(limit))
        return list(result.scalars().all())


class AutomationRunRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(self, run: AutomationRun) -> AutomationRun:
        self.db.add(run)
        await self.db.flush()
        return run

    async def recent(self, business_id: uuid.UUID, limit: int = 7) -> list[AutomationRun]:
        """Most recent runs, newest first."""
        result = await self.db.execute(
            select(AutomationRun)
            .where(AutomationRun.business_id == business_id)
            .order_by(AutomationRun.completed_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


class SubscriptionRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_for_user(self, user_id: uuid.UUID) -> Optional[Subscription]:
        result = await self.db.execute(
            select(Subscription).where(Subscription.user_id == user_id).order_by(Subscription.created_at.desc()).limit(1)
        )
        return result.scalar_one_or_none()
