"""
Wiring for the review pipeline: every repository and service bound to one AsyncSession.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import AsyncIterator, Callable, Optional

import httpx
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from replifast.config import get_settings
from replifast.database import get_db, session_scope
from replifast.models import Business, BusinessSettings, TriggerType
from replifast.plans import Entitlements
from replifast.repositories import (
    ActivityRepository,
    AutomationRunRepository,
    BusinessRepository,
    ReviewRepository,
    SubscriptionRepository,
)
from replifast.services.ai_service import AIService, create_ai_service
from replifast.services.automation_service import AutomationContext, AutomationResult, AutomationService
from replifast.services.email_service import AutomationNotifier
from replifast.services.health_service import HealthTracker
from replifast.services.reply_service import ReplyService
from replifast.services.review_sync_service import INCREMENTAL_OPTIONS, ReviewSyncService, SyncResult
from replifast.services.subscription_service import SubscriptionService
from replifast.services.token_service import CredentialStore
from replifast.utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    businesses: BusinessRepository
    reviews: ReviewRepository
    activities: ActivityRepository
    runs: AutomationRunRepository
    credentials: CredentialStore
    sync: ReviewSyncService
    replies: ReplyService
    automation: AutomationService
    health: HealthTracker
    subscriptions: SubscriptionService
    session: Optional[AsyncSession] = None

    async def commit(self) -> None:
        """End the unit of work early; later steps continue in a new transaction."""
        if self.session is not None:
            await self.session.commit()


def assemble_pipeline(
    businesses: BusinessRepository,
    reviews: ReviewRepository,
    activities: ActivityRepository,
    runs: AutomationRunRepository,
    subscriptions: SubscriptionRepository,
    http_client: Optional[httpx.AsyncClient] = None,
    ai_factory: Callable[[], AIService] = create_ai_service,
    notifier: Optional[AutomationNotifier] = None,
) -> Pipeline:
    credentials = CredentialStore(businesses, http_client=http_client)
    replies = ReplyService(reviews, ai_factory=ai_factory)
    automation = AutomationService(businesses, reviews, activities, replies, credentials, notifier=notifier)
    return Pipeline(
        businesses=businesses,
        reviews=reviews,
        activities=activities,
        runs=runs,
        credentials=credentials,
        sync=ReviewSyncService(businesses, reviews, activities, credentials),
        replies=replies,
        automation=automation,
        health=HealthTracker(businesses, reviews, runs, activities, automation),
        subscriptions=SubscriptionService(subscriptions, reviews),
    )


def build_pipeline(db: AsyncSession, http_client: Optional[httpx.AsyncClient] = None) -> Pipeline:
    pipeline = assemble_pipeline(
        businesses=BusinessRepository(db),
        reviews=ReviewRepository(db),
        activities=ActivityRepository(db),
        runs=AutomationRunRepository(db),
        subscriptions=SubscriptionRepository(db),
        http_client=http_client,
    )
    pipeline.session = db
    return pipeline


async def get_pipeline(db: AsyncSession = Depends(get_db)) -> Pipeline:
    """FastAPI dependency: pipeline bound to the request session."""
    return build_pipeline(db)


@asynccontextmanager
async def pipeline_scope() -> AsyncIterator[Pipeline]:
    """A pipeline on its own session; commits on success, rolls back on error."""
    async with session_scope() as db:
        yield build_pipeline(db)


async def load_candidates(
    pipeline: Pipeline,
    business_id: uuid.UUID,
    trigger_type: TriggerType,
) -> list:
    """Automation candidates; scheduled runs only look at reviews that arrived recently."""
    settings = get_settings()
    created_since = None
    if trigger_type == TriggerType.SCHEDULED:
        created_since = utcnow() - timedelta(hours=settings.scheduled_review_window_hours)
    return await pipeline.reviews.list_automation_candidates(
        business_id, limit=settings.automation_batch_cap, created_since=created_since
    )


async def run_business_pass(
    pipeline: Pipeline,
    business: Business,
    business_settings: BusinessSettings,
    user_id: uuid.UUID,
    entitlements: Entitlements,
    trigger_type: TriggerType,
    slot_id: Optional[str] = None,
) -> tuple[SyncResult, Optional[AutomationResult]]:
    """
    Incremental sync, then automation when the sync produced something usable.
    A fatal sync is recorded with the health tracker as a failed run; otherwise
    the automation result is, unless automation is disabled.
    """
    sync_result = await pipeline.sync.sync(
        business.id,
        time_period=INCREMENTAL_OPTIONS.time_period,
        review_count=INCREMENTAL_OPTIONS.review_count,
        business=business,
    )
    if sync_result.fatal:
        logger.warning(f"Sync failed for business {business.id}, skipping automation: {sync_result.errors}")
        await pipeline.health.record_failed_pass(
            business.id,
            step="sync",
            error="; ".join(sync_result.errors) or sync_result.message,
            slot_id=slot_id,
            trigger_type=trigger_type,
        )
        return sync_result, None

    # Sync is committed on its own; the businesses row is unlocked before automation
    await pipeline.commit()

    candidates = await load_candidates(pipeline, business.id, trigger_type)
    automation_result = await pipeline.automation.process_automation(AutomationContext(
        business=business,
        settings=business_settings,
        user_id=user_id,
        reviews=candidates,
        entitlements=entitlements,
        slot_id=slot_id,
        trigger_type=trigger_type,
    ))
    if sync_result.requires_reauth:
        automation_result.requires_reauth = True
    if not automation_result.automation_disabled:
        await pipeline.health.record_run(business.id, automation_result, slot_id=slot_id, trigger_type=trigger_type)
    return sync_result, automation_result
