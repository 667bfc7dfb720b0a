"""
Automation health and recovery for one business.

Keeps the bounded error log on business settings (newest first), records an
immutable AutomationRun per pass (failed passes included), summarises health
from the trailing runs, and re-runs automation for reviews quarantined by a
generation failure.
"""

import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from replifast.config import get_settings
from replifast.models import AutomationRun, Business, BusinessSettings, ConnectionStatus, TriggerType
from replifast.plans import Entitlements
from replifast.repositories import (
    ActivityRepository,
    AutomationRunRepository,
    BusinessRepository,
    ReviewRepository,
)
from replifast.services.automation_service import (
    AutomationContext,
    AutomationResult,
    AutomationService,
    StepError,
)
from replifast.utils import camelize, isoformat, utcnow

logger = logging.getLogger(__name__)

HEALTH_WINDOW_RUNS = 7
ATTENTION_THRESHOLD = 3
CRITICAL_THRESHOLD = 10


@dataclass
class HealthStatus:
    status: str = "healthy"  # healthy | degraded | critical
    recent_failure_count: int = 0
    most_recent_error: Optional[dict] = None
    needs_attention: bool = False
    requires_reauth: bool = False
    last_run_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    runs_considered: int = 0
    issues: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return camelize({
            "status": self.status,
            "recent_failure_count": self.recent_failure_count,
            "most_recent_error": self.most_recent_error,
            "needs_attention": self.needs_attention,
            "requires_reauth": self.requires_reauth,
            "last_run_at": isoformat(self.last_run_at),
            "last_success_at": isoformat(self.last_success_at),
            "runs_considered": self.runs_considered,
            "issues": self.issues,
        })


@dataclass
class RetryResult:
    reset_reviews: int = 0
    automation: Optional[AutomationResult] = None

    def to_dict(self) -> dict:
        return {
            "resetReviews": self.reset_reviews,
            "automation": self.automation.to_dict() if self.automation else None,
        }


class HealthTracker:
    def __init__(
        self,
        businesses: BusinessRepository,
        reviews: ReviewRepository,
        runs: AutomationRunRepository,
        activities: ActivityRepository,
        automation: AutomationService,
        error_log_limit: Optional[int] = None,
    ):
        self.businesses = businesses
        self.reviews = reviews
        self.runs = runs
        self.activities = activities
        self.automation = automation
        self.error_log_limit = error_log_limit or get_settings().automation_error_log_limit

    def _prepend_errors(self, settings: BusinessSettings, entries: list[dict]) -> None:
        # Reassign so the JSON column is flagged dirty
        settings.automation_errors = (entries + list(settings.automation_errors or []))[: self.error_log_limit]

    async def record_failure(
        self,
        business_id: uuid.UUID,
        step: str,
        error: str,
        review_id: Optional[uuid.UUID] = None,
    ) -> None:
        settings = await self.businesses.get_settings(business_id)
        entry = StepError(step=step, error=error, review_id=str(review_id) if review_id else None)
        if settings is not None:
            self._prepend_errors(settings, [entry.to_dict()])
            settings.last_automation_run = utcnow()
            await self.businesses.save_settings(settings)
        else:
            logger.warning(f"No settings for business {business_id}; failure not added to the error log")
        await self.activities.log(
            action="automation_failed",
            category="automation",
            description=f"Automation step '{step}' failed: {error}",
            business_id=business_id,
            details=entry.to_dict(),
            entity_type="business",
            entity_id=str(business_id),
            status="failure",
        )

    async def record_run(
        self,
        business_id: uuid.UUID,
        result: AutomationResult,
        slot_id: Optional[str] = None,
        trigger_type: TriggerType = TriggerType.MANUAL,
    ) -> AutomationRun:
        """Persist the immutable run record and fold its errors into the bounded log."""
        now = utcnow()
        run = await self.runs.add(AutomationRun(
            business_id=business_id,
            slot_id=slot_id,
            trigger_type=trigger_type.value,
            success=result.success,
            processed_reviews=result.processed_reviews,
            generated_replies=result.generated_replies,
            auto_approved=result.auto_approved,
            auto_posted=result.auto_posted,
            emails_sent=result.emails_sent,
            error_count=len(result.errors),
            errors=[e.to_dict() for e in result.errors],
            duration_ms=result.duration_ms,
            started_at=result.started_at,
            completed_at=now,
        ))

        settings = await self.businesses.get_settings(business_id)
        if settings is not None:
            if result.errors:
                # result.errors is oldest first; the log is newest first
                self._prepend_errors(settings, [e.to_dict() for e in reversed(result.errors)])
            settings.last_automation_run = now
            await self.businesses.save_settings(settings)

        await self.activities.log(
            action="automation_run",
            category="automation",
            description=(
                f"Automation ({trigger_type.value}): {result.generated_replies} generated, "
                f"{result.auto_approved} approved, {result.auto_posted} posted, {len(result.errors)} errors"
            ),
            business_id=business_id,
            details={"run_id": str(run.id), "slot_id": slot_id, **result.to_dict()},
            entity_type="run",
            entity_id=str(run.id),
            status="success" if result.success and not result.errors else "failure",
        )
        return run

    async def record_failed_pass(
        self,
        business_id: uuid.UUID,
        step: str,
        error: str,
        slot_id: Optional[str] = None,
        trigger_type: TriggerType = TriggerType.MANUAL,
    ) -> AutomationRun:
        """
        A pass that never reached the engine (fatal sync, timeout, crash).
        Stored as a failed run so get_health counts it like any other.
        """
        result = AutomationResult(success=False)
        result.add_error(step, error)
        logger.warning(f"Recording failed {trigger_type.value} pass for business {business_id}: {step}: {error}")
        return await self.record_run(business_id, result, slot_id=slot_id, trigger_type=trigger_type)

    async def get_health(self, business_id: uuid.UUID, business: Optional[Business] = None) -> HealthStatus:
        settings = await self.businesses.get_settings(business_id)
        runs = await self.runs.recent(business_id, limit=HEALTH_WINDOW_RUNS)
        error_log = list(settings.automation_errors or []) if settings else []

        health = HealthStatus(runs_considered=len(runs))
        health.recent_failure_count = sum(run.error_count or 0 for run in runs)
        health.most_recent_error = error_log[0] if error_log else None
        health.last_run_at = settings.last_automation_run if settings else None
        health.last_success_at = next(
            (run.completed_at for run in runs if run.success and not run.error_count), None
        )
        health.issues = dict(Counter(e.get("step", "unknown") for e in error_log))

        latest_failed = bool(runs) and (runs[0].error_count or 0) >= 1
        health.needs_attention = latest_failed or health.recent_failure_count >= ATTENTION_THRESHOLD

        if business is None:
            business = await self.businesses.get(business_id)
        if business is not None and business.connection_status == ConnectionStatus.NEEDS_RECONNECTION.value:
            health.requires_reauth = True
            health.needs_attention = True

        if health.recent_failure_count > CRITICAL_THRESHOLD:
            health.status = "critical"
        elif health.needs_attention:
            health.status = "degraded"
        return health

    async def retry_failed(
        self,
        business: Business,
        settings: BusinessSettings,
        user_id: uuid.UUID,
        entitlements: Entitlements,
    ) -> RetryResult:
        """
        Reset automation_failed on quarantined reviews and re-run automation for exactly that set.
        Posting failures never quarantine, so they are picked up by normal runs instead.
        """
        failed = await self.reviews.list_failed(business.id, limit=self.automation.batch_cap)
        if not failed:
            logger.info(f"No failed reviews to retry for business {business.id}")
            return RetryResult()

        for review in failed:
            review.automation_failed = False
            review.automation_error = None
            await self.reviews.save(review)
        logger.info(f"Reset {len(failed)} failed reviews for business {business.id}, re-running automation")

        result = await self.automation.process_automation(AutomationContext(
            business=business,
            settings=settings,
            user_id=user_id,
            reviews=failed,
            entitlements=entitlements,
            trigger_type=TriggerType.RETRY,
        ))
        await self.record_run(business.id, result, trigger_type=TriggerType.RETRY)
        return RetryResult(reset_reviews=len(failed), automation=result)

    async def clear_errors(self, business_id: uuid.UUID) -> int:
        """Empty the error log. Review state is left alone."""
        settings = await self.businesses.get_settings(business_id)
        if settings is None:
            return 0
        cleared = len(settings.automation_errors or [])
        settings.automation_errors = []
        await self.businesses.save_settings(settings)
        logger.info(f"Cleared {cleared} automation errors for business {business_id}")
        return cleared
