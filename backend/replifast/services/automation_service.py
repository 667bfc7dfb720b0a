"""
Automation Service — decides, review by review, whether to draft a reply,
auto-approve it, and post it to Google.

Per review the steps run strictly in order (eligibility, generation,
approval, posting), each review inside its own error boundary:
  - a generation failure quarantines the review (automation_failed)
  - a posting failure leaves the review approved for a later retry
One pass per business at a time, guarded by an advisory lease (automation_leases).
"""

import logging
import time
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Optional

from replifast.config import get_settings
from replifast.google_client import GoogleBusinessClient, GoogleBusinessError
from replifast.models import Business, BusinessSettings, Review, ReviewStatus, TriggerType
from replifast.plans import Entitlements
from replifast.repositories import ActivityRepository, BusinessRepository, ReviewRepository
from replifast.services.approval_policy import should_auto_approve
from replifast.services.email_service import AutomationNotifier
from replifast.services.reply_service import ReplyService
from replifast.services.token_service import CredentialStore
from replifast.utils import camelize, utcnow

logger = logging.getLogger(__name__)


@dataclass
class StepError:
    step: str  # lease, eligibility, generation, approval, posting, notification, pipeline
    error: str
    review_id: Optional[str] = None
    timestamp: str = field(default_factory=lambda: utcnow().isoformat())

    def to_dict(self) -> dict:
        return camelize(asdict(self))


@dataclass
class AutomationContext:
    business: Business
    settings: BusinessSettings
    user_id: uuid.UUID
    reviews: list[Review]
    entitlements: Entitlements
    slot_id: Optional[str] = None
    trigger_type: TriggerType = TriggerType.MANUAL


@dataclass
class AutomationResult:
    success: bool = True
    processed_reviews: int = 0
    generated_replies: int = 0
    auto_approved: int = 0
    auto_posted: int = 0
    emails_sent: int = 0
    errors: list[StepError] = field(default_factory=list)
    duration_ms: int = 0
    automation_disabled: bool = False
    deferred: bool = False
    requires_reauth: bool = False
    started_at: datetime = field(default_factory=utcnow)

    def add_error(self, step: str, error: str, review_id: Optional[uuid.UUID] = None) -> StepError:
        entry = StepError(step=step, error=error, review_id=str(review_id) if review_id else None)
        self.errors.append(entry)
        return entry

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "processedReviews": self.processed_reviews,
            "generatedReplies": self.generated_replies,
            "autoApproved": self.auto_approved,
            "autoPosted": self.auto_posted,
            "emailsSent": self.emails_sent,
            "errors": [e.to_dict() for e in self.errors],
            "durationMs": self.duration_ms,
            "automationDisabled": self.automation_disabled,
            "deferred": self.deferred,
            "requiresReauth": self.requires_reauth,
        }


@dataclass
class _PassState:
    """Mutable bookkeeping for one pass."""
    avoid_phrases: list[str]
    replies_remaining: Optional[int]
    client: Optional[GoogleBusinessClient] = None
    posting_blocked: bool = False
    awaiting_approval: int = 0


def is_eligible(review: Review) -> bool:
    """
    Only pending reviews that were never automated and are not quarantined.
    Every ReviewStatus must be handled here; a new status raises until it is.
    """
    status = ReviewStatus(review.status)
    if status is ReviewStatus.PENDING:
        return not review.automated_reply and not review.automation_failed
    if status is ReviewStatus.APPROVED:
        return False
    if status is ReviewStatus.POSTED:
        return False
    if status is ReviewStatus.NEEDS_EDIT:
        return False
    if status is ReviewStatus.SKIPPED:
        return False
    raise ValueError(f"Unhandled review status: {status!r}")


def _opener(text: str) -> Optional[str]:
    words = text.lower().split()
    return " ".join(words[:4]) if len(words) >= 4 else None


class AutomationService:
    def __init__(
        self,
        businesses: BusinessRepository,
        reviews: ReviewRepository,
        activities: ActivityRepository,
        replies: ReplyService,
        credentials: CredentialStore,
        notifier: Optional[AutomationNotifier] = None,
        batch_cap: Optional[int] = None,
        lease_seconds: Optional[int] = None,
    ):
        settings = get_settings()
        self.businesses = businesses
        self.reviews = reviews
        self.activities = activities
        self.replies = replies
        self.credentials = credentials
        self.notifier = notifier or AutomationNotifier()
        self.batch_cap = batch_cap or settings.automation_batch_cap
        self.lease_seconds = lease_seconds or settings.automation_lease_seconds

    async def process_automation(self, context: AutomationContext) -> AutomationResult:
        start = time.monotonic()
        result = AutomationResult()
        business = context.business
        s = context.settings

        if not s.auto_reply_enabled and not s.auto_post_enabled:
            logger.info(f"Automation disabled for business {business.id}, nothing to do")
            result.automation_disabled = True
            result.duration_ms = int((time.monotonic() - start) * 1000)
            return result
        if s.auto_post_enabled and not s.auto_reply_enabled:
            logger.warning(
                f"Business {business.id} has auto-post without auto-reply; only reviews with an existing draft can be posted"
            )

        lease_owner = uuid.uuid4().hex
        if not await self.businesses.acquire_lease(business.id, lease_owner, self.lease_seconds):
            logger.warning(f"Automation already running for business {business.id}, deferring this pass")
            result.success = False
            result.deferred = True
            result.add_error("lease", "Another automation pass is already running for this business")
            result.duration_ms = int((time.monotonic() - start) * 1000)
            return result

        try:
            await self._run(context, result)
        except Exception as e:
            logger.exception(f"Automation pass crashed for business {business.id}")
            result.success = False
            result.add_error("pipeline", str(e))
        finally:
            await self.businesses.release_lease(business.id, lease_owner)
            result.duration_ms = int((time.monotonic() - start) * 1000)

        logger.info(
            f"Automation for business {business.id}: processed={result.processed_reviews} "
            f"generated={result.generated_replies} approved={result.auto_approved} "
            f"posted={result.auto_posted} errors={len(result.errors)} ({result.duration_ms}ms)"
        )
        return result

    async def _run(self, context: AutomationContext, result: AutomationResult) -> None:
        business = context.business
        s = context.settings

        ordered = sorted(context.reviews, key=lambda r: r.created_at or datetime.min)
        batch = ordered[: self.batch_cap]
        if len(ordered) > self.batch_cap:
            logger.info(
                f"Business {business.id}: {len(ordered)} candidates, processing oldest {self.batch_cap}, "
                f"{len(ordered) - self.batch_cap} left for the next run"
            )

        state = _PassState(
            avoid_phrases=await self.replies.avoid_phrases(business.id) if s.auto_reply_enabled else [],
            replies_remaining=context.entitlements.replies_remaining,
        )

        for review in batch:
            try:
                if not is_eligible(review):
                    continue
                result.processed_reviews += 1
                async with self.reviews.savepoint():
                    ready = await self._draft_and_approve(context, review, state, result)
            except Exception as e:
                logger.exception(f"Unexpected automation error on review {review.id}")
                result.add_error("review", str(e), review.id)
                continue
            if not ready:
                continue
            # Separate savepoint: the approval above stays even if posting blows up
            try:
                async with self.reviews.savepoint():
                    await self._post(context, review, state, result)
            except Exception as e:
                logger.exception(f"Unexpected error recording the post for review {review.id}")
                result.add_error("posting", str(e), review.id)

        await self._notify(context, state, result)

    async def _draft_and_approve(
        self,
        context: AutomationContext,
        review: Review,
        state: _PassState,
        result: AutomationResult,
    ) -> bool:
        """Generation and approval. True when the review is approved and may be posted."""
        business = context.business
        s = context.settings

        # Generation
        if s.auto_reply_enabled:
            if not context.entitlements.has("aiReplies"):
                logger.info(f"Plan {context.entitlements.plan_id} has no AI replies, skipping generation")
                return False
            try:
                reply = await self.replies.generate(
                    review,
                    brand_voice=s.brand_voice,
                    business_info=business.business_info,
                    avoid_phrases=state.avoid_phrases,
                )
            except Exception as e:
                review.automation_failed = True
                review.automation_error = str(e)[:1000]
                await self.reviews.save(review)
                result.add_error("generation", str(e), review.id)
                await self.activities.log(
                    action="automation_failed",
                    category="automation",
                    description=f"Reply generation failed for review from {review.customer_name}",
                    business_id=business.id,
                    details={"step": "generation", "error": str(e)},
                    entity_type="review",
                    entity_id=str(review.id),
                    status="failure",
                )
                return False
            review.ai_reply = reply.text
            review.reply_tone = reply.tone
            await self.reviews.save(review)
            result.generated_replies += 1
            opener = _opener(reply.text)
            if opener:
                state.avoid_phrases.append(opener)

        if not review.ai_reply:
            return False

        # Approval
        if not context.entitlements.has("autoApproval") or not should_auto_approve(s.approval_mode, review.rating):
            state.awaiting_approval += 1
            return False
        review.status = ReviewStatus.APPROVED.value
        review.final_reply = review.ai_reply
        review.auto_approved = True
        await self.reviews.save(review)
        result.auto_approved += 1
        return True

    async def _post(
        self,
        context: AutomationContext,
        review: Review,
        state: _PassState,
        result: AutomationResult,
    ) -> None:
        business = context.business
        if not context.settings.auto_post_enabled or state.posting_blocked:
            return
        if state.replies_remaining is not None and state.replies_remaining <= 0:
            logger.info(f"Monthly reply allowance used up for business {business.id}, leaving review {review.id} approved")
            return
        if not review.google_review_id:
            result.add_error("posting", "Review has no Google review id", review.id)
            return
        try:
            if state.client is None:
                state.client = await self.credentials.get_client(business)
            await state.client.post_reply(review.google_review_id, review.final_reply)
        except GoogleBusinessError as e:
            result.add_error("posting", str(e), review.id)
            if e.requires_reauth:
                result.requires_reauth = True
                state.posting_blocked = True
                logger.warning(f"Google credentials for business {business.id} need reconnection, posting stopped")
            return
        except Exception as e:
            logger.exception(f"Posting reply for review {review.id} failed")
            result.add_error("posting", str(e), review.id)
            return

        review.status = ReviewStatus.POSTED.value
        review.posted_at = utcnow()
        review.automated_reply = True
        await self.reviews.save(review)
        result.auto_posted += 1
        if state.replies_remaining is not None:
            state.replies_remaining -= 1
        await self.activities.log(
            action="reply_auto_posted",
            category="automation",
            description=f"Auto-posted reply to {review.rating}-star review from {review.customer_name}",
            business_id=business.id,
            entity_type="review",
            entity_id=str(review.id),
        )

    async def _notify(self, context: AutomationContext, state: _PassState, result: AutomationResult) -> None:
        business = context.business
        if not context.settings.email_notifications_enabled or not business.owner_email:
            return
        if result.auto_posted == 0 and state.awaiting_approval == 0:
            return
        try:
            sent = await self.notifier.send_summary(
                to_email=business.owner_email,
                business_name=business.name,
                auto_posted=result.auto_posted,
                awaiting_approval=state.awaiting_approval,
                errors=len(result.errors),
            )
        except Exception as e:
            logger.error(f"Automation summary email failed for business {business.id}: {e}")
            result.add_error("notification", str(e))
            return
        if sent:
            result.emails_sent += 1
