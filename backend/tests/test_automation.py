"""
Tests for the automation policy engine: eligibility, generation, approval, posting and batch limits.
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from replifast.google_client import GoogleBusinessError
from replifast.models import ReviewStatus
from replifast.plans import Entitlements
from replifast.services.automation_service import AutomationContext, is_eligible
from replifast.utils import utcnow

from fakes import (
    USER_ID,
    FakeGoogleClient,
    build_fake_pipeline,
    fake_ai,
    make_business,
    make_review,
    make_settings,
)


@pytest.fixture
def anyio_backend():
    return "asyncio"


def _context(business, settings, reviews, plan="pro", **kwargs) -> AutomationContext:
    return AutomationContext(
        business=business,
        settings=settings,
        user_id=USER_ID,
        reviews=reviews,
        entitlements=kwargs.pop("entitlements", None) or Entitlements.for_plan(plan),
        **kwargs,
    )


def test_eligibility_gate():
    business = make_business()
    assert is_eligible(make_review(business))
    assert not is_eligible(make_review(business, automated_reply=True))
    assert not is_eligible(make_review(business, automation_failed=True))
    for status in (ReviewStatus.APPROVED, ReviewStatus.POSTED, ReviewStatus.NEEDS_EDIT, ReviewStatus.SKIPPED):
        assert not is_eligible(make_review(business, status=status.value))
    with pytest.raises(ValueError):
        is_eligible(make_review(business, status="archived"))


@pytest.mark.anyio
async def test_high_rating_is_generated_approved_and_posted():
    business = make_business()
    settings = make_settings(business, approval_mode="auto_4_plus")
    review = make_review(business, rating=5)
    client = FakeGoogleClient()
    pipeline = build_fake_pipeline([business], [settings], [review], google_client=client)

    result = await pipeline.automation.process_automation(_context(business, settings, [review]))

    assert result.success
    assert (result.processed_reviews, result.generated_replies, result.auto_approved, result.auto_posted) == (1, 1, 1, 1)
    assert result.errors == []
    assert review.status == ReviewStatus.POSTED.value
    assert review.final_reply == review.ai_reply
    assert review.automated_reply and review.auto_approved
    assert review.posted_at is not None
    client.post_reply.assert_awaited_once_with(review.google_review_id, review.final_reply)
    assert "reply_auto_posted" in pipeline.activities.actions()
    assert not pipeline.businesses.held_leases


@pytest.mark.anyio
async def test_low_rating_waits_for_manual_approval():
    business = make_business()
    settings = make_settings(business, approval_mode="auto_4_plus", email_notifications_enabled=True)
    review = make_review(business, rating=2)
    client = FakeGoogleClient()
    pipeline = build_fake_pipeline([business], [settings], [review], google_client=client)

    result = await pipeline.automation.process_automation(_context(business, settings, [review]))

    assert (result.generated_replies, result.auto_approved, result.auto_posted) == (1, 0, 0)
    assert review.status == ReviewStatus.PENDING.value
    assert review.ai_reply
    client.post_reply.assert_not_awaited()
    assert result.emails_sent == 1
    pipeline.automation.notifier.send_summary.assert_awaited_once()
    assert pipeline.automation.notifier.send_summary.await_args.kwargs["awaiting_approval"] == 1


@pytest.mark.anyio
async def test_plan_without_auto_approval_only_drafts():
    business = make_business()
    settings = make_settings(business, approval_mode="auto_except_low")
    review = make_review(business, rating=5)
    pipeline = build_fake_pipeline([business], [settings], [review])

    result = await pipeline.automation.process_automation(_context(business, settings, [review], plan="starter"))

    assert (result.generated_replies, result.auto_approved) == (1, 0)
    assert review.status == ReviewStatus.PENDING.value


@pytest.mark.anyio
async def test_batch_is_capped_oldest_first():
    business = make_business()
    settings = make_settings(business, auto_post_enabled=False, approval_mode="manual")
    now = utcnow()
    reviews = [make_review(business, created_at=now - timedelta(minutes=i)) for i in range(80)]
    pipeline = build_fake_pipeline([business], [settings], reviews)

    result = await pipeline.automation.process_automation(_context(business, settings, reviews))

    assert result.processed_reviews == 50
    assert result.generated_replies == 50
    oldest_first = sorted(reviews, key=lambda r: r.created_at)
    assert all(r.ai_reply for r in oldest_first[:50])
    assert not any(r.ai_reply for r in oldest_first[50:])


@pytest.mark.anyio
async def test_generation_failure_quarantines_only_that_review():
    business = make_business()
    settings = make_settings(business)
    bad = make_review(business, rating=5, created_at=utcnow() - timedelta(hours=2))
    good = make_review(business, rating=5, created_at=utcnow() - timedelta(hours=1))
    ai = fake_ai()
    ai.generate_review_reply = AsyncMock(side_effect=[RuntimeError("provider down"), "Thank you, see you soon!"])
    pipeline = build_fake_pipeline([business], [settings], [bad, good], ai=ai)

    result = await pipeline.automation.process_automation(_context(business, settings, [bad, good]))

    assert result.success
    assert bad.automation_failed
    assert "provider down" in bad.automation_error
    assert bad.status == ReviewStatus.PENDING.value
    assert good.status == ReviewStatus.POSTED.value
    assert [e.step for e in result.errors] == ["generation"]
    assert result.errors[0].review_id == str(bad.id)


@pytest.mark.anyio
async def test_empty_generation_is_a_failure():
    business = make_business()
    settings = make_settings(business)
    review = make_review(business)
    pipeline = build_fake_pipeline([business], [settings], [review], ai=fake_ai(reply=""))

    result = await pipeline.automation.process_automation(_context(business, settings, [review]))

    assert review.automation_failed
    assert result.generated_replies == 0
    assert result.errors[0].step == "generation"


@pytest.mark.anyio
async def test_posting_failure_leaves_review_approved():
    business = make_business()
    settings = make_settings(business)
    review = make_review(business, rating=5)
    client = FakeGoogleClient()
    client.post_reply.side_effect = GoogleBusinessError("Google API error 503", status_code=503)
    pipeline = build_fake_pipeline([business], [settings], [review], google_client=client)

    result = await pipeline.automation.process_automation(_context(business, settings, [review]))

    assert review.status == ReviewStatus.APPROVED.value
    assert not review.automation_failed
    assert not review.automated_reply
    assert result.auto_posted == 0
    assert [e.step for e in result.errors] == ["posting"]
    assert not result.requires_reauth


@pytest.mark.anyio
async def test_unexpected_posting_exception_keeps_the_approval():
    business = make_business()
    settings = make_settings(business)
    review = make_review(business, rating=5)
    client = FakeGoogleClient()
    client.post_reply.side_effect = ValueError("Expecting value: line 1 column 1")
    pipeline = build_fake_pipeline([business], [settings], [review], google_client=client)

    result = await pipeline.automation.process_automation(_context(business, settings, [review]))

    assert result.success
    assert review.status == ReviewStatus.APPROVED.value
    assert review.final_reply and review.final_reply == review.ai_reply
    assert review.auto_approved
    assert not review.automation_failed
    assert [e.step for e in result.errors] == ["posting"]


@pytest.mark.anyio
async def test_client_setup_failure_is_a_posting_error():
    business = make_business()
    settings = make_settings(business)
    review = make_review(business, rating=5)
    pipeline = build_fake_pipeline([business], [settings], [review])
    pipeline.credentials.get_client = AsyncMock(side_effect=KeyError("access_token"))

    result = await pipeline.automation.process_automation(_context(business, settings, [review]))

    assert review.status == ReviewStatus.APPROVED.value
    assert review.ai_reply is not None
    assert [e.step for e in result.errors] == ["posting"]


@pytest.mark.anyio
async def test_reauth_error_stops_further_posting():
    business = make_business()
    settings = make_settings(business)
    reviews = [make_review(business, created_at=utcnow() - timedelta(minutes=i)) for i in range(3)]
    client = FakeGoogleClient()
    client.post_reply.side_effect = GoogleBusinessError("Google API error 401", status_code=401)
    pipeline = build_fake_pipeline([business], [settings], reviews, google_client=client)

    result = await pipeline.automation.process_automation(_context(business, settings, reviews))

    assert result.requires_reauth
    assert client.post_reply.await_count == 1
    assert result.auto_approved == 3
    assert all(r.status == ReviewStatus.APPROVED.value for r in reviews)


@pytest.mark.anyio
async def test_monthly_allowance_limits_posting():
    business = make_business()
    settings = make_settings(business)
    reviews = [make_review(business, created_at=utcnow() - timedelta(minutes=i)) for i in range(3)]
    entitlements = Entitlements.for_plan("pro")
    entitlements.limits["maxRepliesPerMonth"] = 10
    entitlements.replies_used = 9
    pipeline = build_fake_pipeline([business], [settings], reviews)

    result = await pipeline.automation.process_automation(
        _context(business, settings, reviews, entitlements=entitlements)
    )

    assert result.auto_posted == 1
    assert result.auto_approved == 3
    assert result.errors == []
    assert sorted(r.status for r in reviews) == ["approved", "approved", "posted"]


@pytest.mark.anyio
async def test_disabled_automation_short_circuits():
    business = make_business()
    settings = make_settings(business, auto_reply_enabled=False, auto_post_enabled=False)
    review = make_review(business)
    pipeline = build_fake_pipeline([business], [settings], [review])

    result = await pipeline.automation.process_automation(_context(business, settings, [review]))

    assert result.automation_disabled
    assert result.processed_reviews == 0
    assert result.errors == []
    assert review.ai_reply is None
    assert review.status == ReviewStatus.PENDING.value


@pytest.mark.anyio
async def test_auto_post_without_auto_reply_posts_existing_drafts():
    business = make_business()
    settings = make_settings(business, auto_reply_enabled=False)
    drafted = make_review(business, ai_reply="Thanks for visiting!", reply_tone="friendly")
    bare = make_review(business)
    pipeline = build_fake_pipeline([business], [settings], [drafted, bare])

    result = await pipeline.automation.process_automation(_context(business, settings, [drafted, bare]))

    assert drafted.status == ReviewStatus.POSTED.value
    assert bare.status == ReviewStatus.PENDING.value
    assert result.generated_replies == 0
    assert result.auto_posted == 1


@pytest.mark.anyio
async def test_concurrent_pass_is_deferred():
    business = make_business()
    settings = make_settings(business)
    review = make_review(business)
    pipeline = build_fake_pipeline([business], [settings], [review])
    pipeline.businesses.held_leases.add(business.id)

    result = await pipeline.automation.process_automation(_context(business, settings, [review]))

    assert result.deferred
    assert not result.success
    assert [e.step for e in result.errors] == ["lease"]
    assert review.ai_reply is None


@pytest.mark.anyio
async def test_notifier_exception_is_a_notification_error():
    business = make_business()
    settings = make_settings(business, email_notifications_enabled=True)
    review = make_review(business)
    notifier = AsyncMock()
    notifier.send_summary = AsyncMock(side_effect=RuntimeError("smtp down"))
    pipeline = build_fake_pipeline([business], [settings], [review], notifier=notifier)

    result = await pipeline.automation.process_automation(_context(business, settings, [review]))

    assert result.auto_posted == 1
    assert result.emails_sent == 0
    assert [e.step for e in result.errors] == ["notification"]
