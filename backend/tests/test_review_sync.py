"""
Tests for the review sync engine: options, backfill, reconciliation and partial failure.
"""

import uuid
from unittest.mock import AsyncMock

import pytest

from replifast.google_client import GoogleBusinessError
from replifast.models import ReviewStatus
from replifast.services.review_sync_service import FetchOptions
from replifast.services.token_service import CredentialError

from fakes import FakeGoogleClient, build_fake_pipeline, make_business, make_external, make_review


@pytest.fixture
def anyio_backend():
    return "asyncio"


def test_invalid_options_raise():
    with pytest.raises(ValueError, match="timePeriod"):
        FetchOptions("1year", 50)
    with pytest.raises(ValueError, match="reviewCount"):
        FetchOptions("30days", 30)


def test_options_capped_to_plan_limit():
    assert FetchOptions("all", 200).capped(-1).review_count == 200
    assert FetchOptions("all", 200).capped(60).review_count == 50
    assert FetchOptions("all", 10).capped(5).review_count == 10


@pytest.mark.anyio
async def test_new_reviews_are_inserted_pending():
    business = make_business()
    client = FakeGoogleClient(pages=[[make_external("a"), make_external("b", rating=2)]])
    pipeline = build_fake_pipeline(businesses=[business], google_client=client)

    result = await pipeline.sync.sync(business.id, "30days", 50)

    assert result.success
    assert result.status_code == 200
    assert (result.total_fetched, result.new_reviews) == (2, 2)
    stored = pipeline.reviews.reviews
    assert {r.google_review_id for r in stored} == {"a", "b"}
    assert all(r.status == ReviewStatus.PENDING.value for r in stored)
    assert business.last_review_sync == result.last_sync_time
    assert "review_sync" in pipeline.activities.actions()


@pytest.mark.anyio
async def test_already_answered_review_is_imported_as_posted():
    business = make_business()
    client = FakeGoogleClient(pages=[[make_external("a", reply_comment="Thanks from the owner")]])
    pipeline = build_fake_pipeline(businesses=[business], google_client=client)

    await pipeline.sync.sync(business.id)

    review = pipeline.reviews.reviews[0]
    assert review.status == ReviewStatus.POSTED.value
    assert review.final_reply == "Thanks from the owner"
    assert review.ai_reply is None


@pytest.mark.anyio
async def test_changed_review_updates_content_but_keeps_reply_state():
    business = make_business()
    existing = make_review(
        business, google_review_id="a", rating=5, review_text="Good",
        status=ReviewStatus.APPROVED.value, ai_reply="Thanks!", final_reply="Thanks!",
    )
    unchanged = make_review(business, google_review_id="b", rating=4, review_text="Fine")
    client = FakeGoogleClient(pages=[[
        make_external("a", rating=2, comment="Went downhill"),
        make_external("b", rating=4, comment="Fine"),
    ]])
    pipeline = build_fake_pipeline(businesses=[business], reviews=[existing, unchanged], google_client=client)

    result = await pipeline.sync.sync(business.id)

    assert (result.new_reviews, result.updated_reviews, result.skipped_reviews) == (0, 1, 1)
    assert existing.rating == 2
    assert existing.review_text == "Went downhill"
    assert existing.status == ReviewStatus.APPROVED.value
    assert existing.final_reply == "Thanks!"


@pytest.mark.anyio
async def test_resync_leaves_a_hand_edited_approval_alone():
    business = make_business()
    approved = make_review(
        business, google_review_id="a", rating=5, review_text="Lovely",
        status=ReviewStatus.APPROVED.value,
        ai_reply="Thanks for the kind words!",
        final_reply="Thanks Sam, the sourdough is back on Friday.",
    )
    updated_at = approved.updated_at
    client = FakeGoogleClient(pages=[[make_external("a", rating=5, comment="Lovely")]])
    pipeline = build_fake_pipeline(businesses=[business], reviews=[approved], google_client=client)

    result = await pipeline.sync.sync(business.id)

    assert (result.new_reviews, result.updated_reviews, result.skipped_reviews) == (0, 0, 1)
    assert approved.status == ReviewStatus.APPROVED.value
    assert approved.final_reply == "Thanks Sam, the sourdough is back on Friday."
    assert approved.ai_reply == "Thanks for the kind words!"
    assert approved.updated_at == updated_at
    assert len(pipeline.reviews.reviews) == 1


@pytest.mark.anyio
async def test_first_sync_runs_full_backfill():
    business = make_business(initial_backfill_complete=False)
    client = FakeGoogleClient(pages=[[make_external("a")]])
    client.iter_review_pages = _recording_pages(client, [[make_external("a")]])
    pipeline = build_fake_pipeline(businesses=[business], google_client=client)

    result = await pipeline.sync.sync(business.id, "7days", 10)

    assert result.backfill
    assert result.fetch_options.time_period == "all"
    assert client.calls == [(None, 200)]
    assert business.initial_backfill_complete


@pytest.mark.anyio
async def test_bad_row_does_not_stop_the_batch():
    business = make_business()
    client = FakeGoogleClient(pages=[[make_external("a"), make_external("boom"), make_external("c")]])
    pipeline = build_fake_pipeline(businesses=[business], google_client=client)
    original_add = pipeline.reviews.add

    async def flaky_add(review):
        if review.google_review_id == "boom":
            raise RuntimeError("constraint violated")
        return await original_add(review)

    pipeline.reviews.add = flaky_add
    result = await pipeline.sync.sync(business.id)

    assert not result.success
    assert result.status_code == 207
    assert not result.fatal
    assert result.new_reviews == 2
    assert len(result.errors) == 1 and "boom" in result.errors[0]
    assert business.last_review_sync is not None


@pytest.mark.anyio
async def test_fetch_failure_is_fatal_and_keeps_watermark():
    business = make_business(initial_backfill_complete=False)
    client = FakeGoogleClient(fetch_error=GoogleBusinessError("Google API error 503", status_code=503))
    pipeline = build_fake_pipeline(businesses=[business], google_client=client)

    result = await pipeline.sync.sync(business.id)

    assert result.fatal
    assert business.last_review_sync is None
    assert not business.initial_backfill_complete
    assert not result.requires_reauth


@pytest.mark.anyio
async def test_credential_failure_requires_reauth():
    business = make_business()
    pipeline = build_fake_pipeline(businesses=[business])
    pipeline.credentials.get_client = AsyncMock(side_effect=CredentialError("Google connection expired"))

    result = await pipeline.sync.sync(business.id)

    assert result.fatal
    assert result.requires_reauth
    assert result.to_dict()["requiresReauth"] is True


@pytest.mark.anyio
async def test_unknown_business_reports_error():
    pipeline = build_fake_pipeline()
    result = await pipeline.sync.sync(uuid.uuid4())
    assert result.errors == ["Business not found"]


def _recording_pages(client, pages):
    client.calls = []

    async def iter_review_pages(window_cutoff=None, max_count=50):
        client.calls.append((window_cutoff, max_count))
        for page in pages:
            yield page

    return iter_review_pages
