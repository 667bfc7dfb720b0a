"""
Reviews Router — on-demand Google review sync for one business.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from replifast.services.pipeline import Pipeline, get_pipeline
from replifast.services.review_sync_service import INCREMENTAL_OPTIONS, FetchOptions
from replifast.utils import parse_uuid, safe_error_detail

logger = logging.getLogger(__name__)

router = APIRouter()


class SyncOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    time_period: str = Field(INCREMENTAL_OPTIONS.time_period, alias="timePeriod")
    review_count: int = Field(INCREMENTAL_OPTIONS.review_count, alias="reviewCount")


class SyncRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    business_id: Optional[str] = Field(None, alias="businessId")
    user_id: Optional[str] = Field(None, alias="userId")
    options: SyncOptions = Field(default_factory=SyncOptions)


@router.post("/sync")
async def sync_reviews(body: SyncRequest, pipeline: Pipeline = Depends(get_pipeline)):
    """
    Fetch reviews from Google and reconcile them locally.
    Returns 200 when every review synced cleanly, 207 when some failed.
    """
    if not body.user_id:
        raise HTTPException(401, "Unauthorized")
    if not body.business_id:
        raise HTTPException(400, "businessId is required")
    user_id = parse_uuid(body.user_id, "userId")
    business_id = parse_uuid(body.business_id, "businessId")
    try:
        options = FetchOptions(body.options.time_period, body.options.review_count)
    except ValueError as e:
        raise HTTPException(400, str(e))

    business = await pipeline.businesses.get_for_user(business_id, user_id)
    if not business:
        raise HTTPException(404, "Business not found")

    entitlements = await pipeline.subscriptions.get_entitlements(user_id)
    if not entitlements.has("reviewSync"):
        raise HTTPException(
            status_code=403,
            detail={
                "error": "FEATURE_NOT_AVAILABLE",
                "message": f"Review sync is not included in the {entitlements.plan_id} plan",
                "plan": entitlements.plan_id,
            },
        )
    options = options.capped(entitlements.limit("maxReviewsPerSync"))

    try:
        result = await pipeline.sync.sync(
            business.id,
            time_period=options.time_period,
            review_count=options.review_count,
            business=business,
        )
    except Exception as e:
        logger.exception(f"Review sync request failed for business {business.id}")
        raise HTTPException(500, safe_error_detail(e))
    return JSONResponse(status_code=result.status_code, content=result.to_dict())
