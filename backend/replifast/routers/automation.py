"""
Automation Router — run, inspect and recover the review automation pipeline for one business.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from replifast.models import ActivityLog, BusinessSettings, TriggerType
from replifast.services.batch_orchestrator import parse_slot
from replifast.services.pipeline import Pipeline, get_pipeline, run_business_pass
from replifast.utils import isoformat, parse_uuid, safe_error_detail

logger = logging.getLogger(__name__)

router = APIRouter()

ROUTE_TRIGGERS = (TriggerType.MANUAL.value, TriggerType.SCHEDULED.value)
RECOVERY_ACTIONS = ("retry_failed", "clear_errors")


class ProcessRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    business_id: Optional[str] = Field(None, alias="businessId")
    user_id: Optional[str] = Field(None, alias="userId")
    slot_id: Optional[str] = Field(None, alias="slotId")
    trigger_type: str = Field(TriggerType.MANUAL.value, alias="triggerType")


class RecoveryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    business_id: Optional[str] = Field(None, alias="businessId")
    user_id: Optional[str] = Field(None, alias="userId")
    action: Optional[str] = None


def _require_ids(business_id: Optional[str], user_id: Optional[str]):
    if not business_id or not user_id:
        raise HTTPException(400, "businessId and userId are required")
    return parse_uuid(business_id, "businessId"), parse_uuid(user_id, "userId")


async def _load_business(pipeline: Pipeline, business_id, user_id):
    business = await pipeline.businesses.get_for_user(business_id, user_id)
    if not business:
        raise HTTPException(404, "Business not found")
    business_settings = await pipeline.businesses.get_settings(business.id)
    if not business_settings:
        raise HTTPException(404, "Business settings not found")
    return business, business_settings


def _settings_to_dict(s: BusinessSettings) -> dict:
    return {
        "autoSyncEnabled": s.auto_sync_enabled,
        "autoSyncSlot": s.auto_sync_slot,
        "autoReplyEnabled": s.auto_reply_enabled,
        "autoPostEnabled": s.auto_post_enabled,
        "emailNotificationsEnabled": s.email_notifications_enabled,
        "approvalMode": s.approval_mode,
        "lastAutomationRun": isoformat(s.last_automation_run),
        "automationErrors": list(s.automation_errors or []),
    }


def _activity_to_dict(a: ActivityLog) -> dict:
    return {
        "id": str(a.id),
        "action": a.action,
        "category": a.category,
        "description": a.description,
        "details": a.details,
        "status": a.status,
        "createdAt": isoformat(a.created_at),
    }


@router.post("/process")
async def process_automation(body: ProcessRequest, pipeline: Pipeline = Depends(get_pipeline)):
    """Sync the business incrementally, then run the automation pass over its candidate reviews."""
    business_id, user_id = _require_ids(body.business_id, body.user_id)
    if body.trigger_type not in ROUTE_TRIGGERS:
        raise HTTPException(400, f"Invalid triggerType {body.trigger_type!r}. Use manual or scheduled.")
    slot_id = None
    if body.slot_id:
        try:
            slot_id = parse_slot(body.slot_id).value
        except ValueError as e:
            raise HTTPException(400, str(e))

    business, business_settings = await _load_business(pipeline, business_id, user_id)
    entitlements = await pipeline.subscriptions.get_entitlements(user_id, business.id)
    if not entitlements.has("autoSync"):
        raise HTTPException(
            status_code=403,
            detail={
                "error": "FEATURE_NOT_AVAILABLE",
                "message": f"Automation is not included in the {entitlements.plan_id} plan",
                "plan": entitlements.plan_id,
            },
        )

    try:
        sync_result, automation_result = await run_business_pass(
            pipeline,
            business,
            business_settings,
            user_id=user_id,
            entitlements=entitlements,
            trigger_type=TriggerType(body.trigger_type),
            slot_id=slot_id,
        )
    except Exception as e:
        logger.exception(f"Automation request failed for business {business_id}")
        raise HTTPException(500, safe_error_detail(e))

    if automation_result is None:
        return JSONResponse(
            status_code=207,
            content={
                "success": False,
                "message": "Review sync failed, automation skipped",
                "requiresReauth": sync_result.requires_reauth,
                "sync": sync_result.to_dict(),
            },
        )
    return {**automation_result.to_dict(), "sync": sync_result.to_dict()}


@router.get("/process")
async def automation_status(
    business_id: Optional[str] = Query(None, alias="businessId"),
    user_id: Optional[str] = Query(None, alias="userId"),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """Health summary, recent automation activity and the automation settings."""
    bid, uid = _require_ids(business_id, user_id)
    business, business_settings = await _load_business(pipeline, bid, uid)
    try:
        health = await pipeline.health.get_health(business.id, business=business)
        activity = await pipeline.activities.recent(business.id, categories=["automation", "recovery"], limit=10)
    except Exception as e:
        raise HTTPException(500, safe_error_detail(e))
    return {
        "health": health.to_dict(),
        "recentActivity": [_activity_to_dict(a) for a in activity],
        "settings": _settings_to_dict(business_settings),
    }


@router.patch("/process")
async def automation_recovery(body: RecoveryRequest, pipeline: Pipeline = Depends(get_pipeline)):
    """Recovery actions: retry quarantined reviews, or clear the error log."""
    business_id, user_id = _require_ids(body.business_id, body.user_id)
    if body.action not in RECOVERY_ACTIONS:
        raise HTTPException(400, f"Invalid action {body.action!r}. Use retry_failed or clear_errors.")
    business, business_settings = await _load_business(pipeline, business_id, user_id)

    try:
        if body.action == "retry_failed":
            entitlements = await pipeline.subscriptions.get_entitlements(user_id, business.id)
            retry = await pipeline.health.retry_failed(business, business_settings, user_id, entitlements)
            response = {"success": True, "action": body.action, **retry.to_dict()}
            description = f"Retried {retry.reset_reviews} failed reviews"
        else:
            cleared = await pipeline.health.clear_errors(business.id)
            response = {"success": True, "action": body.action, "clearedErrors": cleared}
            description = f"Cleared {cleared} automation errors"

        await pipeline.activities.log(
            action=body.action,
            category="recovery",
            description=description,
            business_id=business.id,
            details=response,
            entity_type="business",
            entity_id=str(business.id),
        )
    except Exception as e:
        logger.exception(f"Recovery action {body.action} failed for business {business.id}")
        raise HTTPException(500, safe_error_detail(e))
    return response
