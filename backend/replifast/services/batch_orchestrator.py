"""
Batch Orchestrator — the scheduled entry point for one daily time slot.

Businesses are processed one at a time, each in its own session and under a
wall-clock budget, so a stuck or failing business never stops the slot.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncContextManager, Callable, Optional

from replifast.config import get_settings
from replifast.models import SyncSlot, TriggerType
from replifast.services.pipeline import Pipeline, pipeline_scope, run_business_pass

logger = logging.getLogger(__name__)


@dataclass
class TenantOutcome:
    business_id: str
    business_name: str
    status: str  # success | skipped | failed
    message: str = ""
    sync: Optional[dict] = None
    automation: Optional[dict] = None
    error: Optional[str] = None
    run_recorded: bool = False  # the pass already left an AutomationRun

    def to_dict(self) -> dict:
        return {
            "businessId": self.business_id,
            "businessName": self.business_name,
            "success": self.status == "success",
            "status": self.status,
            "message": self.message,
            "sync": self.sync,
            "automation": self.automation,
            "error": self.error,
        }


@dataclass
class SlotRunResult:
    slot_id: str
    processed: int = 0
    successful: int = 0
    errors: int = 0
    skipped: int = 0
    results: list[TenantOutcome] = field(default_factory=list)
    needs_attention: bool = False
    duration_ms: int = 0

    @property
    def error_rate(self) -> float:
        return self.errors / self.processed if self.processed else 0.0

    def to_dict(self) -> dict:
        return {
            "slotId": self.slot_id,
            "processed": self.processed,
            "successful": self.successful,
            "errors": self.errors,
            "skipped": self.skipped,
            "needsAttention": self.needs_attention,
            "durationMs": self.duration_ms,
            "results": [r.to_dict() for r in self.results],
        }


def parse_slot(slot_id: str) -> SyncSlot:
    try:
        return SyncSlot(slot_id)
    except ValueError:
        raise ValueError(f"Invalid slot {slot_id!r}. Use slot_1 or slot_2.")


class BatchOrchestrator:
    def __init__(
        self,
        scope_factory: Callable[[], AsyncContextManager[Pipeline]] = pipeline_scope,
        tenant_timeout: Optional[float] = None,
        error_rate_threshold: Optional[float] = None,
    ):
        settings = get_settings()
        self.scope_factory = scope_factory
        self.tenant_timeout = tenant_timeout or settings.tenant_timeout_seconds
        self.error_rate_threshold = (
            settings.slot_error_rate_threshold if error_rate_threshold is None else error_rate_threshold
        )

    async def run_slot(self, slot_id: str) -> SlotRunResult:
        slot = parse_slot(slot_id)
        start = time.monotonic()
        result = SlotRunResult(slot_id=slot.value)

        async with self.scope_factory() as pipeline:
            candidates = await pipeline.businesses.list_slot_candidates(slot.value)
            tenants = [(b.id, b.name) for b, _ in candidates]

        if not tenants:
            logger.info(f"Review sync {slot.value}: no eligible businesses")
            result.duration_ms = int((time.monotonic() - start) * 1000)
            return result

        logger.info(f"Review sync {slot.value}: processing {len(tenants)} businesses")
        for business_id, business_name in tenants:
            try:
                outcome = await asyncio.wait_for(
                    self._run_tenant(business_id, slot),
                    timeout=self.tenant_timeout,
                )
            except asyncio.TimeoutError:
                logger.error(f"Business {business_id} exceeded {self.tenant_timeout}s budget in {slot.value}")
                outcome = TenantOutcome(
                    business_id=str(business_id),
                    business_name=business_name,
                    status="failed",
                    error=f"Timed out after {self.tenant_timeout:g}s",
                )
            except Exception as e:
                logger.exception(f"Business {business_id} failed in {slot.value}")
                outcome = TenantOutcome(
                    business_id=str(business_id),
                    business_name=business_name,
                    status="failed",
                    error=str(e),
                )

            result.results.append(outcome)
            if outcome.status == "skipped":
                result.skipped += 1
                continue
            result.processed += 1
            if outcome.status == "success":
                result.successful += 1
            else:
                result.errors += 1
                await self._record_tenant_failure(business_id, slot, outcome)

        result.needs_attention = result.processed > 0 and result.error_rate > self.error_rate_threshold
        if result.needs_attention:
            logger.warning(
                f"Review sync {slot.value}: high error rate {result.errors}/{result.processed} "
                f"({result.error_rate:.0%}), needs operator attention"
            )
        result.duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            f"Review sync {slot.value} done: {result.successful} ok, {result.errors} failed, "
            f"{result.skipped} skipped in {result.duration_ms}ms"
        )
        return result

    async def _run_tenant(self, business_id: uuid.UUID, slot: SyncSlot) -> TenantOutcome:
        async with self.scope_factory() as pipeline:
            business = await pipeline.businesses.get(business_id)
            business_settings = await pipeline.businesses.get_settings(business_id)
            if business is None or business_settings is None:
                return TenantOutcome(str(business_id), "", "skipped", message="Business or settings no longer exist")

            def _skip(reason: str) -> TenantOutcome:
                logger.info(f"Skipping business {business.id} in {slot.value}: {reason}")
                return TenantOutcome(str(business.id), business.name, "skipped", message=reason)

            if not pipeline.credentials.has_credentials(business):
                return await self._log_outcome(pipeline, slot, _skip("No valid Google credentials stored"))
            entitlements = await pipeline.subscriptions.get_entitlements(business.user_id, business.id)
            if not entitlements.has("autoSync"):
                return await self._log_outcome(
                    pipeline, slot, _skip(f"Plan {entitlements.plan_id} does not include auto sync")
                )

            sync_result, automation_result = await run_business_pass(
                pipeline,
                business,
                business_settings,
                user_id=business.user_id,
                entitlements=entitlements,
                trigger_type=TriggerType.SCHEDULED,
                slot_id=slot.value,
            )

            if sync_result.fatal:
                outcome = TenantOutcome(
                    str(business.id), business.name, "failed",
                    message="Review sync failed",
                    sync=sync_result.to_dict(),
                    error="; ".join(sync_result.errors),
                    run_recorded=True,
                )
            else:
                await pipeline.businesses.mark_synced(business)
                ok = automation_result is not None and automation_result.success
                outcome = TenantOutcome(
                    str(business.id), business.name, "success" if ok else "failed",
                    message=sync_result.message,
                    sync=sync_result.to_dict(),
                    automation=automation_result.to_dict() if automation_result else None,
                    error=None if ok else "Automation pass did not complete",
                    run_recorded=True,
                )
            return await self._log_outcome(pipeline, slot, outcome)

    async def _log_outcome(self, pipeline: Pipeline, slot: SyncSlot, outcome: TenantOutcome) -> TenantOutcome:
        if outcome.status == "failed":
            # Written after rollback by _record_tenant_failure
            return outcome
        await pipeline.activities.log(
            action="review_sync_automated" if outcome.status == "success" else "automation_skipped",
            category="cron",
            description=f"Scheduled {slot.value}: {outcome.message}",
            business_id=uuid.UUID(outcome.business_id),
            details=_summary(outcome),
            entity_type="business",
            entity_id=outcome.business_id,
            status=outcome.status,
        )
        return outcome

    async def _record_tenant_failure(self, business_id: uuid.UUID, slot: SyncSlot, outcome: TenantOutcome) -> None:
        """
        Fresh session: the tenant's own session may have been rolled back.
        Timeouts and crashes left no run behind, so they get a failed one here.
        """
        try:
            async with self.scope_factory() as pipeline:
                if not outcome.run_recorded:
                    await pipeline.health.record_failed_pass(
                        business_id,
                        step="slot_run",
                        error=outcome.error or "unknown error",
                        slot_id=slot.value,
                        trigger_type=TriggerType.SCHEDULED,
                    )
                await pipeline.activities.log(
                    action="review_sync_error",
                    category="cron",
                    description=f"Scheduled {slot.value} failed: {outcome.error}",
                    business_id=business_id,
                    details=_summary(outcome),
                    entity_type="business",
                    entity_id=str(business_id),
                    status="failure",
                )
        except Exception:
            logger.exception(f"Could not record slot failure for business {business_id}")


def _summary(outcome: TenantOutcome) -> dict[str, Any]:
    data: dict[str, Any] = {"status": outcome.status, "message": outcome.message}
    if outcome.error:
        data["error"] = outcome.error
    if outcome.automation:
        data["automation"] = {
            k: outcome.automation.get(k)
            for k in ("processedReviews", "generatedReplies", "autoApproved", "autoPosted", "emailsSent")
        }
    return data
