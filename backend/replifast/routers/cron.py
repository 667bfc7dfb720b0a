"""
Cron / Scheduled Jobs — endpoints for the external scheduler (Upstash QStash or plain cron).

The scheduler calls one endpoint per daily slot:
  POST https://your-app/api/cron/review-sync/slot_1
  Header: X-Cron-Secret: <CRON_SECRET>   (or Authorization: Bearer <CRON_SECRET>)

/trigger/{slot_id} runs the same batch behind the API key for manual runs.
"""

import logging
from fastapi import APIRouter, Depends, HTTPException

from replifast.auth import require_auth, require_cron_secret
from replifast.services.batch_orchestrator import BatchOrchestrator, parse_slot
from replifast.utils import safe_error_detail

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"])


async def _run_slot(slot_id: str) -> dict:
    try:
        parse_slot(slot_id)
    except ValueError as e:
        raise HTTPException(400, str(e))
    try:
        result = await BatchOrchestrator().run_slot(slot_id)
    except Exception as e:
        logger.exception(f"Cron review sync {slot_id} failed")
        raise HTTPException(500, safe_error_detail(e))
    logger.info(
        f"Cron review sync {slot_id}: processed={result.processed} ok={result.successful} "
        f"errors={result.errors} skipped={result.skipped}"
    )
    return {"status": "ok", "result": result.to_dict()}


@router.post("/review-sync/{slot_id}")
async def cron_review_sync(slot_id: str, _: None = Depends(require_cron_secret)):
    """Scheduled sync + automation for every business assigned to the slot."""
    return await _run_slot(slot_id)


@router.post("/trigger/{slot_id}")
async def trigger_review_sync(slot_id: str, _: str = Depends(require_auth)):
    """Manual run of a slot (API key)."""
    return await _run_slot(slot_id)
