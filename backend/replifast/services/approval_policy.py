"""
Auto-approval policy: whether a drafted reply may skip manual review, by business approval mode and star rating.
"""

import logging

from replifast.models import ApprovalMode

logger = logging.getLogger(__name__)

# Minimum star rating that is approved without a human, per mode. None = never.
MIN_RATING = {
    ApprovalMode.MANUAL: None,
    ApprovalMode.AUTO_4_PLUS: 4,
    ApprovalMode.AUTO_EXCEPT_LOW: 3,
}


def parse_approval_mode(value: str | None) -> ApprovalMode:
    try:
        return ApprovalMode(value or ApprovalMode.MANUAL.value)
    except ValueError:
        logger.warning(f"Unknown approval mode {value!r}, treating as manual")
        return ApprovalMode.MANUAL


def should_auto_approve(mode: str | ApprovalMode | None, rating: int) -> bool:
    if not isinstance(mode, ApprovalMode):
        mode = parse_approval_mode(mode)
    threshold = MIN_RATING[mode]
    return threshold is not None and rating >= threshold
