"""
Subscription lookups: resolve a user's plan into feature flags and the monthly reply allowance.
"""

import logging
import uuid
from datetime import timedelta
from typing import Optional

from replifast.plans import DEFAULT_PLAN, Entitlements
from replifast.repositories import ReviewRepository, SubscriptionRepository
from replifast.utils import utcnow

logger = logging.getLogger(__name__)

BILLING_WINDOW = timedelta(days=30)


class SubscriptionService:
    def __init__(self, subscriptions: SubscriptionRepository, reviews: ReviewRepository):
        self.subscriptions = subscriptions
        self.reviews = reviews

    async def get_plan_id(self, user_id: uuid.UUID) -> str:
        """Paid plan only while the subscription is active and inside its period; otherwise basic."""
        subscription = await self.subscriptions.get_for_user(user_id)
        if subscription is None:
            return DEFAULT_PLAN
        if subscription.status != "active":
            return DEFAULT_PLAN
        if subscription.current_period_end and subscription.current_period_end < utcnow():
            logger.info(f"Subscription for user {user_id} is past its period end, using {DEFAULT_PLAN}")
            return DEFAULT_PLAN
        return subscription.plan_id or DEFAULT_PLAN

    async def get_entitlements(self, user_id: uuid.UUID, business_id: Optional[uuid.UUID] = None) -> Entitlements:
        plan_id = await self.get_plan_id(user_id)
        entitlements = Entitlements.for_plan(plan_id)
        if business_id is not None and entitlements.replies_remaining is not None:
            entitlements.replies_used = await self.reviews.count_posted_since(business_id, utcnow() - BILLING_WINDOW)
        return entitlements
