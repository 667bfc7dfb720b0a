"""
Subscription plan catalogue: feature flags and usage limits per plan.
A limit of -1 means unlimited.
"""

from dataclasses import dataclass, field

DEFAULT_PLAN = "basic"

PLAN_CONFIGS: dict[str, dict] = {
    "basic": {
        "features": {
            "reviewSync": False,
            "aiReplies": False,
            "autoApproval": False,
            "customVoice": False,
            "advancedInsights": False,
            "bulkOperations": False,
            "autoSync": False,
        },
        "limits": {"maxReviewsPerSync": -1, "maxBusinesses": 1, "maxRepliesPerMonth": 0},
    },
    "starter": {
        "features": {
            "reviewSync": True,
            "aiReplies": True,
            "autoApproval": False,
            "customVoice": False,
            "advancedInsights": False,
            "bulkOperations": True,
            "autoSync": False,
        },
        "limits": {"maxReviewsPerSync": -1, "maxBusinesses": 1, "maxRepliesPerMonth": 200},
    },
    "pro": {
        "features": {
            "reviewSync": True,
            "aiReplies": True,
            "autoApproval": True,
            "customVoice": True,
            "advancedInsights": True,
            "bulkOperations": True,
            "autoSync": True,
        },
        "limits": {"maxReviewsPerSync": -1, "maxBusinesses": 1, "maxRepliesPerMonth": -1},
    },
    "pro-plus": {
        "features": {
            "reviewSync": True,
            "aiReplies": True,
            "autoApproval": True,
            "customVoice": True,
            "advancedInsights": True,
            "bulkOperations": True,
            "autoSync": True,
        },
        "limits": {"maxReviewsPerSync": -1, "maxBusinesses": -1, "maxRepliesPerMonth": -1},
    },
}


def get_plan_config(plan_id: str | None) -> dict:
    return PLAN_CONFIGS.get(plan_id or DEFAULT_PLAN, PLAN_CONFIGS[DEFAULT_PLAN])


@dataclass
class Entitlements:
    """Resolved plan for one user, plus reply usage in the current billing window."""
    plan_id: str = DEFAULT_PLAN
    features: dict = field(default_factory=lambda: dict(PLAN_CONFIGS[DEFAULT_PLAN]["features"]))
    limits: dict = field(default_factory=lambda: dict(PLAN_CONFIGS[DEFAULT_PLAN]["limits"]))
    replies_used: int = 0

    @classmethod
    def for_plan(cls, plan_id: str | None, replies_used: int = 0) -> "Entitlements":
        config = get_plan_config(plan_id)
        resolved = plan_id if plan_id in PLAN_CONFIGS else DEFAULT_PLAN
        return cls(
            plan_id=resolved,
            features=dict(config["features"]),
            limits=dict(config["limits"]),
            replies_used=replies_used,
        )

    def has(self, feature: str) -> bool:
        return bool(self.features.get(feature, False))

    def limit(self, name: str) -> int:
        return int(self.limits.get(name, 0))

    @property
    def replies_remaining(self) -> int | None:
        """None when unlimited."""
        cap = self.limit("maxRepliesPerMonth")
        if cap == -1:
            return None
        return max(cap - self.replies_used, 0)
