"""
Reply generation for reviews: AI draft with anti-repetition, deterministic tone templates as fallback.
"""

import logging
import re
import uuid
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Optional

from replifast.config import get_settings
from replifast.models import Review
from replifast.repositories import ReviewRepository
from replifast.services.ai_service import AIService, create_ai_service

logger = logging.getLogger(__name__)

MAX_AVOID_PHRASES = 15

TONE_TEMPLATES: dict[str, dict[int, str]] = {
    "friendly": {
        5: "Thank you so much, {name}! We're thrilled you had such a wonderful experience with us. Your kind words truly make our day!",
        4: "Thank you for the great review, {name}! We're so glad you enjoyed your experience. We appreciate your feedback and hope to see you again soon!",
        3: "Hi {name}, thank you for taking the time to share your feedback. We're glad you had a decent experience and would love to make it even better next time!",
        2: "Hi {name}, thank you for your honest feedback. We're sorry we didn't meet your expectations and would love the opportunity to improve your experience.",
        1: "{name}, we're truly sorry about your experience. This isn't the standard we strive for. Please contact us directly so we can make this right.",
    },
    "professional": {
        5: "Dear {name}, we sincerely appreciate your excellent review. Your satisfaction is our top priority, and we look forward to serving you again.",
        4: "Dear {name}, thank you for your positive feedback. We value your business and appreciate you taking the time to share your experience.",
        3: "Dear {name}, we appreciate your feedback. We strive for excellence and would welcome the opportunity to exceed your expectations in the future.",
        2: "Dear {name}, thank you for bringing this to our attention. We take all feedback seriously and are committed to improving our service.",
        1: "Dear {name}, we apologize for not meeting your expectations. Please contact our management team so we can address your concerns properly.",
    },
    "playful": {
        5: "Wow, {name}! You just made our whole team do a happy dance! Thanks for the amazing review, you're absolutely wonderful!",
        4: "Hey {name}! Thanks for the awesome review! We're doing a little celebration over here. Hope to see you again soon!",
        3: "Hi {name}! Thanks for the feedback. We're pretty good, but we know we can be GREAT! Can't wait to wow you next time!",
        2: "Hey {name}, oops! Looks like we missed the mark this time. We promise we're usually more awesome than this! Let us make it up to you!",
        1: "Oh no, {name}! We really dropped the ball here. This is definitely not our usual style, please let us make this right!",
    },
}


class ReplyGenerationError(Exception):
    """The text-generation call failed or produced nothing usable."""


@dataclass
class GeneratedReply:
    text: str
    tone: str
    used_fallback: bool = False
    error: Optional[str] = None


def template_reply(customer_name: str, rating: int, tone: str = "friendly") -> str:
    templates = TONE_TEMPLATES.get(tone, TONE_TEMPLATES["friendly"])
    template = templates.get(rating, templates[3])
    return template.format(name=customer_name or "there")


def extract_avoid_phrases(replies: list[str], limit: int = MAX_AVOID_PHRASES) -> list[str]:
    """
    Opening phrases (first four words) of recent replies plus recurring
    three-word patterns, so new drafts don't sound copy-pasted.
    """
    openers: list[str] = []
    trigrams: Counter = Counter()
    for reply in replies:
        words = re.findall(r"[\w']+", reply.lower())
        if len(words) >= 4:
            opener = " ".join(words[:4])
            if opener not in openers:
                openers.append(opener)
        for i in range(len(words) - 2):
            trigrams[" ".join(words[i:i + 3])] += 1

    phrases = openers[:10]
    for phrase, count in trigrams.most_common():
        if len(phrases) >= limit:
            break
        if count >= 2 and phrase not in phrases:
            phrases.append(phrase)
    return phrases[:limit]


class ReplyService:
    def __init__(
        self,
        reviews: ReviewRepository,
        ai_factory: Callable[[], AIService] = create_ai_service,
        allow_fallback: Optional[bool] = None,
    ):
        self.reviews = reviews
        self._ai_factory = ai_factory
        self._ai: Optional[AIService] = None
        self.allow_fallback = (
            get_settings().automation_template_fallback if allow_fallback is None else allow_fallback
        )

    def _get_ai(self) -> AIService:
        if self._ai is None:
            self._ai = self._ai_factory()
        return self._ai

    async def avoid_phrases(self, business_id: uuid.UUID) -> list[str]:
        recent = await self.reviews.recent_ai_replies(business_id, limit=20)
        return extract_avoid_phrases(recent)

    async def generate(
        self,
        review: Review,
        brand_voice: dict,
        business_info: dict,
        avoid_phrases: Optional[list[str]] = None,
        allow_fallback: Optional[bool] = None,
    ) -> GeneratedReply:
        """
        Draft a reply for one review. Provider failures fall back to a tone
        template only when allowed; an empty draft is always an error.
        """
        tone = brand_voice.get("preset") or "friendly"
        if tone not in TONE_TEMPLATES:
            tone = "friendly"
        fallback_ok = self.allow_fallback if allow_fallback is None else allow_fallback

        try:
            text = await self._get_ai().generate_review_reply(
                customer_name=review.customer_name or "there",
                rating=review.rating,
                review_text=review.review_text or "",
                brand_voice=brand_voice,
                business_info=business_info,
                avoid_phrases=avoid_phrases,
            )
        except Exception as e:
            logger.error(f"AI reply generation failed for review {review.id}: {e}")
            if not fallback_ok:
                raise ReplyGenerationError(f"AI generation failed: {e}") from e
            logger.warning(f"Using template fallback for review {review.id}")
            return GeneratedReply(
                text=template_reply(review.customer_name, review.rating, tone),
                tone=tone,
                used_fallback=True,
                error=str(e),
            )

        if not text:
            raise ReplyGenerationError("AI generation returned an empty reply")
        return GeneratedReply(text=text, tone=tone)
