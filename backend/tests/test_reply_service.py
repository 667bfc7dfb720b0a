"""
Tests for reply generation: prompts, fallback policy, and anti-repetition phrases.
"""

from unittest.mock import AsyncMock

import pytest

from replifast.services.ai_service import (
    build_reply_system_prompt,
    clean_dashes,
    map_temperature,
    word_range,
)
from replifast.services.reply_service import (
    ReplyGenerationError,
    ReplyService,
    extract_avoid_phrases,
    template_reply,
)

from fakes import FakeReviewRepository, fake_ai, make_business, make_review

VOICE = {"preset": "professional", "formality": 4, "warmth": 2, "brevity": 3, "custom_instruction": "Sign as Chef Ana"}
INFO = {"name": "Corner Bakery", "industry": "Bakery", "contact_email": "help@bakery.test", "phone": None}


@pytest.fixture
def anyio_backend():
    return "asyncio"


def test_system_prompt_carries_brand_voice_and_avoid_list():
    prompt = build_reply_system_prompt(VOICE, INFO, avoid_phrases=["thanks so much for"])
    assert "Corner Bakery" in prompt
    assert "help@bakery.test" in prompt
    assert "Sign as Chef Ana" in prompt
    assert "thanks so much for" in prompt
    assert "Do not use emojis" in prompt


def test_low_ratings_and_long_reviews_get_longer_replies():
    short_high = word_range(3, 5, "Great")
    long_low = word_range(3, 1, " ".join(["word"] * 40))
    assert short_high == (20, 35)
    assert long_low[1] > short_high[1]
    assert long_low[0] < long_low[1]


def test_temperature_follows_preset():
    assert map_temperature({"preset": "professional", "formality": 3, "warmth": 3}) == 0.5
    assert map_temperature({"preset": "playful", "formality": 3, "warmth": 3}) == 0.9


def test_clean_dashes():
    assert clean_dashes('"Thanks — see you soon"') == "Thanks, see you soon"


def test_template_reply_by_tone_and_rating():
    assert "Dana" in template_reply("Dana", 1, "professional")
    assert template_reply("", 5).startswith("Thank you so much, there!")


def test_extract_avoid_phrases_collects_openers_and_repeats():
    replies = [
        "Thanks so much for the visit, we loved having you.",
        "Thanks so much for stopping by, we loved having you.",
    ]
    phrases = extract_avoid_phrases(replies)
    assert "thanks so much for" in phrases
    assert "we loved having" in phrases


@pytest.mark.anyio
async def test_generate_returns_ai_text():
    business = make_business()
    ai = fake_ai("Thanks for the croissant love!")
    service = ReplyService(FakeReviewRepository(), ai_factory=lambda: ai, allow_fallback=False)

    reply = await service.generate(make_review(business), VOICE, INFO, avoid_phrases=["x"])

    assert reply.text == "Thanks for the croissant love!"
    assert reply.tone == "professional"
    assert not reply.used_fallback
    assert ai.generate_review_reply.await_args.kwargs["avoid_phrases"] == ["x"]


@pytest.mark.anyio
async def test_provider_failure_raises_without_fallback():
    ai = fake_ai()
    ai.generate_review_reply = AsyncMock(side_effect=RuntimeError("quota exceeded"))
    service = ReplyService(FakeReviewRepository(), ai_factory=lambda: ai, allow_fallback=False)

    with pytest.raises(ReplyGenerationError, match="quota exceeded"):
        await service.generate(make_review(make_business()), VOICE, INFO)


@pytest.mark.anyio
async def test_provider_failure_uses_template_when_allowed():
    ai = fake_ai()
    ai.generate_review_reply = AsyncMock(side_effect=RuntimeError("quota exceeded"))
    service = ReplyService(FakeReviewRepository(), ai_factory=lambda: ai, allow_fallback=True)

    reply = await service.generate(make_review(make_business(), rating=4, customer_name="Lee"), VOICE, INFO)

    assert reply.used_fallback
    assert "Lee" in reply.text
    assert reply.error == "quota exceeded"


@pytest.mark.anyio
async def test_empty_reply_is_an_error_even_with_fallback():
    service = ReplyService(FakeReviewRepository(), ai_factory=lambda: fake_ai(""), allow_fallback=True)
    with pytest.raises(ReplyGenerationError):
        await service.generate(make_review(make_business()), VOICE, INFO)


@pytest.mark.anyio
async def test_avoid_phrases_come_from_recent_replies():
    business = make_business()
    reviews = FakeReviewRepository([
        make_review(business, ai_reply="Thank you for visiting our little bakery today."),
    ])
    service = ReplyService(reviews, ai_factory=fake_ai, allow_fallback=False)
    assert await service.avoid_phrases(business.id) == ["thank you for visiting"]
