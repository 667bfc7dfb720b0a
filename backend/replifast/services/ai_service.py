"""
AI Service — Multi-provider AI (OpenAI GPT, Anthropic Claude) for drafting replies to Google reviews.
Prompts are built from the business's brand voice (preset, formality, warmth, brevity) and contact info.
"""

import logging
import re
from typing import Optional
from openai import AsyncOpenAI
from anthropic import AsyncAnthropic
from replifast.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

FORBIDDEN_PHRASES = [
    "thank you for your kind words",
    "we appreciate your feedback",
    "means a lot to us",
    "we're glad",
    "so glad",
    "we value your business",
    "your satisfaction is our top priority",
    "don't hesitate to reach out",
]

BANNED_OPENERS = [
    "We're glad", "So glad", "We appreciate", "I'm glad", "Glad to hear",
    "We're happy", "We're thrilled", "We're delighted",
]

FORMALITY_TEXT = {
    1: "Use very casual phrasing with contractions.",
    2: "Use casual phrasing with contractions.",
    3: "Use neutral, conversational business language.",
    4: "Use formal business language with few contractions.",
    5: "Use very formal business language with no contractions.",
}

WARMTH_TEXT = {
    1: "Keep it factual and restrained.",
    2: "Be polite and measured.",
    3: "Be empathetic but not effusive.",
    4: "Be warm and personable.",
    5: "Be very warm and people-oriented (without sounding gushy).",
}

PRESET_TEXT = {
    "friendly": "Tone: warm, approachable, concise. ",
    "professional": "Tone: polished, respectful, concise. ",
    "playful": "Tone: light and upbeat. A single tasteful emoji is ok only if it fits naturally. ",
}

# (max words for rating >= 4, max words for rating <= 3, min words high, min words low) by brevity level
_BREVITY_WORDS = {
    1: (60, 80, 35, 50),
    2: (45, 60, 25, 35),
    3: (35, 45, 20, 25),
    4: (25, 35, 15, 20),
    5: (15, 25, 8, 15),
}


def _parse_model_id(model_id: Optional[str]) -> tuple[str, str]:
    """Parse 'provider:model' into (provider, model). Fallback to OpenAI config."""
    if model_id and ":" in model_id:
        p, m = model_id.split(":", 1)
        return (p.strip().lower(), m.strip())
    return ("openai", settings.openai_model)


def clean_dashes(text: str) -> str:
    """Replace em/en dashes and double hyphens with commas."""
    text = re.sub(r"[—–]", ", ", text)
    text = text.replace("--", ", ")
    text = re.sub(r"\s+,\s+", ", ", text)
    text = re.sub(r",\s*,", ",", text)
    return text.strip().strip('"').strip()


def word_range(brevity: int, rating: int, review_text: str) -> tuple[int, int]:
    """Target reply length, scaled up for long reviews and low ratings."""
    is_low = rating <= 3
    high_max, low_max, high_min, low_min = _BREVITY_WORDS.get(brevity, (35, 35, 20, 20))
    max_words, min_words = (low_max, low_min) if is_low else (high_max, high_min)

    review_words = len(review_text.split())
    multiplier = 1.0
    if review_words >= 30:
        multiplier = 1.4 if is_low else 1.2
    elif review_words >= 10:
        multiplier = 1.2 if is_low else 1.1

    max_words = min(round(max_words * multiplier), 100)
    min_words = min(round(min_words * multiplier), max_words - 5)
    return min_words, max_words


def map_temperature(brand_voice: dict) -> float:
    base = 0.8
    if brand_voice.get("preset") == "playful":
        base = 0.9
    elif brand_voice.get("preset") == "professional":
        base = 0.5
    formality_adj = (brand_voice.get("formality", 3) - 3) * -0.04
    warmth_adj = (brand_voice.get("warmth", 3) - 3) * 0.03
    return round(max(0.2, min(1.0, base + formality_adj + warmth_adj)), 2)


def max_tokens_for(min_max: tuple[int, int]) -> int:
    # ~1.6 tokens per English word plus a small buffer
    return min(int(min_max[1] * 1.6) + 20, 200)


def build_reply_system_prompt(brand_voice: dict, business_info: dict, avoid_phrases: Optional[list[str]] = None) -> str:
    preset = brand_voice.get("preset", "friendly")
    name = business_info.get("name") or "our business"
    industry = business_info.get("industry") or "local"

    parts = [
        f"You are a senior customer support representative for {name}, a {industry} business. "
        "Write replies to Google reviews that sound natural, specific, and human. Avoid clichés. ",
        PRESET_TEXT.get(preset, ""),
        FORMALITY_TEXT.get(brand_voice.get("formality", 3), FORMALITY_TEXT[3]) + " ",
        WARMTH_TEXT.get(brand_voice.get("warmth", 3), WARMTH_TEXT[3]) + " ",
        "Rules: "
        "1) Reference 1-2 specific details from the review to prove you read it. "
        "2) Do not reuse generic openers. "
        "3) If rating is 1-3, acknowledge the issue plainly, apologize once if appropriate, and offer a next step. ",
    ]
    if business_info.get("contact_email"):
        parts.append(f"Offer a contact path such as {business_info['contact_email']}. ")
    if business_info.get("phone"):
        parts.append(f"A phone number like {business_info['phone']} is fine if relevant. ")
    parts.append("4) Keep it tight, no long paragraphs. 5) Avoid corporate-speak and filler. ")

    custom = (brand_voice.get("custom_instruction") or "").strip()
    if custom:
        parts.append(f"Custom brand instructions (IMPORTANT TO FOLLOW!): {custom} ")

    parts.append(
        "Punctuation: NEVER use em dashes or en dashes. "
        "Do not invent facts. Use the reviewer's wording when referencing specifics. "
        "No hashtags. No links unless explicitly provided. "
    )
    parts.append(
        "Emoji policy: at most one emoji and only if it feels natural. " if preset == "playful" else "Do not use emojis. "
    )
    parts.append("Never use any of these robotic phrases: " + ", ".join(FORBIDDEN_PHRASES) + ". ")
    parts.append("Do not start replies with: " + ", ".join(f'"{o}"' for o in BANNED_OPENERS) + ". ")
    if avoid_phrases:
        parts.append("Do not use these exact phrases from recent replies: " + ", ".join(avoid_phrases) + ". ")
    return "".join(parts).strip()


def build_reply_user_prompt(customer_name: str, rating: int, review_text: str, words: tuple[int, int]) -> str:
    is_low = rating <= 3
    content_rule = (
        "Acknowledge the issue, apologize once if appropriate, and offer a next step with a contact path if provided. "
        if is_low
        else "Thank them naturally and call out 1-2 specifics they mentioned. "
    )
    return (
        f"Write a reply to this {rating}-star Google review from {customer_name}:\n"
        f'"{review_text or "(no text, rating only)"}"\n\n'
        f"Word count: {words[0]}-{words[1]} words. "
        "Mention the reviewer's specific detail(s) in your own words. "
        f"{content_rule}"
        "End on a short, human-sounding line. Write exactly within the word range above."
    )


class AIService:
    """Multi-provider AI service for review replies (OpenAI GPT, Anthropic Claude)."""

    def __init__(
        self,
        model_id: Optional[str] = None,
        openai_api_key: Optional[str] = None,
        anthropic_api_key: Optional[str] = None,
    ):
        self.provider, self.model = _parse_model_id(model_id)
        self._openai_client: Optional[AsyncOpenAI] = None
        self._anthropic_client: Optional[AsyncAnthropic] = None

        # Use passed keys, else env
        openai_key = openai_api_key or settings.openai_api_key
        anthropic_key = anthropic_api_key or settings.anthropic_api_key

        if self.provider == "openai":
            if not openai_key:
                raise ValueError("OPENAI_API_KEY not configured.")
            self._openai_client = AsyncOpenAI(api_key=openai_key)
        elif self.provider == "anthropic":
            if not anthropic_key:
                raise ValueError("ANTHROPIC_API_KEY not configured.")
            self._anthropic_client = AsyncAnthropic(api_key=anthropic_key)
        else:
            raise ValueError(f"Unknown AI provider: {self.provider}")

    async def _completion(
        self,
        messages: list[dict],
        temperature: float = 0.3,
        max_tokens: int = 8000,
    ) -> str:
        """Call the appropriate provider's completion API."""
        if self.provider == "openai":
            response = await self._openai_client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
            return response.choices[0].message.content or ""

        # Anthropic: system prompt travels separately
        system = ""
        anthropic_messages = []
        for m in messages:
            role = m.get("role", "user")
            content = m.get("content", "")
            if role == "system":
                system += content + "\n\n" if content else ""
            else:
                anthropic_messages.append({"role": "user" if role == "user" else "assistant", "content": content})

        response = await self._anthropic_client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system.strip() if system else None,
            messages=anthropic_messages,
        )
        if response.content and response.content[0].type == "text":
            return response.content[0].text
        return ""

    async def generate_review_reply(
        self,
        customer_name: str,
        rating: int,
        review_text: str,
        brand_voice: dict,
        business_info: dict,
        avoid_phrases: Optional[list[str]] = None,
    ) -> str:
        """Draft one reply. Returns cleaned text, possibly empty; callers decide what empty means."""
        words = word_range(brand_voice.get("brevity", 3), rating, review_text or "")
        messages = [
            {"role": "system", "content": build_reply_system_prompt(brand_voice, business_info, avoid_phrases)},
            {"role": "user", "content": build_reply_user_prompt(customer_name, rating, review_text, words)},
        ]
        content = await self._completion(
            messages,
            temperature=map_temperature(brand_voice),
            max_tokens=max_tokens_for(words),
        )
        return clean_dashes(content)


def create_ai_service(
    model_id: Optional[str] = None,
    openai_api_key: Optional[str] = None,
    anthropic_api_key: Optional[str] = None,
) -> AIService:
    """Factory function to create an AI service instance. Keys from env or passed."""
    return AIService(
        model_id=model_id or settings.default_llm_id or None,
        openai_api_key=openai_api_key,
        anthropic_api_key=anthropic_api_key,
    )
