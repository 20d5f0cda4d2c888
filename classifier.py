import asyncio
import json
import logging
import uuid
from datetime import datetime
from typing import Dict, Any, List, Optional

import anthropic

from config import (
    ANTHROPIC_API_KEY, ANTHROPIC_MODEL, POLICY_CODES,
    DEFAULT_REVIEW_COUNTRY, DEFAULT_REVIEW_LANGUAGE,
)
from errors import VerdictParseError
from models import ReportReason

logger = logging.getLogger(__name__)

BANNED_CODES = {code for code, policy in POLICY_CODES.items() if policy["severity"] == "banned"}
MATURE_CODES = {code for code, policy in POLICY_CODES.items() if policy["severity"] == "mature"}

# Keyword weights per policy code for the rule-based fallback
KEYWORD_POLICIES: Dict[str, Dict[str, float]] = {
    "TH": {
        "kill": 0.4, "die": 0.4, "death": 0.3, "hurt you": 0.4,
        "find you": 0.3, "worthless": 0.3, "kys": 0.8, "kill yourself": 0.8,
    },
    "HS": {
        "hate": 0.3, "subhuman": 0.6, "vermin": 0.4, "go back to": 0.3,
    },
    "EA": {
        "porn": 0.8, "nude": 0.5, "nudes": 0.6, "xxx": 0.8, "explicit": 0.3,
    },
    "MW": {
        "free money": 0.4, "verify your account": 0.5, "password": 0.3,
        "download now": 0.4, ".exe": 0.5,
    },
    "SA": {
        "sexy": 0.6, "lingerie": 0.6, "onlyfans": 0.6, "nsfw": 0.6,
    },
    "PR": {
        "fuck": 0.6, "shit": 0.6, "damn": 0.6, "bitch": 0.6,
    },
    "DR": {
        "weed": 0.6, "cocaine": 0.6, "drunk": 0.6, "high af": 0.6,
    },
}

SPAM_INDICATORS = [
    "buy now", "click here", "win prize", "$$$", "limited offer",
    "act now", "discount", "www.", "http",
]

POLICY_THRESHOLD = 0.6


def create_llm_client():
    """Create Anthropic client if API key is available"""
    if ANTHROPIC_API_KEY:
        return anthropic.Anthropic(api_key=ANTHROPIC_API_KEY)
    return None


def policy_codes_of(response: str) -> List[str]:
    try:
        data = json.loads(response)
    except (TypeError, ValueError) as e:
        raise VerdictParseError(f"Review response is not JSON: {e}") from e
    codes = data.get("policyCodes") if isinstance(data, dict) else None
    if not isinstance(codes, list) or not all(isinstance(code, str) for code in codes):
        raise VerdictParseError("Review response has no policyCodes list")
    return [code.upper() for code in codes]


class ReviewClassifier:
    """
    Synchronous review of reported content.

    Reviews with Claude when a client is configured and falls back to
    keyword rules otherwise, or when the model call or its output fails.
    Responses are JSON documents carrying the matched `policyCodes`.
    """

    def __init__(self, llm_client=None, model: str = ANTHROPIC_MODEL):
        self.llm_client = llm_client
        self.model = model

    async def submit_review_request(
        self,
        reason: ReportReason,
        reported_at: datetime,
        callback_url: str,
        text1: Optional[str] = None,
        text2: Optional[str] = None,
        text3: Optional[str] = None,
        image_url: Optional[str] = None,
        country: str = DEFAULT_REVIEW_COUNTRY,
        language: str = DEFAULT_REVIEW_LANGUAGE,
    ) -> str:
        if not country or len(country) != 3:
            raise ValueError(f"Invalid country code: {country!r}")
        if not language or len(language) != 3:
            raise ValueError(f"Invalid language code: {language!r}")
        if reported_at is None:
            raise ValueError("reported_at is required")
        if not callback_url:
            raise ValueError("callback_url is required")

        texts = [text for text in (text1, text2, text3) if text and text.strip()]
        if not texts and image_url is None:
            raise ValueError("Image and all three pieces of text are empty")

        result = None
        if self.llm_client:
            try:
                result = await asyncio.to_thread(self._llm_review, reason, texts, image_url, language)
            except (anthropic.APIError, ValueError, KeyError, IndexError) as e:
                logger.warning(f"LLM review failed, using rule-based review: {e}")
        if result is None:
            result = self._rule_based_review(texts)

        return json.dumps({
            "reviewId": str(uuid.uuid4()),
            "reason": reason.value,
            "reportedAt": reported_at.isoformat(),
            "country": country,
            "language": language,
            "policyCodes": result["policyCodes"],
            "analysis": result["analysis"],
        })

    def _llm_review(self, reason: ReportReason, texts: List[str], image_url: Optional[str], language: str) -> Dict[str, Any]:
        policies = "\n".join(
            f"- {code}: {policy['description']}" for code, policy in POLICY_CODES.items()
        )
        content = "\n".join(f'"{text}"' for text in texts) or "(no text)"
        image_line = f"Attached image: {image_url}\n" if image_url else ""

        prompt = f"""A user reported the following content for: {reason.value}.
Review it against these policy codes:
{policies}

Content (language {language}):
{content}
{image_line}
Provide a JSON response with:
{{
    "policyCodes": [<codes that apply, "OK" if none>],
    "analysis": "<brief explanation>"
}}"""

        response = self.llm_client.messages.create(
            model=self.model,
            max_tokens=1024,
            messages=[{"role": "user", "content": prompt}]
        )

        result = json.loads(response.content[0].text)
        codes = [str(code).upper() for code in result.get("policyCodes", [])]
        unknown = [code for code in codes if code not in POLICY_CODES]
        if unknown:
            raise ValueError(f"Model returned unknown policy codes {unknown}")
        return {"policyCodes": codes or ["OK"], "analysis": result.get("analysis", "")}

    def _rule_based_review(self, texts: List[str]) -> Dict[str, Any]:
        """Fallback keyword review"""
        content = " ".join(texts).lower()
        codes = []

        for code, keywords in KEYWORD_POLICIES.items():
            score = sum(weight for word, weight in keywords.items() if word in content)
            if min(score, 1.0) >= POLICY_THRESHOLD:
                codes.append(code)

        spam_score = sum(0.2 for indicator in SPAM_INDICATORS if indicator in content)
        if spam_score >= 0.4:
            codes.append("SP")

        if not codes:
            codes.append("OK")

        return {
            "policyCodes": codes,
            "analysis": f"Rule-based review matched: {', '.join(codes)}"
        }

    def is_content_not_allowed(self, response: str) -> bool:
        return any(code in BANNED_CODES for code in policy_codes_of(response))

    def is_content_mature(self, response: str) -> bool:
        return any(code in MATURE_CODES for code in policy_codes_of(response))
