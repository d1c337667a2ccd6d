# soulscore/services/llm_service.py
"""
LLM service for content analysis.

Extracts personality/values/lifestyle insights from user content with the
OpenAI chat-completions API (JSON response format) and reports the tokens
consumed so batch runs can account for cost.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from openai import OpenAI
from pydantic import BaseModel, Field, ValidationError

from ..config import settings
from ..exceptions import EmbeddingUnavailableError

logger = logging.getLogger("soulscore.llm_service")

SYSTEM_PROMPT = "You are an expert at analyzing user content to extract meaningful insights."

CONTENT_ANALYSIS_PROMPT = """Analyze the following user content and extract meaningful insights about their personality, values, lifestyle, interests, or family preferences.

Content: {content}

Return a JSON array of insights with this structure:
[
  {{
    "category": "values|personality|lifestyle|interests|family",
    "title": "Brief insight title (max 50 chars)",
    "description": "Detailed insight description (max 200 chars)",
    "confidence": 0-100
  }}
]

Focus on:
- Authentic personality traits
- Core values and beliefs
- Lifestyle patterns
- Genuine interests and hobbies
- Family preferences and expectations

Be specific and avoid generic observations."""


class ExtractedInsight(BaseModel):
    category: str
    title: str = Field(..., max_length=255)
    description: str = ""
    confidence: int = Field(default=70, ge=0, le=100)


@dataclass
class InsightExtraction:
    insights: List[ExtractedInsight] = field(default_factory=list)
    tokens_used: int = 0
    model: Optional[str] = None

    def to_analysis_result(self) -> Dict[str, Any]:
        return {
            "insights": [insight.model_dump() for insight in self.insights],
            "model": self.model,
            "tokens": self.tokens_used,
        }


def parse_insights(response_text: Optional[str], limit: Optional[int] = None) -> List[ExtractedInsight]:
    """
    Parse the model's JSON answer into insights.

    Accepts a bare array or an object with an ``insights`` array. Unparseable
    answers yield no insights; malformed entries are skipped.
    """
    try:
        parsed = json.loads(response_text or "")
    except json.JSONDecodeError:
        logger.warning("Content analysis returned invalid JSON; no insights extracted")
        return []

    if isinstance(parsed, dict):
        parsed = parsed.get("insights", [])
    if not isinstance(parsed, list):
        return []

    insights = []
    for item in parsed:
        if not isinstance(item, dict):
            continue
        try:
            insights.append(ExtractedInsight(**item))
        except ValidationError as e:
            logger.debug(f"Skipping malformed insight: {e}")

    limit = settings.analysis_max_insights if limit is None else limit
    return insights[:limit]


class LLMService:
    """Service for LLM interactions."""

    def __init__(self):
        self._client: Optional[OpenAI] = None

    def _get_client(self) -> OpenAI:
        if self._client is None:
            if not settings.openai_api_key:
                raise EmbeddingUnavailableError(
                    "OPENAI_API_KEY not set. Configure it in the environment or .env."
                )
            http_client = httpx.Client(timeout=settings.openai_timeout)
            self._client = OpenAI(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
                http_client=http_client,
                max_retries=settings.openai_max_retries,
            )
        return self._client

    @property
    def is_available(self) -> bool:
        return bool(settings.openai_api_key)

    def _extract_insights_sync(self, text: str) -> InsightExtraction:
        client = self._get_client()
        resp = client.chat.completions.create(
            model=settings.openai_model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": CONTENT_ANALYSIS_PROMPT.format(content=text)},
            ],
            max_tokens=settings.analysis_max_tokens,
            temperature=settings.analysis_temperature,
            response_format={"type": "json_object"},
        )

        tokens_used = resp.usage.total_tokens if resp.usage else 0
        return InsightExtraction(
            insights=parse_insights(resp.choices[0].message.content),
            tokens_used=tokens_used,
            model=settings.openai_model,
        )

    async def extract_insights(self, text: str) -> InsightExtraction:
        """
        Extract insights from a content text.

        Returns:
            InsightExtraction with parsed insights and total tokens used

        Raises:
            EmbeddingUnavailableError: If the OpenAI client is not configured
            Exception: If the API call fails
        """
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._extract_insights_sync, text)


# Global service instance
llm_service = LLMService()
