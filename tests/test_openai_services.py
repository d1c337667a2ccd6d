"""
Unit tests for the OpenAI-backed services (insight extraction and embeddings).

The OpenAI client is always mocked.
"""

import json
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from openai import OpenAI

from soulscore.exceptions import EmbeddingUnavailableError
from soulscore.services.embedding_service import EmbeddingService, build_embedding_input
from soulscore.services.llm_service import LLMService, parse_insights


def chat_response(content, total_tokens=250):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(total_tokens=total_tokens),
    )


@pytest.fixture
def mock_client():
    """Create mock OpenAI client."""
    return MagicMock(spec=OpenAI)


class TestParseInsights:
    """Test parsing the model's JSON answer."""

    def test_bare_array(self):
        text = json.dumps([
            {"category": "values", "title": "Family first", "description": "Prioritises family", "confidence": 85},
        ])
        insights = parse_insights(text)

        assert len(insights) == 1
        assert insights[0].title == "Family first"
        assert insights[0].confidence == 85

    def test_wrapped_object(self):
        text = json.dumps({"insights": [{"category": "interests", "title": "Climber"}]})
        insights = parse_insights(text)

        assert insights[0].category == "interests"
        assert insights[0].confidence == 70

    def test_invalid_json_yields_nothing(self):
        assert parse_insights("not json at all") == []
        assert parse_insights(None) == []

    def test_malformed_entries_skipped(self):
        text = json.dumps([
            {"title": "No category"},
            "just a string",
            {"category": "lifestyle", "title": "Early riser", "confidence": 140},
            {"category": "lifestyle", "title": "Night owl"},
        ])
        assert [i.title for i in parse_insights(text)] == ["Night owl"]

    def test_limit(self):
        text = json.dumps([{"category": "values", "title": f"Insight {i}"} for i in range(8)])
        assert len(parse_insights(text)) == 5
        assert len(parse_insights(text, limit=2)) == 2


class TestLLMService:
    """Test insight extraction against a mocked client."""

    def test_unavailable_without_key(self):
        service = LLMService()
        with patch("soulscore.services.llm_service.settings") as mock_settings:
            mock_settings.openai_api_key = None
            with pytest.raises(EmbeddingUnavailableError):
                service._get_client()

    @pytest.mark.asyncio
    async def test_extract_insights(self, mock_client):
        mock_client.chat.completions.create.return_value = chat_response(
            json.dumps({"insights": [{"category": "values", "title": "Honest", "confidence": 90}]}),
            total_tokens=321,
        )
        service = LLMService()
        service._client = mock_client

        extraction = await service.extract_insights("I never lie, even when it costs me.")

        assert extraction.tokens_used == 321
        assert [i.title for i in extraction.insights] == ["Honest"]
        assert extraction.to_analysis_result()["tokens"] == 321

        kwargs = mock_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["max_tokens"] == 300
        assert kwargs["temperature"] == 0.3
        assert "I never lie" in kwargs["messages"][1]["content"]

    def test_missing_usage_counts_zero_tokens(self, mock_client):
        response = chat_response("[]")
        response.usage = None
        mock_client.chat.completions.create.return_value = response
        service = LLMService()
        service._client = mock_client

        extraction = service._extract_insights_sync("hello")

        assert extraction.tokens_used == 0
        assert extraction.insights == []


class TestEmbeddingService:
    """Test embedding generation against a mocked client."""

    def test_build_embedding_input(self):
        text = build_embedding_input("I love hiking", ["Outdoorsy: Spends weekends outside", ""])
        assert text == "I love hiking\nOutdoorsy: Spends weekends outside"

    def test_build_embedding_input_truncates(self):
        assert build_embedding_input("x" * 50, max_chars=10) == "x" * 10

    def test_unavailable_without_key(self):
        service = EmbeddingService()
        assert service.is_available is False
        with pytest.raises(EmbeddingUnavailableError):
            service._get_client()

    @pytest.mark.asyncio
    async def test_get_embedding(self, mock_client):
        vector = [0.01] * 1536
        mock_client.embeddings.create.return_value = SimpleNamespace(
            data=[SimpleNamespace(embedding=vector)]
        )
        service = EmbeddingService()
        service._client = mock_client

        embedding = await service.get_embedding("some text")

        assert embedding == vector
        kwargs = mock_client.embeddings.create.call_args.kwargs
        assert kwargs["model"] == "text-embedding-3-small"
        assert kwargs["dimensions"] == 1536

    def test_wrong_dimensions_rejected(self, mock_client):
        mock_client.embeddings.create.return_value = SimpleNamespace(
            data=[SimpleNamespace(embedding=[0.1, 0.2])]
        )
        service = EmbeddingService()
        service._client = mock_client

        with pytest.raises(ValueError, match="dimensions"):
            service._generate_embedding_sync("some text")

    def test_blank_text_still_embedded(self, mock_client):
        mock_client.embeddings.create.return_value = SimpleNamespace(
            data=[SimpleNamespace(embedding=[0.0] * 1536)]
        )
        service = EmbeddingService()
        service._client = mock_client

        service._generate_embedding_sync("   ")

        assert mock_client.embeddings.create.call_args.kwargs["input"] == "empty"
