"""
Tests for the content originality engine, similarity cache and percentiles.
"""

from datetime import datetime, timedelta

import pytest

from soulscore.database.models import ContentItem
from soulscore.services.content_service import content_service
from soulscore.services.event_service import ContentChanged, event_service
from soulscore.services.originality_service import (
    cosine_similarity_matrix,
    get_originality_label,
    originality_from_similarity,
    originality_service,
    percentile_of,
)
from soulscore.services.score_service import score_service
from soulscore.services.similarity_cache_service import similarity_cache_service

NOW = datetime(2026, 3, 2, 12, 0, 0)
EARLIER = NOW - timedelta(days=1)


def add_content(session, user_id, embedding, created_at=EARLIER):
    item = ContentItem(
        user_id=user_id,
        text=f"post by {user_id}",
        embedding=embedding,
        embedded_at=created_at,
        analysis_status="completed",
        created_at=created_at,
    )
    session.add(item)
    return item


async def seed_population(session, user_embeddings=3, population=10):
    for _ in range(user_embeddings):
        add_content(session, "author", [1.0, 0.0, 0.0])
    for i in range(population):
        # Half the population writes like the author, half orthogonally
        vector = [1.0, 0.0, 0.0] if i % 2 == 0 else [0.0, 1.0, 0.0]
        add_content(session, f"other_{i}", vector)
    await session.commit()


class TestSimilarityMath:
    """Test the pure similarity helpers."""

    def test_cosine_similarity_matrix(self):
        matrix = cosine_similarity_matrix([[1.0, 0.0], [1.0, 1.0]], [[2.0, 0.0], [0.0, 3.0]])

        assert matrix.shape == (2, 2)
        assert matrix[0][0] == pytest.approx(1.0)
        assert matrix[0][1] == pytest.approx(0.0)
        assert matrix[1][0] == pytest.approx(0.7071, abs=1e-4)

    def test_zero_vector_similarity_is_zero(self):
        matrix = cosine_similarity_matrix([[0.0, 0.0]], [[1.0, 1.0]])
        assert matrix[0][0] == 0.0

    def test_mismatched_lengths_rejected(self):
        with pytest.raises(ValueError, match="same length"):
            cosine_similarity_matrix([[1.0, 0.0]], [[1.0, 0.0, 0.0]])

    def test_originality_from_similarity(self):
        assert originality_from_similarity(0.25) == 75
        assert originality_from_similarity(1.0) == 0
        assert originality_from_similarity(-0.5) == 100

    def test_originality_rounds_half_up(self):
        assert originality_from_similarity(0.375) == 63
        assert originality_from_similarity(0.625) == 38

    def test_labels(self):
        assert get_originality_label(95) == "Ultra Original"
        assert get_originality_label(90) == "Ultra Original"
        assert get_originality_label(70) == "Highly Original"
        assert get_originality_label(50) == "Moderately Original"
        assert get_originality_label(30) == "Somewhat Common"
        assert get_originality_label(29) == "Very Common"

    def test_percentile_of(self):
        scores = [20, 50, 80, 90]
        assert [percentile_of(s, scores) for s in scores] == [0.0, 33.33, 66.67, 100.0]

    def test_percentile_single_user(self):
        assert percentile_of(70, [70]) == 0.0


class TestCompute:
    """Test computing originality for a user."""

    @pytest.mark.asyncio
    async def test_too_little_content_uses_default_uncached(self, session):
        add_content(session, "author", [1.0, 0.0, 0.0])
        await session.commit()

        result = await originality_service.compute(session, "author", now=NOW)
        await session.commit()

        assert result.is_fallback is True
        assert result.score == 50
        assert result.content_count == 1
        assert await similarity_cache_service.get(session, "author") is None

        saved = await score_service.get_user_score(session, "author")
        assert saved.originality_score == 50

    @pytest.mark.asyncio
    async def test_small_population_uses_default(self, session):
        await seed_population(session, population=4)

        result = await originality_service.compute(session, "author", now=NOW)

        assert result.is_fallback is True
        assert result.population_sample_size == 4
        assert result.score == 50

    @pytest.mark.asyncio
    async def test_compute_and_cache(self, session):
        await seed_population(session)

        result = await originality_service.compute(session, "author", now=NOW)
        await session.commit()

        assert result.is_fallback is False
        assert result.from_cache is False
        assert result.content_count == 3
        assert result.population_sample_size == 10
        assert result.avg_similarity == pytest.approx(0.5)
        assert result.min_similarity == 0.0
        assert result.max_similarity == 1.0
        assert result.score == 50

        entry = await similarity_cache_service.get(session, "author")
        assert entry.originality_score == 50
        assert entry.valid_until == NOW + timedelta(days=7)

    @pytest.mark.asyncio
    async def test_cache_hit(self, session):
        await seed_population(session)
        await originality_service.compute(session, "author", now=NOW)
        await session.commit()

        result = await originality_service.compute(session, "author", now=NOW + timedelta(hours=1))

        assert result.from_cache is True
        assert result.score == 50

    @pytest.mark.asyncio
    async def test_new_content_bypasses_cache(self, session):
        await seed_population(session)
        await originality_service.compute(session, "author", now=NOW)
        await session.commit()

        add_content(session, "author", [0.0, 0.0, 1.0], created_at=NOW + timedelta(minutes=5))
        await session.commit()

        result = await originality_service.compute(session, "author", now=NOW + timedelta(hours=1))

        assert result.from_cache is False
        assert result.content_count == 4

    @pytest.mark.asyncio
    async def test_expired_cache_recomputed(self, session):
        await seed_population(session)
        await originality_service.compute(session, "author", now=NOW)
        await session.commit()

        result = await originality_service.compute(session, "author", now=NOW + timedelta(days=8))
        assert result.from_cache is False

    @pytest.mark.asyncio
    async def test_deleted_content_forces_recompute(self, session):
        await seed_population(session)
        extra = add_content(session, "author", [0.0, 0.0, 1.0])
        await session.commit()

        first = await originality_service.compute(session, "author", now=NOW)
        await session.commit()
        assert first.content_count == 4

        await content_service.delete_content(session, extra.id, now=NOW + timedelta(minutes=30))

        result = await originality_service.compute(session, "author", now=NOW + timedelta(hours=1))

        assert result.from_cache is False
        assert result.content_count == 3
        assert result.score == 50

    @pytest.mark.asyncio
    async def test_mostly_different_population_is_highly_original(self, session):
        for _ in range(5):
            add_content(session, "author", [1.0, 0.0])
        for i in range(10):
            add_content(session, f"other_{i}", [1.0, 0.0] if i < 2 else [0.0, 1.0])
        await session.commit()

        result = await originality_service.compute(session, "author", now=NOW)

        assert result.content_count == 5
        assert result.avg_similarity == pytest.approx(0.2)
        assert result.score == 80
        assert get_originality_label(result.score) == "Highly Original"

    @pytest.mark.asyncio
    async def test_half_point_average_rounds_up(self, session):
        for _ in range(3):
            add_content(session, "author", [1.0, 0.0])
        for i in range(16):
            add_content(session, f"other_{i}", [1.0, 0.0] if i < 6 else [0.0, 1.0])
        await session.commit()

        result = await originality_service.compute(session, "author", now=NOW)

        assert result.avg_similarity == 0.375
        assert result.score == 63


class TestCacheInvalidation:
    """Test that ContentChanged expires the cache entry."""

    @pytest.mark.asyncio
    async def test_content_changed_invalidates_entry(self, session):
        await seed_population(session)
        await originality_service.compute(session, "author", now=NOW)
        await session.commit()

        changed_at = NOW + timedelta(minutes=30)
        handled = await event_service.emit(
            session, ContentChanged(user_id="author", change="deleted", occurred_at=changed_at)
        )
        await session.commit()

        assert handled >= 1
        entry = await similarity_cache_service.get(session, "author")
        assert entry.valid_until == changed_at
        assert similarity_cache_service.is_valid(entry, NOW + timedelta(hours=1)) is False

    @pytest.mark.asyncio
    async def test_other_users_entries_untouched(self, session):
        await seed_population(session)
        await originality_service.compute(session, "author", now=NOW)
        await session.commit()

        await event_service.emit(session, ContentChanged(user_id="other_1", occurred_at=NOW))
        await session.commit()

        entry = await similarity_cache_service.get(session, "author")
        assert similarity_cache_service.is_valid(entry, NOW + timedelta(hours=1)) is True

    @pytest.mark.asyncio
    async def test_invalidate_missing_entry(self, session):
        assert await similarity_cache_service.invalidate(session, "nobody", now=NOW) is False


class TestPercentiles:

    @pytest.mark.asyncio
    async def test_refresh_percentiles(self, session):
        for user_id, score in [("a", 20), ("b", 50), ("c", 80), ("d", 90)]:
            await score_service.save_scores(session, user_id, now=NOW, originality_score=score)
        await score_service.save_scores(session, "no_originality", now=NOW, dna_score=40)
        await session.commit()

        updated = await originality_service.refresh_percentiles(session)
        await session.commit()

        assert updated == 4
        percentiles = {}
        for user_id in ("a", "b", "c", "d"):
            percentiles[user_id] = (await score_service.get_user_score(session, user_id)).originality_percentile
        assert percentiles == {"a": 0.0, "b": 33.33, "c": 66.67, "d": 100.0}

        untouched = await score_service.get_user_score(session, "no_originality")
        assert untouched.originality_percentile is None
