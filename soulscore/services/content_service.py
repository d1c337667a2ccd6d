"""
Content Service - user content lifecycle.

Creating or deleting content publishes ``ContentChanged`` (the similarity
cache subscribes to it) and creation queues a ``content_analysis`` job that
extracts insights and generates the embedding.
"""

import hashlib
import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..database.models import ContentInsight, ContentItem
from ..exceptions import ContentNotFoundError
from ..jobs.payloads import ContentAnalysisPayload, JobType
from .embedding_service import build_embedding_input, embedding_service
from .event_service import ContentChanged, event_service
from .job_queue_service import job_queue_service
from .llm_service import ExtractedInsight, InsightExtraction, llm_service

logger = logging.getLogger("soulscore.content_service")


def hash_text(text: str) -> str:
    return hashlib.sha256(text.strip().encode("utf-8")).hexdigest()


class ContentService:

    async def get_content(
        self,
        session: AsyncSession,
        content_id: UUID,
        with_insights: bool = False,
    ) -> Optional[ContentItem]:
        query = select(ContentItem).where(ContentItem.id == content_id)
        if with_insights:
            query = query.options(selectinload(ContentItem.insights))
        result = await session.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def create_content(
        self,
        session: AsyncSession,
        user_id: str,
        text: str,
        priority: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ContentItem:
        """
        Store a new content item, publish ContentChanged and queue its analysis.

        Returns:
            Created ContentItem (committed)
        """
        now = now or datetime.utcnow()
        content = ContentItem(
            user_id=user_id,
            text=text,
            text_hash=hash_text(text),
            analysis_status="pending",
            created_at=now,
        )
        session.add(content)
        await session.flush()

        await event_service.emit(
            session,
            ContentChanged(user_id=user_id, content_id=content.id, change="created", occurred_at=now),
        )

        # enqueue commits the content, the event side effects and the job together
        await job_queue_service.enqueue(
            session,
            JobType.CONTENT_ANALYSIS,
            user_id,
            ContentAnalysisPayload(content_id=content.id),
            priority=priority,
            now=now,
        )

        logger.info(f"Created content {content.id} for user {user_id}")
        return content

    async def delete_content(
        self,
        session: AsyncSession,
        content_id: UUID,
        now: Optional[datetime] = None,
    ) -> ContentItem:
        """
        Soft-delete a content item and publish ContentChanged.

        Raises:
            ContentNotFoundError: If the content does not exist or is already deleted
        """
        content = await self.get_content(session, content_id)
        if not content or content.deleted_at is not None:
            raise ContentNotFoundError(content_id)

        now = now or datetime.utcnow()
        content.deleted_at = now
        await session.flush()

        await event_service.emit(
            session,
            ContentChanged(user_id=content.user_id, content_id=content.id, change="deleted", occurred_at=now),
        )
        await session.commit()

        logger.info(f"Deleted content {content_id} for user {content.user_id}")
        return content

    # =========================================================================
    # ANALYSIS / EMBEDDING (job handlers, caller commits)
    # =========================================================================

    async def _find_analyzed_duplicate(self, session: AsyncSession, content: ContentItem) -> Optional[ContentItem]:
        if not content.text_hash:
            return None
        result = await session.execute(
            select(ContentItem)
            .where(
                ContentItem.text_hash == content.text_hash,
                ContentItem.id != content.id,
                ContentItem.analysis_status == "completed",
                ContentItem.analysis_result.isnot(None),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def analyze_content(
        self,
        session: AsyncSession,
        content_id: UUID,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Extract insights for a content item, then (re)generate its embedding.

        Content whose text was already analysed under another item reuses
        that analysis without calling the model.

        Returns:
            Tokens used

        Raises:
            ContentNotFoundError: If the content does not exist
        """
        now = now or datetime.utcnow()
        content = await self.get_content(session, content_id)
        if not content:
            raise ContentNotFoundError(content_id)
        if content.deleted_at is not None:
            logger.info(f"Skipping analysis of deleted content {content_id}")
            return 0

        tokens_used = 0
        if content.analysis_status != "completed":
            duplicate = await self._find_analyzed_duplicate(session, content)
            if duplicate is not None:
                extraction = InsightExtraction(
                    insights=[
                        ExtractedInsight(**insight)
                        for insight in (duplicate.analysis_result or {}).get("insights", [])
                    ],
                    tokens_used=0,
                    model=(duplicate.analysis_result or {}).get("model"),
                )
                logger.info(f"Reusing analysis of content {duplicate.id} for {content_id}")
            else:
                extraction = await llm_service.extract_insights(content.text)
                tokens_used = extraction.tokens_used

            for insight in extraction.insights:
                session.add(
                    ContentInsight(
                        content_id=content.id,
                        user_id=content.user_id,
                        category=insight.category,
                        title=insight.title,
                        description=insight.description,
                        confidence=insight.confidence,
                        status="pending",
                        created_at=now,
                    )
                )

            analysis_result = extraction.to_analysis_result()
            analysis_result["timestamp"] = now.isoformat()
            content.analysis_status = "completed"
            content.analysis_result = analysis_result
            content.analyzed_at = now
            await session.flush()

            logger.info(
                f"Analyzed content {content_id}: {len(extraction.insights)} insights, "
                f"{tokens_used} tokens"
            )

        await self.embed_content(session, content_id, now=now)
        return tokens_used

    async def embed_content(
        self,
        session: AsyncSession,
        content_id: UUID,
        now: Optional[datetime] = None,
    ) -> List[float]:
        """
        Generate and store the embedding for a content item.

        The input is the content text plus its insight texts.

        Raises:
            ContentNotFoundError: If the content does not exist
        """
        now = now or datetime.utcnow()
        content = await self.get_content(session, content_id, with_insights=True)
        if not content:
            raise ContentNotFoundError(content_id)

        insight_texts = [
            f"{insight.title}: {insight.description}" if insight.description else insight.title
            for insight in content.insights
        ]
        embedding = await embedding_service.get_embedding(
            build_embedding_input(content.text, insight_texts)
        )

        content.embedding = embedding
        content.embedded_at = now
        await session.flush()

        await event_service.emit(
            session,
            ContentChanged(user_id=content.user_id, content_id=content.id, change="embedded", occurred_at=now),
        )
        logger.info(f"Embedded content {content_id} ({len(embedding)} dimensions)")
        return embedding


# Singleton instance
content_service = ContentService()
