# soulscore/api/v1/routers/content.py
"""
Content API Router.

Creating and deleting content publishes ContentChanged; creation also
queues the content analysis job.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ....database.base import get_db
from ....exceptions import ContentNotFoundError
from ....services.content_service import content_service
from ..models import ContentResponse, CreateContentRequest

router = APIRouter(prefix="/content", tags=["content"])


@router.post("", response_model=ContentResponse, status_code=201)
async def create_content(
    request: CreateContentRequest,
    session: AsyncSession = Depends(get_db),
) -> ContentResponse:
    content = await content_service.create_content(
        session, request.user_id, request.text, priority=request.priority
    )
    return ContentResponse.model_validate(content)


@router.delete("/{content_id}", response_model=ContentResponse)
async def delete_content(content_id: UUID, session: AsyncSession = Depends(get_db)) -> ContentResponse:
    try:
        content = await content_service.delete_content(session, content_id)
    except ContentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return ContentResponse.model_validate(content)
