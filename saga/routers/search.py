from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from saga.background import spawn
from saga.database import async_session_maker, get_db
from saga.models import MemberRole, User
from saga.services.directory import get_user_role, project_exists
from saga.services.search import SearchAnalyticsEvent, SearchService
from saga.settings.config import settings
from saga.utils import get_current_user, parse_id_list, parse_when

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/projects/{project_id}/search", tags=["search"])


def get_search_service() -> SearchService:
    return SearchService(async_session_maker)


async def _require_role(db: AsyncSession, project_id: int, user: User, *, facilitator: bool = False) -> str:
    if not await project_exists(db, project_id):
        raise HTTPException(status_code=404, detail="Project not found")
    role = await get_user_role(db, project_id, user.id)
    if role is None and not user.is_superuser:
        raise HTTPException(status_code=403, detail="Access denied")
    if facilitator and role != MemberRole.facilitator.value and not user.is_superuser:
        raise HTTPException(status_code=403, detail="Only facilitators can do this")
    return role or MemberRole.facilitator.value


@router.get("")
async def search_stories(
    project_id: int,
    q: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    chapters: Optional[str] = Query(None),
    facilitators: Optional[str] = Query(None),
    date_from: Optional[str] = Query(None, alias="dateFrom"),
    date_to: Optional[str] = Query(None, alias="dateTo"),
    sort_by: str = Query("relevance", alias="sortBy"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    search: SearchService = Depends(get_search_service),
):
    if not q or not q.strip():
        raise HTTPException(status_code=400, detail={"code": "MISSING_QUERY", "message": "Search query is required"})
    await _require_role(db, project_id, user)

    limit = min(limit or settings.SEARCH_DEFAULT_LIMIT, settings.SEARCH_MAX_LIMIT)
    result = await search.search_stories(
        project_id,
        q,
        page=page,
        limit=limit,
        chapter_ids=parse_id_list(chapters, field="chapters"),
        facilitator_ids=parse_id_list(facilitators, field="facilitators"),
        date_from=parse_when(date_from, field="dateFrom"),
        date_to=parse_when(date_to, field="dateTo", end_of_day=True),
        sort_by=sort_by,
    )

    spawn(
        search.track_search_analytics(
            SearchAnalyticsEvent(
                query=q.strip(),
                project_id=project_id,
                user_id=user.id,
                result_count=result.total,
                search_time=result.search_time,
            )
        ),
        name=f"search-analytics:{project_id}",
    )
    return {"success": True, "data": result.to_wire()}


@router.get("/suggestions")
async def search_suggestions(
    project_id: int,
    q: Optional[str] = Query(None),
    limit: int = Query(5, ge=1, le=20),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    search: SearchService = Depends(get_search_service),
):
    await _require_role(db, project_id, user)
    suggestions = await search.get_search_suggestions(project_id, q or "", limit)
    return {"success": True, "data": {"suggestions": suggestions}}


@router.get("/analytics")
async def search_analytics(
    project_id: int,
    date_from: Optional[str] = Query(None, alias="dateFrom"),
    date_to: Optional[str] = Query(None, alias="dateTo"),
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    search: SearchService = Depends(get_search_service),
):
    await _require_role(db, project_id, user, facilitator=True)
    summary = await search.get_search_analytics(
        project_id,
        date_from=parse_when(date_from, field="dateFrom"),
        date_to=parse_when(date_to, field="dateTo", end_of_day=True),
        limit=limit,
    )
    return {"success": True, "data": summary.to_wire()}


@router.post("/reindex")
async def reindex_project(
    project_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    search: SearchService = Depends(get_search_service),
):
    await _require_role(db, project_id, user, facilitator=True)
    count = await search.reindex_project(project_id)
    logger.info("User %s reindexed project %s (%d stories)", user.id, project_id, count)
    return {"success": True, "data": {"reindexedCount": count}}


__all__ = ["router", "get_search_service"]
