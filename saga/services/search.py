"""Story search: ranked queries, suggestions, analytics and reindexing."""
from __future__ import annotations

import logging
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional, Sequence

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from saga.models import SearchAnalytics, Story, StoryStatus
from saga.schemas import (
    QueryCount,
    SearchAnalyticsSummary,
    SearchPage,
    SearchResult,
    StoryRead,
)
from saga.services.errors import SearchError, ValidationError
from saga.services.search_strategy import QueryStrategy, escape_like, resolve_strategy
from saga.settings.config import settings

logger = logging.getLogger(__name__)

SORT_OPTIONS = ("relevance", "date")
MIN_SUGGESTION_QUERY = 2
_ALPHA_WORD = re.compile(r"[a-zA-Z]+")
_NON_QUERY_CHARS = re.compile(r"[^\w\s-]")
_WHITESPACE = re.compile(r"\s+")


def sanitize_search_query(query, max_length: int | None = None) -> str:
    """
    Keep word characters, whitespace and hyphens; collapse whitespace;
    cap the length. Anything that is not a string sanitizes to "".
    """
    if not query or not isinstance(query, str):
        return ""
    max_length = max_length or settings.SEARCH_QUERY_MAX_LENGTH
    cleaned = _NON_QUERY_CHARS.sub(" ", query.strip())
    cleaned = _WHITESPACE.sub(" ", cleaned)
    return cleaned[:max_length].strip()


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000.0, 3)


@dataclass(slots=True)
class SearchAnalyticsEvent:
    query: str
    project_id: int
    user_id: Optional[int]
    result_count: int
    search_time: float
    clicked_results: Optional[list[int]] = field(default=None)


class SearchService:
    """
    Story search over one project's ready stories.

    Every call opens its own short-lived session from ``session_maker``;
    searches are read-only and may run concurrently. The query strategy is
    resolved from the bound dialect on first use unless one is injected.
    """

    def __init__(self, session_maker, strategy: QueryStrategy | None = None):
        self.session_maker = session_maker
        self._strategy = strategy

    def _strategy_for(self, db: AsyncSession) -> QueryStrategy:
        if self._strategy is None:
            dialect = db.get_bind().dialect.name
            self._strategy = resolve_strategy(dialect, settings.SEARCH_BACKEND)
        return self._strategy

    # ------------------------------------------------------------------
    # Query building
    # ------------------------------------------------------------------
    @staticmethod
    def _filters(
        project_id: int,
        chapter_ids: Optional[Sequence[int]],
        facilitator_ids: Optional[Sequence[int]],
        date_from: Optional[datetime],
        date_to: Optional[datetime],
    ) -> list:
        conds = [
            Story.project_id == project_id,
            Story.status == StoryStatus.ready.value,
        ]
        if chapter_ids:
            conds.append(Story.chapter_id.in_(list(chapter_ids)))
        if facilitator_ids:
            conds.append(Story.storyteller_id.in_(list(facilitator_ids)))
        if date_from is not None:
            conds.append(Story.created_at >= date_from)
        if date_to is not None:
            conds.append(Story.created_at <= date_to)
        return conds

    @staticmethod
    def _check_ids(name: str, ids: Optional[Iterable]) -> Optional[list[int]]:
        if ids is None:
            return None
        out = []
        for raw in ids:
            if isinstance(raw, bool) or not isinstance(raw, int):
                raise ValidationError(f"{name} must contain integer ids, got {raw!r}")
            out.append(raw)
        return out

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def search_stories(
        self,
        project_id: int,
        query: str,
        *,
        page: int = 1,
        limit: Optional[int] = None,
        chapter_ids: Optional[Sequence[int]] = None,
        facilitator_ids: Optional[Sequence[int]] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        sort_by: str = "relevance",
    ) -> SearchPage:
        started = time.perf_counter()
        limit = settings.SEARCH_DEFAULT_LIMIT if limit is None else limit
        if page < 1:
            raise ValidationError("page must be >= 1")
        if limit < 1:
            raise ValidationError("limit must be >= 1")
        if sort_by not in SORT_OPTIONS:
            raise ValidationError(f"sortBy must be one of {', '.join(SORT_OPTIONS)}")
        if date_from and date_to and date_from > date_to:
            raise ValidationError("dateFrom must not be after dateTo")
        chapter_ids = self._check_ids("chapterIds", chapter_ids)
        facilitator_ids = self._check_ids("facilitatorIds", facilitator_ids)

        sanitized = sanitize_search_query(query)
        if not sanitized:
            return SearchPage(page=page, limit=limit, search_time=_elapsed_ms(started))

        offset = (page - 1) * limit
        try:
            async with self.session_maker() as db:
                strategy = self._strategy_for(db)
                conds = self._filters(project_id, chapter_ids, facilitator_ids, date_from, date_to)
                conds.append(strategy.match(sanitized))

                rank_col = strategy.rank(sanitized).label("rank")
                stmt = select(Story, rank_col, strategy.headline(sanitized).label("headline")).where(*conds)
                if sort_by == "relevance" and strategy.supports_ranking:
                    stmt = stmt.order_by(rank_col.desc(), Story.created_at.desc(), Story.id.desc())
                else:
                    stmt = stmt.order_by(Story.created_at.desc(), Story.id.desc())
                stmt = stmt.limit(limit).offset(offset)

                count_stmt = select(func.count()).select_from(Story).where(*conds)

                rows = (await db.execute(stmt)).all()
                total = int((await db.execute(count_stmt)).scalar_one() or 0)
        except SQLAlchemyError as exc:
            logger.exception("Story search failed for project %s", project_id)
            raise SearchError("Search failed") from exc

        results = [
            SearchResult(
                story=StoryRead.model_validate(story),
                rank=max(0.0, float(rank or 0.0)),
                headline=headline,
            )
            for story, rank, headline in rows
        ]
        return SearchPage(
            results=results,
            total=total,
            page=page,
            limit=limit,
            has_more=(offset + len(results)) < total,
            search_time=_elapsed_ms(started),
        )

    async def get_search_suggestions(self, project_id: int, partial_query: str, limit: int = 5) -> list[str]:
        sanitized = sanitize_search_query(partial_query)
        if len(sanitized) < MIN_SUGGESTION_QUERY or limit < 1:
            return []
        prefix = sanitized.lower()

        try:
            async with self.session_maker() as db:
                transcripts = (
                    await db.execute(
                        select(Story.transcript).where(
                            Story.project_id == project_id,
                            Story.status == StoryStatus.ready.value,
                            Story.transcript.ilike(f"%{escape_like(prefix)}%", escape="\\"),
                        )
                    )
                ).scalars().all()
        except SQLAlchemyError as exc:
            logger.exception("Suggestion lookup failed for project %s", project_id)
            raise SearchError("Search suggestions failed") from exc

        counts: Counter[str] = Counter()
        for text in transcripts:
            for word in (text or "").lower().split():
                if len(word) > 2 and word.startswith(prefix) and _ALPHA_WORD.fullmatch(word):
                    counts[word] += 1

        ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
        return [word for word, _ in ranked[:limit]]

    async def track_search_analytics(self, event: SearchAnalyticsEvent) -> None:
        """Append one analytics row. Never raises; failures are only logged."""
        try:
            async with self.session_maker() as db:
                db.add(
                    SearchAnalytics(
                        query=(event.query or "")[:200],
                        project_id=event.project_id,
                        user_id=event.user_id,
                        result_count=int(event.result_count or 0),
                        clicked_results=list(event.clicked_results) if event.clicked_results else None,
                        search_time=float(event.search_time or 0.0),
                    )
                )
                await db.commit()
        except Exception:  # noqa: BLE001
            logger.exception("Failed to track search analytics for project %s", event.project_id)

    async def get_search_analytics(
        self,
        project_id: int,
        *,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: int = 10,
    ) -> SearchAnalyticsSummary:
        if limit < 1:
            raise ValidationError("limit must be >= 1")
        conds = [SearchAnalytics.project_id == project_id]
        if date_from is not None:
            conds.append(SearchAnalytics.created_at >= date_from)
        if date_to is not None:
            conds.append(SearchAnalytics.created_at <= date_to)
        window = and_(*conds)

        count_col = func.count().label("count")
        top_stmt = (
            select(SearchAnalytics.query, count_col)
            .where(window)
            .group_by(SearchAnalytics.query)
            .order_by(count_col.desc(), SearchAnalytics.query.asc())
            .limit(limit)
        )
        stats_stmt = select(
            func.count(SearchAnalytics.id),
            func.avg(SearchAnalytics.result_count),
            func.avg(SearchAnalytics.search_time),
        ).where(window)

        try:
            async with self.session_maker() as db:
                top = (await db.execute(top_stmt)).all()
                total, avg_results, avg_time = (await db.execute(stats_stmt)).one()
        except SQLAlchemyError as exc:
            logger.exception("Search analytics query failed for project %s", project_id)
            raise SearchError("Search analytics failed") from exc

        return SearchAnalyticsSummary(
            top_queries=[QueryCount(query=q, count=int(c)) for q, c in top],
            total_searches=int(total or 0),
            average_result_count=float(avg_results or 0.0),
            average_search_time=float(avg_time or 0.0),
        )

    async def purge_search_analytics(self, older_than: datetime) -> int:
        """Retention policy: drop analytics rows created before ``older_than``."""
        async with self.session_maker() as db:
            result = await db.execute(
                delete(SearchAnalytics).where(SearchAnalytics.created_at < older_than)
            )
            await db.commit()
        deleted = result.rowcount or 0
        logger.info("Purged %d search analytics row(s) older than %s", deleted, older_than.isoformat())
        return deleted

    async def _reindex(self, *conds) -> int:
        try:
            async with self.session_maker() as db:
                strategy = self._strategy_for(db)
                result = await db.execute(
                    update(Story)
                    .where(Story.status == StoryStatus.ready.value, *conds)
                    .values(strategy.reindex_values())
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
        except SQLAlchemyError as exc:
            logger.exception("Reindex failed")
            raise SearchError("Reindex failed") from exc
        return max(0, result.rowcount or 0)

    async def reindex_story(self, story_id: int) -> int:
        count = await self._reindex(Story.id == story_id)
        logger.debug("Reindexed story %s (%d row)", story_id, count)
        return count

    async def reindex_project(self, project_id: int) -> int:
        count = await self._reindex(Story.project_id == project_id)
        logger.info("Reindexed %d ready story(ies) in project %s", count, project_id)
        return count


__all__ = [
    "SearchService",
    "SearchAnalyticsEvent",
    "sanitize_search_query",
]
