"""Query strategies for story search.

A strategy is chosen once per engine: PostgreSQL gets ranked full-text
search over ``story.search_vector``; every other store gets
case-insensitive substring matching with a constant rank. Both produce
the same columns (``rank``, ``headline``) so the service code that
builds the page never branches on the backend.
"""
from __future__ import annotations

import logging
import re
from functools import lru_cache

import sqlalchemy as sa
from sqlalchemy import func, or_

from saga.models import Story
from saga.settings.config import settings

logger = logging.getLogger(__name__)

_TS_CONFIG_RE = re.compile(r"^[a-z_]+$")
_WEIGHT_A = sa.literal_column("'A'")
_WEIGHT_B = sa.literal_column("'B'")


def escape_like(value: str, escape: str = "\\") -> str:
    """Escape LIKE wildcards so user text only ever matches literally."""
    return (
        value.replace(escape, escape + escape)
        .replace("%", escape + "%")
        .replace("_", escape + "_")
    )


class QueryStrategy:
    name = "base"
    supports_ranking = False

    def match(self, query: str) -> sa.ColumnElement[bool]:
        raise NotImplementedError

    def rank(self, query: str) -> sa.ColumnElement[float]:
        raise NotImplementedError

    def headline(self, query: str) -> sa.ColumnElement[str]:
        raise NotImplementedError

    def reindex_values(self) -> dict:
        """Column -> SQL expression recomputing the derived search field."""
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class NativeRankedStrategy(QueryStrategy):
    """PostgreSQL full-text search: weighted tsvector, ts_rank, ts_headline."""

    name = "native"
    supports_ranking = True

    def __init__(self, ts_config: str | None = None):
        ts_config = (ts_config or settings.SEARCH_TS_CONFIG).strip().lower()
        if not _TS_CONFIG_RE.match(ts_config):
            raise ValueError(f"invalid text search configuration: {ts_config!r}")
        self.ts_config = ts_config

    def _tsquery(self, query: str):
        return func.plainto_tsquery(self.ts_config, query)

    def match(self, query):
        return Story.search_vector.bool_op("@@")(self._tsquery(query))

    def rank(self, query):
        return func.ts_rank(Story.search_vector, self._tsquery(query), type_=sa.Float)

    def headline(self, query):
        return func.ts_headline(
            self.ts_config,
            func.coalesce(Story.transcript, Story.title),
            self._tsquery(query),
            "MaxWords=20, MinWords=5",
            type_=sa.Text,
        )

    def reindex_values(self):
        # title outweighs transcript: A > B. setweight takes a "char" weight,
        # which a bound varchar parameter does not cast to.
        title_vec = func.setweight(
            func.to_tsvector(self.ts_config, func.coalesce(Story.title, "")), _WEIGHT_A
        )
        body_vec = func.setweight(
            func.to_tsvector(self.ts_config, func.coalesce(Story.transcript, "")), _WEIGHT_B
        )
        return {Story.search_vector: title_vec.op("||")(body_vec)}


class SubstringFallbackStrategy(QueryStrategy):
    """Portable ILIKE matching; every hit ranks 1.0 and results sort by date."""

    name = "fallback"
    supports_ranking = False

    def __init__(self, headline_chars: int | None = None):
        self.headline_chars = headline_chars or settings.SEARCH_HEADLINE_CHARS

    def match(self, query):
        pattern = f"%{escape_like(query)}%"
        return or_(
            Story.title.ilike(pattern, escape="\\"),
            Story.transcript.ilike(pattern, escape="\\"),
            Story.search_content.ilike(pattern, escape="\\"),
        )

    def rank(self, query):
        return sa.literal(1.0, type_=sa.Float)

    def headline(self, query):
        return func.substr(func.coalesce(Story.transcript, Story.title), 1, self.headline_chars)

    def reindex_values(self):
        content = func.coalesce(Story.title, "") + " " + func.coalesce(Story.transcript, "")
        return {Story.search_content: content}


STRATEGIES = {
    NativeRankedStrategy.name: NativeRankedStrategy,
    SubstringFallbackStrategy.name: SubstringFallbackStrategy,
}


@lru_cache(maxsize=None)
def resolve_strategy(dialect_name: str, override: str = "auto") -> QueryStrategy:
    """Pick the strategy for a store; cached so it is decided once per dialect."""
    override = (override or "auto").lower()
    if override in STRATEGIES:
        chosen = STRATEGIES[override]()
    elif override == "auto":
        chosen = NativeRankedStrategy() if dialect_name == "postgresql" else SubstringFallbackStrategy()
    else:
        raise ValueError(f"unknown search backend {override!r}")
    logger.info("Search backend for dialect %s: %s", dialect_name, chosen.name)
    return chosen


__all__ = [
    "QueryStrategy",
    "NativeRankedStrategy",
    "SubstringFallbackStrategy",
    "resolve_strategy",
    "escape_like",
]
