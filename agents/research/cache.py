"""Research cache shared by all users, keyed by (topic, jurisdiction)."""
import logging
import re
from datetime import datetime, timedelta
from typing import Callable, ContextManager, Optional

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from database.connection import get_db_session
from database.models import ResearchCacheEntry
from .state import CachedResearch

logger = logging.getLogger(__name__)

MAX_SLUG_LENGTH = 50

_UPSERT_DIALECTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


def slugify(text: str) -> str:
    """Normalize text into a cache-key fragment.

    Lowercases, drops non-word characters, collapses whitespace and
    underscores into single underscores and truncates to 50 characters.
    Idempotent: ``slugify(slugify(x)) == slugify(x)``.
    """
    s = re.sub(r"[^\w\s]", "", (text or "").lower())
    s = re.sub(r"[\s_]+", "_", s.strip()).strip("_")
    return s[:MAX_SLUG_LENGTH].strip("_")


def make_cache_key(topic: str, jurisdiction: str) -> str:
    return f"{slugify(topic)}_{slugify(jurisdiction)}"


def _snapshot(row: ResearchCacheEntry) -> CachedResearch:
    return CachedResearch(
        cache_key=row.cache_key,
        topic=row.topic,
        jurisdiction=row.jurisdiction,
        research_output=row.research_output,
        sources=row.sources or "",
        last_verified_date=row.last_verified_date,
        access_count=row.access_count or 0,
    )


class ResearchCache:
    """Lookup/store of synthesized research briefs.

    A hit bumps ``access_count`` and nothing else. When ``ttl_days`` is
    positive, entries whose ``last_verified_date`` is older than that are
    reported as misses so the next research run refreshes them.
    """

    def __init__(
        self,
        ttl_days: int = 0,
        session_factory: Callable[[], ContextManager[Session]] = get_db_session,
    ):
        self.ttl_days = ttl_days
        self._session_factory = session_factory

    def is_stale(self, last_verified: datetime, now: Optional[datetime] = None) -> bool:
        if self.ttl_days <= 0:
            return False
        return (now or datetime.utcnow()) - last_verified > timedelta(days=self.ttl_days)

    def lookup(self, cache_key: str) -> Optional[CachedResearch]:
        """Return the entry for ``cache_key``, counting the access, or None on a miss."""
        with self._session_factory() as db:
            row = db.execute(
                select(ResearchCacheEntry).where(ResearchCacheEntry.cache_key == cache_key)
            ).scalar_one_or_none()
            if row is None:
                return None
            if self.is_stale(row.last_verified_date):
                logger.info(
                    "Research cache entry stale | key=%s | verified=%s",
                    cache_key, row.last_verified_date.isoformat(),
                )
                return None

            db.execute(
                update(ResearchCacheEntry)
                .where(ResearchCacheEntry.cache_key == cache_key)
                .values(access_count=ResearchCacheEntry.access_count + 1)
                .execution_options(synchronize_session=False)
            )
            db.refresh(row)
            return _snapshot(row)

    def store(self, topic: str, jurisdiction: str, research_output: str, sources: str = "") -> CachedResearch:
        """Write a brief under the key derived from (topic, jurisdiction).

        An existing row for the same key (a concurrent writer, or a stale
        entry) is overwritten and its access count kept.
        """
        cache_key = make_cache_key(topic, jurisdiction)
        now = datetime.utcnow()
        with self._session_factory() as db:
            insert = _UPSERT_DIALECTS.get(db.get_bind().dialect.name)
            if insert is not None:
                stmt = insert(ResearchCacheEntry).values(
                    cache_key=cache_key,
                    topic=topic,
                    jurisdiction=jurisdiction,
                    research_output=research_output,
                    sources=sources,
                    last_verified_date=now,
                    access_count=0,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[ResearchCacheEntry.cache_key],
                    set_={
                        "research_output": stmt.excluded.research_output,
                        "sources": stmt.excluded.sources,
                        "last_verified_date": stmt.excluded.last_verified_date,
                        "updated_at": now,
                    },
                )
                db.execute(stmt)
            else:
                row = db.execute(
                    select(ResearchCacheEntry).where(ResearchCacheEntry.cache_key == cache_key)
                ).scalar_one_or_none()
                if row is None:
                    db.add(ResearchCacheEntry(
                        cache_key=cache_key,
                        topic=topic,
                        jurisdiction=jurisdiction,
                        research_output=research_output,
                        sources=sources,
                        last_verified_date=now,
                        access_count=0,
                    ))
                else:
                    row.research_output = research_output
                    row.sources = sources
                    row.last_verified_date = now
                db.flush()

            row = db.execute(
                select(ResearchCacheEntry).where(ResearchCacheEntry.cache_key == cache_key)
            ).scalar_one()
            logger.info("Research cache stored | key=%s | sources=%d", cache_key, len(sources.splitlines()))
            return _snapshot(row)
