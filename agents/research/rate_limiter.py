"""Per-user daily quota for research attempts.

The counter lives in the ``user_research_limits`` table, one row per user per
UTC day. Consumption is a single upsert that increments the counter only
while it is below the ceiling, so concurrent requests from the same user
cannot push the count past the limit.
"""
import logging
from datetime import date, datetime
from typing import Callable, ContextManager, Optional

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database.connection import get_db_session
from database.models import ResearchRateLimit
from .state import RateLimitDecision

logger = logging.getLogger(__name__)

DEFAULT_DAILY_LIMIT = 5

_UPSERT_DIALECTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


def utc_today() -> date:
    return datetime.utcnow().date()


class ResearchRateLimiter:
    """Fixed per-user, per-day ceiling on research attempts."""

    def __init__(
        self,
        daily_limit: int = DEFAULT_DAILY_LIMIT,
        session_factory: Callable[[], ContextManager[Session]] = get_db_session,
    ):
        self.daily_limit = daily_limit
        self._session_factory = session_factory

    def check_and_consume(self, user_id: str, today: Optional[date] = None) -> RateLimitDecision:
        """Consume one research attempt for ``user_id`` on ``today`` (UTC) if quota remains.

        Returns ``allowed=False, remaining=0`` without touching the record once
        the limit is reached. If the store is unreachable the request is
        allowed (fail open).
        """
        day = today or utc_today()
        if self.daily_limit <= 0:
            return RateLimitDecision(allowed=False, remaining=0)

        try:
            with self._session_factory() as db:
                count = self._increment(db, user_id, day)
        except SQLAlchemyError as exc:
            logger.warning(
                "Rate limit store unavailable for user=%s, allowing research: %s", user_id, exc
            )
            return RateLimitDecision(allowed=True, remaining=max(self.daily_limit - 1, 0))

        if count is None:
            logger.info("Research quota exhausted | user=%s | date=%s", user_id, day.isoformat())
            return RateLimitDecision(allowed=False, remaining=0)

        remaining = max(self.daily_limit - count, 0)
        logger.info(
            "Research quota consumed | user=%s | date=%s | count=%d | remaining=%d",
            user_id, day.isoformat(), count, remaining,
        )
        return RateLimitDecision(allowed=True, remaining=remaining)

    def usage(self, user_id: str, today: Optional[date] = None) -> int:
        """Return how many attempts ``user_id`` has used on ``today``."""
        day = today or utc_today()
        with self._session_factory() as db:
            count = db.execute(
                select(ResearchRateLimit.query_count).where(
                    ResearchRateLimit.user_id == user_id,
                    ResearchRateLimit.query_date == day,
                )
            ).scalar_one_or_none()
        return count or 0

    def _increment(self, db: Session, user_id: str, day: date) -> Optional[int]:
        """Increment-with-ceiling; returns the new count or None when at the limit."""
        insert = _UPSERT_DIALECTS.get(db.get_bind().dialect.name)
        if insert is None:
            return self._increment_locked(db, user_id, day)

        stmt = (
            insert(ResearchRateLimit)
            .values(user_id=user_id, query_date=day, query_count=1)
            .on_conflict_do_update(
                index_elements=[ResearchRateLimit.user_id, ResearchRateLimit.query_date],
                set_={"query_count": ResearchRateLimit.query_count + 1},
                where=ResearchRateLimit.query_count < self.daily_limit,
            )
            .returning(ResearchRateLimit.query_count)
        )
        return db.execute(stmt).scalar_one_or_none()

    def _increment_locked(self, db: Session, user_id: str, day: date) -> Optional[int]:
        # Dialects without ON CONFLICT: row lock inside the session transaction.
        record = db.execute(
            select(ResearchRateLimit)
            .where(ResearchRateLimit.user_id == user_id, ResearchRateLimit.query_date == day)
            .with_for_update()
        ).scalar_one_or_none()
        if record is None:
            record = ResearchRateLimit(user_id=user_id, query_date=day, query_count=1)
            db.add(record)
            db.flush()
            return record.query_count
        if record.query_count >= self.daily_limit:
            return None
        record.query_count += 1
        db.flush()
        return record.query_count
