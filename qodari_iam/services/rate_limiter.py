"""Persistent sliding-window rate limiting backed by the database."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import case
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from qodari_iam.core.clock import utcnow
from qodari_iam.core.exceptions import RateLimitExceededError
from qodari_iam.core.metrics import RATE_LIMITED
from qodari_iam.models.security import RateLimitCounter

logger = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@dataclass(frozen=True)
class RateLimitResult:
    success: bool
    limit: int
    remaining: int
    reset_at: datetime
    count: int

    def headers(self) -> dict:
        reset_epoch = int((self.reset_at - datetime(1970, 1, 1)).total_seconds())
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(reset_epoch),
        }


# (key, limit, window_ms)
RateLimitCheck = Tuple[str, int, int]


class RateLimiter:
    """Counter per key with one atomic upsert per hit.

    The row is created on first hit, reset once its window has elapsed and
    incremented otherwise, all inside a single INSERT .. ON CONFLICT DO UPDATE
    so concurrent workers never under-count.
    """

    @staticmethod
    def _insert_for(db: Session):
        dialect = db.get_bind().dialect.name
        try:
            return _DIALECT_INSERTS[dialect]
        except KeyError:
            raise RuntimeError(f"Rate limiter has no upsert support for dialect '{dialect}'") from None

    def check(self, db: Session, key: str, limit: int, window_ms: int) -> RateLimitResult:
        now = utcnow()
        window_boundary = now - timedelta(milliseconds=window_ms)
        table = RateLimitCounter.__table__
        window_elapsed = table.c.window_start < window_boundary

        stmt = self._insert_for(db)(table).values(
            key=key,
            window_start=now,
            count=1,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.key],
            set_={
                "window_start": case((window_elapsed, now), else_=table.c.window_start),
                "count": case((window_elapsed, 1), else_=table.c.count + 1),
                "updated_at": now,
            },
        ).returning(table.c.window_start, table.c.count)

        row = db.execute(stmt).one()
        db.commit()

        window_start, count = row
        success = count <= limit
        return RateLimitResult(
            success=success,
            limit=limit,
            remaining=max(limit - count, 0),
            reset_at=window_start + timedelta(milliseconds=window_ms),
            count=count,
        )

    def enforce(
        self,
        db: Session,
        checks: Iterable[RateLimitCheck],
        message: str = "Too many requests. Please try again later.",
        scope: str = "default",
    ) -> List[RateLimitResult]:
        """Run every check and require all of them to pass."""
        results = [self.check(db, key, limit, window_ms) for key, limit, window_ms in checks]
        failed: Optional[RateLimitResult] = None
        for result in results:
            if not result.success and (failed is None or result.reset_at > failed.reset_at):
                failed = result
        if failed is not None:
            RATE_LIMITED.labels(scope).inc()
            logger.warning("Rate limit exceeded scope=%s reset_at=%s", scope, failed.reset_at.isoformat())
            raise RateLimitExceededError(message, headers=failed.headers())
        return results

    def reset(self, db: Session, key: str) -> None:
        db.query(RateLimitCounter).filter(RateLimitCounter.key == key).delete()
        db.commit()


rate_limiter = RateLimiter()
