"""Fixed-window rate limiter backed by the rate_limit_windows table.

Each check is a single INSERT ... ON CONFLICT DO UPDATE round-trip, so
concurrent callers never read-then-write the counter.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import uuid4

from sqlalchemy import case
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session

from notifier.clock import utc_now
from notifier.models.rate_limit import RateLimitWindow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_in_seconds: int
    limit: int


class RateLimiter:
    """Counts calls per (client_key, function_name) in fixed windows.

    A burst straddling a window boundary can briefly reach twice the limit.
    """

    def __init__(self, window_seconds: int = 60) -> None:
        self.window_seconds = window_seconds

    def _insert(self, session: Session):
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert
        if dialect == "sqlite":
            return sqlite_insert
        raise NotImplementedError(f"Rate limiter does not support {dialect}")

    def check_and_consume(
        self,
        session: Session,
        key: str,
        function_name: str,
        limit: int,
        window_seconds: int | None = None,
        now: datetime | None = None,
    ) -> RateLimitResult:
        """Consume one unit for ``key`` and report whether it was allowed.

        Commits the counter update immediately.
        """
        now = now or utc_now()
        window = window_seconds or self.window_seconds
        expires = now + timedelta(seconds=window)

        table = RateLimitWindow.__table__
        expired = table.c.window_expires_at <= now
        stmt = self._insert(session)(table).values(
            id=uuid4(),
            client_key=key,
            function_name=function_name,
            window_start=now,
            window_expires_at=expires,
            count=1,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.client_key, table.c.function_name],
            set_={
                "count": case((expired, 1), else_=table.c.count + 1),
                "window_start": case((expired, now), else_=table.c.window_start),
                "window_expires_at": case((expired, expires), else_=table.c.window_expires_at),
            },
        ).returning(table.c.count, table.c.window_expires_at)

        count, window_expires_at = session.exec(stmt).one()
        session.commit()

        reset_in = max(1, math.ceil((window_expires_at - now).total_seconds()))
        allowed = count <= limit
        if not allowed:
            logger.info(
                f"Rate limit reached for {function_name}:{key}",
                extra={"count": count, "limit": limit, "reset_in_seconds": reset_in},
            )
        return RateLimitResult(
            allowed=allowed,
            remaining=max(limit - count, 0),
            reset_in_seconds=reset_in,
            limit=limit,
        )
