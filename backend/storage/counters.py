"""SQLite-backed quota counters.

Each admitted event is one row in quota_events. Counting and inserting
happen inside a single BEGIN IMMEDIATE transaction, which takes SQLite's
write lock before the first read, so concurrent workers (threads or
processes sharing the database file) are serialized on every check.
"""

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone

from movie_games.quota import Limit

from .core import transaction

logger = logging.getLogger(__name__)

# Events older than this are never counted again.
RETENTION = timedelta(days=2)


def _ts(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


class SqliteCounterStore:
    """CounterStore over the quota_events table."""

    def check_and_increment(self, limits: Sequence[Limit], now: datetime) -> Limit | None:
        with transaction(immediate=True) as con:
            for limit in limits:
                if not limit.enforced:
                    continue
                (count,) = con.execute(
                    "SELECT COUNT(*) FROM quota_events WHERE counter_key = ? AND created_at >= ?",
                    (limit.key, _ts(limit.since(now))),
                ).fetchone()
                if count >= limit.maximum:
                    logger.debug("counter %s full (%d/%d)", limit.key, count, limit.maximum)
                    return limit

            keys = dict.fromkeys(limit.key for limit in limits)
            con.executemany(
                "INSERT INTO quota_events (counter_key, created_at) VALUES (?, ?)",
                [(key, _ts(now)) for key in keys],
            )
            con.execute("DELETE FROM quota_events WHERE created_at < ?", (_ts(now - RETENTION),))
        return None

    def count(self, key: str, since: datetime) -> int:
        with transaction() as con:
            (count,) = con.execute(
                "SELECT COUNT(*) FROM quota_events WHERE counter_key = ? AND created_at >= ?",
                (key, _ts(since)),
            ).fetchone()
        return count
