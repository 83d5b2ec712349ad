"""Quota and ownership gate for mutating operations.

Counting is delegated to a CounterStore whose `check_and_increment` must be
atomic across processes: two concurrent callers must never both see
"under limit" for the same key. A rejected request consumes nothing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Protocol

from movie_games.errors import (
    DailyLimitExceeded,
    Forbidden,
    GateError,
    NotFound,
    RateLimited,
    ServiceBusy,
)

logger = logging.getLogger(__name__)

GLOBAL_CREATIONS_PER_DAY = 60
IDENTITY_CREATIONS_PER_DAY = 30
IDENTITY_CREATIONS_PER_WINDOW = 2
CREATION_WINDOW = timedelta(minutes=5)
GLOBAL_SHARES_PER_DAY = 20
IDENTITY_SHARES_PER_DAY = 3

LOOPBACK = frozenset({"127.0.0.1", "::1"})


@dataclass(frozen=True)
class Limit:
    """One quota scope.

    `window` None means "the current UTC day". Unenforced limits still
    record the event so the count stays truthful.
    """

    key: str
    maximum: int
    window: timedelta | None
    error: type[GateError]
    message: str
    enforced: bool = True

    def since(self, now: datetime) -> datetime:
        if self.window is None:
            return now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        return now - self.window


class CounterStore(Protocol):
    def check_and_increment(self, limits: Sequence[Limit], now: datetime) -> Limit | None:
        """Atomically count events for every limit's key since `limit.since(now)`.

        If any enforced limit is already at its maximum, record nothing and
        return that limit; otherwise record one event per distinct key and
        return None.
        """
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuotaGate:
    def __init__(self, store: CounterStore, clock: Callable[[], datetime] = _utcnow) -> None:
        self.store = store
        self.clock = clock

    def _admit(self, operation: str, identity: str, limits: list[Limit]) -> None:
        exceeded = self.store.check_and_increment(limits, self.clock())
        if exceeded is not None:
            logger.info("%s rejected for %s: %s", operation, identity, exceeded.key)
            raise exceeded.error(exceeded.message)
        logger.info("%s admitted for %s", operation, identity)

    def admit_creation(self, identity: str, own_credentials: bool = False) -> None:
        """Gate generate, import and expand calls.

        Callers with their own API key skip the per-identity limits but
        still count against the global budget.
        """
        identity = canonical_identity(identity)
        per_identity = not own_credentials
        self._admit("creation", identity, [
            Limit("create", GLOBAL_CREATIONS_PER_DAY, None, ServiceBusy,
                  "Service is busy today, please try again tomorrow"),
            Limit(f"create:{identity}", IDENTITY_CREATIONS_PER_DAY, None, DailyLimitExceeded,
                  "Daily free limit reached, please provide your own API key",
                  enforced=per_identity),
            Limit(f"create:{identity}", IDENTITY_CREATIONS_PER_WINDOW, CREATION_WINDOW, RateLimited,
                  "Too many requests, please wait a few minutes or provide your own API key",
                  enforced=per_identity),
        ])

    def admit_share(self, identity: str) -> None:
        identity = canonical_identity(identity)
        self._admit("share", identity, [
            Limit("share", GLOBAL_SHARES_PER_DAY, None, ServiceBusy,
                  "Sharing is busy today, please try again tomorrow"),
            Limit(f"share:{identity}", IDENTITY_SHARES_PER_DAY, None, ServiceBusy,
                  "Daily share limit reached, please try again tomorrow"),
        ])


# ---------------------------------------------------------------------------
# Ownership
# ---------------------------------------------------------------------------

def canonical_identity(identity: str) -> str:
    identity = identity.strip()
    return "127.0.0.1" if identity in LOOPBACK else identity


def same_identity(a: str, b: str) -> bool:
    return canonical_identity(a) == canonical_identity(b)


def authorize_owner(owner: str | None, caller: str) -> None:
    """Raise NotFound for a missing record and Forbidden for someone else's."""
    if owner is None:
        raise NotFound("Record not found")
    if not same_identity(owner, caller):
        raise Forbidden("You do not own this record")
