"""Tests for the quota gate (against the SQLite counter store) and ownership checks."""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from backend.storage import SqliteCounterStore
from movie_games.errors import DailyLimitExceeded, Forbidden, NotFound, RateLimited, ServiceBusy
from movie_games.quota import (
    GLOBAL_CREATIONS_PER_DAY,
    IDENTITY_CREATIONS_PER_DAY,
    QuotaGate,
    authorize_owner,
    same_identity,
)


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc))


@pytest.fixture
def store() -> SqliteCounterStore:
    return SqliteCounterStore()


@pytest.fixture
def gate(store, clock) -> QuotaGate:
    return QuotaGate(store, clock)


def _spread_creations(gate: QuotaGate, clock: FakeClock, identity: str, count: int, **kw) -> None:
    """Admit `count` creations spaced out so the short window never trips."""
    for _ in range(count):
        gate.admit_creation(identity, **kw)
        clock.advance(minutes=3)


# ---------------------------------------------------------------------------
# Creations
# ---------------------------------------------------------------------------

class TestCreationQuota:
    def test_third_creation_in_window_rate_limited(self, gate) -> None:
        gate.admit_creation("10.0.0.1")
        gate.admit_creation("10.0.0.1")
        with pytest.raises(RateLimited) as exc:
            gate.admit_creation("10.0.0.1")
        assert exc.value.code == "API_KEY_REQUIRED"

    def test_window_slides(self, gate, clock) -> None:
        gate.admit_creation("10.0.0.1")
        gate.admit_creation("10.0.0.1")
        clock.advance(minutes=5, seconds=1)
        gate.admit_creation("10.0.0.1")

    def test_identities_counted_separately(self, gate) -> None:
        gate.admit_creation("10.0.0.1")
        gate.admit_creation("10.0.0.1")
        gate.admit_creation("10.0.0.2")

    def test_own_credentials_skip_identity_limits(self, gate) -> None:
        for _ in range(5):
            gate.admit_creation("10.0.0.1", own_credentials=True)

    def test_rejection_consumes_nothing(self, gate, store, clock) -> None:
        gate.admit_creation("10.0.0.1")
        gate.admit_creation("10.0.0.1")
        with pytest.raises(RateLimited):
            gate.admit_creation("10.0.0.1")
        since = clock.now - timedelta(hours=1)
        assert store.count("create:10.0.0.1", since) == 2
        assert store.count("create", since) == 2

    def test_daily_identity_limit(self, gate, clock) -> None:
        _spread_creations(gate, clock, "10.0.0.1", IDENTITY_CREATIONS_PER_DAY)
        with pytest.raises(DailyLimitExceeded) as exc:
            gate.admit_creation("10.0.0.1")
        assert exc.value.code == "API_KEY_REQUIRED_DAILY_LIMIT"

    def test_daily_limit_resets_at_utc_midnight(self, gate, clock) -> None:
        clock.now = datetime(2026, 3, 1, 20, 0, tzinfo=timezone.utc)
        _spread_creations(gate, clock, "10.0.0.1", IDENTITY_CREATIONS_PER_DAY)
        # 30 * 3 minutes later it is 21:30 the same day
        with pytest.raises(DailyLimitExceeded):
            gate.admit_creation("10.0.0.1")
        clock.now = datetime(2026, 3, 2, 0, 1, tzinfo=timezone.utc)
        gate.admit_creation("10.0.0.1")

    def test_global_budget_applies_to_everyone(self, gate, clock) -> None:
        for i in range(GLOBAL_CREATIONS_PER_DAY):
            gate.admit_creation(f"10.0.1.{i}")
        with pytest.raises(ServiceBusy):
            gate.admit_creation("10.0.9.9", own_credentials=True)

    def test_loopback_spellings_share_a_counter(self, gate) -> None:
        gate.admit_creation("127.0.0.1")
        gate.admit_creation("::1")
        with pytest.raises(RateLimited):
            gate.admit_creation("127.0.0.1")


# ---------------------------------------------------------------------------
# Shares
# ---------------------------------------------------------------------------

class TestShareQuota:
    def test_three_shares_per_identity(self, gate) -> None:
        for _ in range(3):
            gate.admit_share("10.0.0.1")
        with pytest.raises(ServiceBusy):
            gate.admit_share("10.0.0.1")
        gate.admit_share("10.0.0.2")

    def test_shares_do_not_use_creation_quota(self, gate) -> None:
        for _ in range(3):
            gate.admit_share("10.0.0.1")
        gate.admit_creation("10.0.0.1")


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------

def test_concurrent_callers_never_exceed_limit(clock):
    """Many threads, separate connections: exactly two creations get through."""
    gate = QuotaGate(SqliteCounterStore(), clock)
    admitted: list[int] = []
    rejected: list[int] = []
    barrier = threading.Barrier(8)

    def worker(n: int) -> None:
        barrier.wait()
        try:
            gate.admit_creation("10.0.0.1")
            admitted.append(n)
        except RateLimited:
            rejected.append(n)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(admitted) == 2
    assert len(rejected) == 6


# ---------------------------------------------------------------------------
# Ownership
# ---------------------------------------------------------------------------

class TestOwnership:
    def test_loopback_is_one_identity(self) -> None:
        assert same_identity("127.0.0.1", "::1")
        assert not same_identity("10.0.0.1", "10.0.0.2")

    def test_owner_allowed(self) -> None:
        authorize_owner("10.0.0.1", "10.0.0.1")

    def test_missing_record_not_found(self) -> None:
        with pytest.raises(NotFound):
            authorize_owner(None, "10.0.0.1")

    def test_other_identity_forbidden(self) -> None:
        with pytest.raises(Forbidden) as exc:
            authorize_owner("10.0.0.1", "10.0.0.2")
        assert exc.value.status_code == 403
