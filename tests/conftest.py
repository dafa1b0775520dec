"""
Pytest configuration and fixtures for AlgoStudio Strategy Status tests
"""

from datetime import datetime, timedelta, UTC
from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from algostudio.database.models import (
    Base,
    LiveEAInstance,
    HealthSnapshot,
    BacktestBaseline,
    TrackRecordState,
)
from algostudio.services.strategy_status.models import StrategyStatusTransition
from algostudio.services.strategy_status.orchestrator import StatusOrchestrator
from algostudio.services.strategy_status.store import StatusStore


# Test database: SQLite file per test. Orchestrator tests run sessions
# concurrently, so every session needs its own connection (no StaticPool).
TEST_DATABASE_URL = "sqlite+aiosqlite:///{path}"

# Фиксированное "сейчас" для детерминированных циклов резолва
NOW = datetime(2026, 10, 17, 12, 0, 0, tzinfo=UTC)


@pytest.fixture(scope="function")
async def test_db_engine(tmp_path):
    """
    Create test database engine
    """
    engine = create_async_engine(
        TEST_DATABASE_URL.format(path=tmp_path / "status_test.db"),
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def session_maker(test_db_engine) -> async_sessionmaker[AsyncSession]:
    """
    Session maker bound to the test engine
    """
    return async_sessionmaker(test_db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """
    Create test database session
    """
    async with session_maker() as session:
        yield session
        await session.rollback()


# =============================================================================
# Seeding helpers
# =============================================================================


@pytest.fixture
def make_instance(session_maker):
    """
    Seed a live EA instance (healthy PROVEN defaults) with optional
    health snapshot, baseline and chain state.
    """

    async def _make(
        instance_id: str = "inst-1",
        user_id: str = "user-1",
        ea_name: str = "Trend Rider",
        status: str = "ONLINE",
        heartbeat_age: Optional[timedelta] = timedelta(seconds=30),
        lifecycle_phase: str = "PROVEN",
        strategy_version_id: Optional[str] = "ver-1",
        strategy_status: Optional[str] = None,
        deleted_at: Optional[datetime] = None,
        health: Optional[Dict[str, Any]] = None,
        with_health: bool = True,
        with_baseline: bool = True,
        last_seq_no: int = 42,
    ) -> str:
        async with session_maker() as session:
            session.add(LiveEAInstance(
                id=instance_id,
                user_id=user_id,
                ea_name=ea_name,
                status=status,
                last_heartbeat=NOW - heartbeat_age if heartbeat_age is not None else None,
                lifecycle_phase=lifecycle_phase,
                strategy_version_id=strategy_version_id,
                strategy_status=strategy_status,
                created_at=NOW - timedelta(days=120),
                deleted_at=deleted_at,
            ))
            if with_health:
                snapshot = {
                    "status": "HEALTHY",
                    "drift_detected": False,
                    "trades_sampled": 150,
                    "window_days": 90,
                    "confidence_lower": 0.50,
                    "confidence_upper": 0.60,
                    "created_at": NOW - timedelta(hours=1),
                }
                snapshot.update(health or {})
                session.add(HealthSnapshot(instance_id=instance_id, **snapshot))
            if with_baseline and strategy_version_id:
                existing = await session.execute(
                    select(BacktestBaseline.id).where(
                        BacktestBaseline.strategy_version_id == strategy_version_id
                    )
                )
                if existing.scalar_one_or_none() is None:
                    session.add(BacktestBaseline(strategy_version_id=strategy_version_id))
            if last_seq_no:
                session.add(TrackRecordState(instance_id=instance_id, last_seq_no=last_seq_no))
            await session.commit()
        return instance_id

    return _make


@pytest.fixture
def add_transitions(session_maker):
    """Seed transition history: list of (from, to) pairs, oldest first."""

    async def _add(instance_id: str, pairs, start: datetime = None, step=timedelta(minutes=30)):
        start = start or NOW - timedelta(hours=len(pairs))
        async with session_maker() as session:
            for index, (from_status, to_status) in enumerate(pairs):
                session.add(StrategyStatusTransition(
                    instance_id=instance_id,
                    from_status=from_status,
                    to_status=to_status,
                    confidence="MEDIUM",
                    created_at=start + step * index,
                ))
            await session.commit()

    return _add


# =============================================================================
# Fake collaborators
# =============================================================================


class FakeAlertSink:
    """Records alert payloads; optionally fails every send."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Any] = []

    async def send(self, payload):
        if self.fail:
            raise RuntimeError("telegram is down")
        self.sent.append(payload)
        return {"sent": 1, "rate_limited": 0}


class FakeAuditSink:
    """Records audit entries; optionally fails every record."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.entries: List[Any] = []

    async def record(self, entry):
        if self.fail:
            raise RuntimeError("audit db is down")
        self.entries.append(entry)


class FakeErrorTracker:
    """Records captured errors instead of sending them to Sentry."""

    def __init__(self):
        self.captured: List[tuple] = []

    def capture(self, error, context=None):
        self.captured.append((error, context or {}))


@pytest.fixture
def alert_sink():
    return FakeAlertSink()


@pytest.fixture
def audit_sink():
    return FakeAuditSink()


@pytest.fixture
def error_tracker():
    return FakeErrorTracker()


@pytest.fixture
def store(session_maker):
    return StatusStore(session_maker)


@pytest.fixture
def orchestrator(store, alert_sink, audit_sink, error_tracker):
    """Orchestrator over the SQLite store with a frozen clock"""
    return StatusOrchestrator(
        store=store,
        alert_sink=alert_sink,
        audit_sink=audit_sink,
        error_tracker=error_tracker,
        clock=lambda: NOW,
    )
