"""
Tests for StatusOrchestrator: one resolution cycle end to end
(SQLite store + fake alert/audit/error-tracker sinks)
"""

import asyncio
from datetime import datetime, timedelta, UTC

import pytest
from loguru import logger
from sqlalchemy import func, select

from algostudio.core.enums import StrategyStatus, StatusConfidence
from algostudio.core.exceptions import InstanceNotFoundError, StoreUnavailableError
from algostudio.database.models import LiveEAInstance
from algostudio.services.strategy_status.models import StrategyStatusTransition
from algostudio.services.strategy_status.orchestrator import StatusOrchestrator
from algostudio.services.strategy_status.store import StatusStore

from conftest import FakeAlertSink, FakeAuditSink, NOW


async def count_transitions(session_maker, instance_id="inst-1") -> int:
    async with session_maker() as session:
        result = await session.execute(
            select(func.count(StrategyStatusTransition.id)).where(
                StrategyStatusTransition.instance_id == instance_id
            )
        )
        return result.scalar_one()


async def cached_status(session_maker, instance_id="inst-1"):
    async with session_maker() as session:
        row = await session.get(LiveEAInstance, instance_id)
        return row.strategy_status


def make_orchestrator(store, alert_sink, audit_sink, error_tracker):
    return StatusOrchestrator(
        store=store,
        alert_sink=alert_sink,
        audit_sink=audit_sink,
        error_tracker=error_tracker,
        clock=lambda: NOW,
    )


# =============================================================================
# Resolution + COMPARE
# =============================================================================


@pytest.mark.asyncio
async def test_first_resolution_persists_and_alerts(
    orchestrator, make_instance, session_maker, alert_sink, audit_sink
):
    await make_instance()

    result = await orchestrator.compute_and_cache_status("inst-1")
    await orchestrator.drain()

    assert result.status == StrategyStatus.CONSISTENT
    assert result.confidence == StatusConfidence.HIGH
    assert result.changed is True
    assert result.explanation.startswith("Proven strategy")
    assert await cached_status(session_maker) == "CONSISTENT"
    assert await count_transitions(session_maker) == 1

    assert len(alert_sink.sent) == 1
    alert = alert_sink.sent[0]
    assert alert.alert_type == "STRATEGY_STATUS_CHANGE"
    assert alert.user_id == "user-1"
    assert alert.ea_name == "Trend Rider"
    assert alert.message.startswith("Strategy status changed from UNKNOWN to CONSISTENT")

    assert len(audit_sink.entries) == 1
    entry = audit_sink.entries[0]
    assert entry.event_type == "live.strategy_status_change"
    assert entry.resource_type == "live_ea_instance"
    assert entry.resource_id == "inst-1"
    assert entry.metadata["from"] is None
    assert entry.metadata["to"] == "CONSISTENT"
    assert entry.metadata["confidence"] == "HIGH"


@pytest.mark.asyncio
async def test_no_op_stability(orchestrator, make_instance, session_maker, alert_sink, audit_sink):
    await make_instance(strategy_status="CONSISTENT")

    first = await orchestrator.compute_and_cache_status("inst-1")
    second = await orchestrator.compute_and_cache_status("inst-1")
    await orchestrator.drain()

    assert first.changed is False
    assert second.changed is False
    assert first == second
    assert await count_transitions(session_maker) == 0
    assert alert_sink.sent == []
    assert audit_sink.entries == []


@pytest.mark.asyncio
async def test_rerun_after_change_is_no_op(orchestrator, make_instance, session_maker):
    await make_instance(strategy_status="TESTING", health={"status": "WARNING"})

    first = await orchestrator.compute_and_cache_status("inst-1")
    second = await orchestrator.compute_and_cache_status("inst-1")
    await orchestrator.drain()

    assert first.changed is True
    assert first.status == StrategyStatus.MONITORING
    assert second.changed is False
    assert await count_transitions(session_maker) == 1


@pytest.mark.asyncio
async def test_confidence_computed_even_when_unchanged(orchestrator, make_instance):
    await make_instance(
        strategy_status="CONSISTENT",
        health={"trades_sampled": 30, "window_days": 90},
    )

    result = await orchestrator.compute_and_cache_status("inst-1")

    assert result.changed is False
    assert result.confidence == StatusConfidence.MEDIUM


@pytest.mark.asyncio
async def test_missing_health_snapshot_is_testing_low(orchestrator, make_instance):
    await make_instance(with_health=False)

    result = await orchestrator.compute_and_cache_status("inst-1")

    assert result.status == StrategyStatus.TESTING
    assert result.confidence == StatusConfidence.LOW


@pytest.mark.asyncio
async def test_missing_baseline_is_testing(orchestrator, make_instance):
    await make_instance(strategy_version_id=None)

    result = await orchestrator.compute_and_cache_status("inst-1")

    assert result.status == StrategyStatus.TESTING


@pytest.mark.asyncio
async def test_unverified_chain(orchestrator, make_instance):
    await make_instance(last_seq_no=0, health={"status": "DEGRADED"})

    result = await orchestrator.compute_and_cache_status("inst-1")

    assert result.status == StrategyStatus.UNVERIFIED


@pytest.mark.asyncio
async def test_stale_heartbeat_is_offline(orchestrator, make_instance):
    await make_instance(heartbeat_age=timedelta(minutes=20))

    result = await orchestrator.compute_and_cache_status("inst-1")

    assert result.status == StrategyStatus.OFFLINE


@pytest.mark.asyncio
async def test_soft_deleted_instance_is_retired(orchestrator, make_instance):
    await make_instance(deleted_at=NOW - timedelta(days=1), status="ERROR")

    result = await orchestrator.compute_and_cache_status("inst-1")

    assert result.status == StrategyStatus.RETIRED


@pytest.mark.asyncio
async def test_explanation_uses_gathered_input(orchestrator, make_instance):
    await make_instance(strategy_status="CONSISTENT", health={"drift_detected": True})

    result = await orchestrator.compute_and_cache_status("inst-1")

    assert result.status == StrategyStatus.MONITORING
    assert "drift" in result.explanation


@pytest.mark.asyncio
async def test_legacy_cached_name_is_rewritten(orchestrator, make_instance, session_maker):
    await make_instance(strategy_status="VERIFIED")

    result = await orchestrator.compute_and_cache_status("inst-1")
    await orchestrator.drain()

    assert result.changed is True
    assert await cached_status(session_maker) == "CONSISTENT"


# =============================================================================
# Alerts: silent transitions + flapping
# =============================================================================


@pytest.mark.asyncio
@pytest.mark.parametrize("cached,health", [
    ("TESTING", {"status": "WARNING"}),
    ("TESTING", {"status": "HEALTHY"}),
    ("MONITORING", {"status": "HEALTHY"}),
])
async def test_silent_transitions_never_alert(
    orchestrator, make_instance, session_maker, alert_sink, audit_sink, cached, health
):
    await make_instance(strategy_status=cached, health=health)

    result = await orchestrator.compute_and_cache_status("inst-1")
    await orchestrator.drain()

    assert result.changed is True
    assert alert_sink.sent == []
    assert len(audit_sink.entries) == 1
    assert await count_transitions(session_maker) == 1


@pytest.mark.asyncio
async def test_backward_transition_alerts(orchestrator, make_instance, alert_sink):
    await make_instance(strategy_status="CONSISTENT", health={"status": "DEGRADED"})

    result = await orchestrator.compute_and_cache_status("inst-1")
    await orchestrator.drain()

    assert result.status == StrategyStatus.DEGRADED
    assert len(alert_sink.sent) == 1
    assert "from CONSISTENT to DEGRADED" in alert_sink.sent[0].message


@pytest.mark.asyncio
async def test_flapping_suppresses_alert_but_keeps_audit(
    orchestrator, make_instance, add_transitions, session_maker, alert_sink, audit_sink
):
    await make_instance(strategy_status="MONITORING", health={"status": "DEGRADED"})
    await add_transitions(
        "inst-1",
        [("MONITORING", "DEGRADED"), ("DEGRADED", "MONITORING")] * 3,
        start=NOW - timedelta(hours=6),
    )

    result = await orchestrator.compute_and_cache_status("inst-1")
    await orchestrator.drain()

    assert result.changed is True
    assert result.status == StrategyStatus.DEGRADED
    assert alert_sink.sent == []
    assert await cached_status(session_maker) == "DEGRADED"
    assert await count_transitions(session_maker) == 7
    assert len(audit_sink.entries) == 1
    assert audit_sink.entries[0].metadata["alert_suppressed"] is True


@pytest.mark.asyncio
async def test_two_alternations_do_not_suppress(
    orchestrator, make_instance, add_transitions, alert_sink
):
    await make_instance(strategy_status="MONITORING", health={"status": "DEGRADED"})
    await add_transitions(
        "inst-1",
        [
            ("OFFLINE", "UNVERIFIED"),
            ("UNVERIFIED", "TESTING"),
            ("TESTING", "MONITORING"),
            ("MONITORING", "DEGRADED"),
            ("DEGRADED", "MONITORING"),
            ("MONITORING", "OFFLINE"),
        ],
        start=NOW - timedelta(hours=6),
    )

    await orchestrator.compute_and_cache_status("inst-1")
    await orchestrator.drain()

    assert len(alert_sink.sent) == 1


@pytest.mark.asyncio
async def test_flapping_outside_window_is_ignored(
    orchestrator, make_instance, add_transitions, alert_sink
):
    await make_instance(strategy_status="MONITORING", health={"status": "DEGRADED"})
    await add_transitions(
        "inst-1",
        [("MONITORING", "DEGRADED"), ("DEGRADED", "MONITORING")] * 3,
        start=NOW - timedelta(days=3),
    )

    await orchestrator.compute_and_cache_status("inst-1")
    await orchestrator.drain()

    assert len(alert_sink.sent) == 1


# =============================================================================
# Side-effect failures
# =============================================================================


@pytest.mark.asyncio
async def test_alert_failure_is_isolated(store, make_instance, session_maker, error_tracker):
    audit_sink = FakeAuditSink()
    orchestrator = make_orchestrator(store, FakeAlertSink(fail=True), audit_sink, error_tracker)
    await make_instance(strategy_status="CONSISTENT", health={"status": "DEGRADED"})

    result = await orchestrator.compute_and_cache_status("inst-1")
    await orchestrator.drain()

    assert result.changed is True
    assert await cached_status(session_maker) == "DEGRADED"
    assert await count_transitions(session_maker) == 1
    assert len(audit_sink.entries) == 1
    assert len(error_tracker.captured) == 1
    error, context = error_tracker.captured[0]
    assert isinstance(error, RuntimeError)
    assert context["side_effect"] == "alert"
    assert context["instance_id"] == "inst-1"


@pytest.mark.asyncio
async def test_audit_failure_is_isolated(store, make_instance, session_maker, error_tracker):
    alert_sink = FakeAlertSink()
    orchestrator = make_orchestrator(store, alert_sink, FakeAuditSink(fail=True), error_tracker)
    await make_instance(strategy_status="CONSISTENT", health={"status": "DEGRADED"})

    result = await orchestrator.compute_and_cache_status("inst-1")
    await orchestrator.drain()

    assert result.status == StrategyStatus.DEGRADED
    assert len(alert_sink.sent) == 1
    assert await count_transitions(session_maker) == 1
    assert [context["side_effect"] for _, context in error_tracker.captured] == ["audit"]


@pytest.mark.asyncio
async def test_side_effects_do_not_block_result(make_instance, store, error_tracker):
    release = asyncio.Event()

    class SlowAlertSink(FakeAlertSink):
        async def send(self, payload):
            await release.wait()
            await super().send(payload)

    alert_sink = SlowAlertSink()
    orchestrator = make_orchestrator(store, alert_sink, FakeAuditSink(), error_tracker)
    await make_instance(strategy_status="CONSISTENT", health={"status": "DEGRADED"})

    result = await orchestrator.compute_and_cache_status("inst-1")

    assert result.changed is True
    assert orchestrator.pending_side_effects == 1
    assert alert_sink.sent == []

    release.set()
    await orchestrator.drain()

    assert orchestrator.pending_side_effects == 0
    assert len(alert_sink.sent) == 1


# =============================================================================
# Errors
# =============================================================================


@pytest.mark.asyncio
async def test_unknown_instance(orchestrator):
    with pytest.raises(InstanceNotFoundError) as exc_info:
        await orchestrator.compute_and_cache_status("missing")

    assert exc_info.value.retryable is False
    assert exc_info.value.instance_id == "missing"


class FailingHealthStore(StatusStore):
    async def get_latest_health(self, instance_id):
        raise StoreUnavailableError("get_latest_health", ConnectionError("db down"))


class FailingPersistStore(StatusStore):
    async def update_cached_status(self, instance_id, status, updated_at):
        raise StoreUnavailableError("update_cached_status", ConnectionError("db down"))


@pytest.mark.asyncio
async def test_gather_failure_leaves_cache_untouched(
    session_maker, make_instance, alert_sink, audit_sink, error_tracker
):
    orchestrator = make_orchestrator(
        FailingHealthStore(session_maker), alert_sink, audit_sink, error_tracker
    )
    await make_instance(strategy_status="CONSISTENT", health={"status": "DEGRADED"})

    with pytest.raises(StoreUnavailableError) as exc_info:
        await orchestrator.compute_and_cache_status("inst-1")
    await orchestrator.drain()

    assert exc_info.value.retryable is True
    assert await cached_status(session_maker) == "CONSISTENT"
    assert await count_transitions(session_maker) == 0
    assert alert_sink.sent == []
    assert audit_sink.entries == []
    assert error_tracker.captured == []


@pytest.mark.asyncio
async def test_persist_failure_has_no_side_effects(
    session_maker, make_instance, alert_sink, audit_sink, error_tracker
):
    orchestrator = make_orchestrator(
        FailingPersistStore(session_maker), alert_sink, audit_sink, error_tracker
    )
    await make_instance(strategy_status="CONSISTENT", health={"status": "DEGRADED"})

    with pytest.raises(StoreUnavailableError):
        await orchestrator.compute_and_cache_status("inst-1")
    await orchestrator.drain()

    assert orchestrator.pending_side_effects == 0
    assert await count_transitions(session_maker) == 0
    assert alert_sink.sent == []
    assert audit_sink.entries == []


# =============================================================================
# Concurrency
# =============================================================================


@pytest.mark.asyncio
async def test_concurrent_cycles_for_same_instance_apply_once(
    orchestrator, make_instance, session_maker, audit_sink
):
    await make_instance(strategy_status="CONSISTENT", health={"status": "DEGRADED"})

    results = await asyncio.gather(*(
        orchestrator.compute_and_cache_status("inst-1") for _ in range(5)
    ))
    await orchestrator.drain()

    assert sum(result.changed for result in results) == 1
    assert {result.status for result in results} == {StrategyStatus.DEGRADED}
    assert await count_transitions(session_maker) == 1
    assert len(audit_sink.entries) == 1


@pytest.mark.asyncio
async def test_instances_resolve_independently(orchestrator, make_instance):
    await make_instance(instance_id="a", health={"status": "WARNING"})
    await make_instance(instance_id="b", status="ERROR")

    a, b = await asyncio.gather(
        orchestrator.compute_and_cache_status("a"),
        orchestrator.compute_and_cache_status("b"),
    )
    await orchestrator.drain()

    assert a.status == StrategyStatus.MONITORING
    assert b.status == StrategyStatus.ERROR


@pytest.mark.asyncio
async def test_locks_released_after_cycles(orchestrator, make_instance):
    await make_instance(strategy_status="CONSISTENT", health={"status": "DEGRADED"})

    for n in range(200):
        with pytest.raises(InstanceNotFoundError):
            await orchestrator.compute_and_cache_status(f"missing-{n}")
    await orchestrator.compute_and_cache_status("inst-1")
    await asyncio.gather(*(
        orchestrator.compute_and_cache_status("inst-1") for _ in range(5)
    ))
    await orchestrator.drain()

    assert orchestrator._locks == {}
    assert not orchestrator._lock_users


@pytest.mark.asyncio
async def test_waiting_cycle_keeps_lock_until_done(orchestrator, make_instance):
    await make_instance(strategy_status="CONSISTENT", health={"status": "DEGRADED"})

    first = asyncio.create_task(orchestrator.compute_and_cache_status("inst-1"))
    second = asyncio.create_task(orchestrator.compute_and_cache_status("inst-1"))
    await asyncio.sleep(0)

    assert list(orchestrator._locks) == ["inst-1"]
    assert orchestrator._lock_users["inst-1"] == 2

    results = await asyncio.gather(first, second)
    await orchestrator.drain()

    assert [result.changed for result in results] == [True, False]
    assert orchestrator._locks == {}


# =============================================================================
# Error reporting
# =============================================================================


@pytest.mark.asyncio
async def test_failed_side_effects_reported_once(store, make_instance, error_tracker):
    orchestrator = make_orchestrator(
        store, FakeAlertSink(fail=True), FakeAuditSink(fail=True), error_tracker
    )
    await make_instance(strategy_status="CONSISTENT", health={"status": "DEGRADED"})
    error_records = []
    sink_id = logger.add(error_records.append, level="ERROR")
    try:
        await orchestrator.compute_and_cache_status("inst-1")
        await orchestrator.drain()
    finally:
        logger.remove(sink_id)

    assert [context["side_effect"] for _, context in error_tracker.captured] == [
        "alert",
        "audit",
    ]
    # ERROR-level records would reach Sentry a second time through the log sink
    assert error_records == []


@pytest.mark.asyncio
async def test_store_outage_is_not_logged_as_error(
    session_maker, make_instance, alert_sink, audit_sink, error_tracker
):
    orchestrator = make_orchestrator(
        FailingHealthStore(session_maker), alert_sink, audit_sink, error_tracker
    )
    await make_instance()
    error_records = []
    sink_id = logger.add(error_records.append, level="ERROR")
    try:
        with pytest.raises(StoreUnavailableError):
            await orchestrator.compute_and_cache_status("inst-1")
    finally:
        logger.remove(sink_id)

    assert error_records == []
    assert error_tracker.captured == []
