"""
Strategy Status Orchestrator

Один цикл резолва для одного инстанса:

    GATHER → RESOLVE → COMPARE → (NO-OP | PERSIST + side effects)

1. GATHER: instance, последний health snapshot, baseline, chain state.
   Сбой store → StoreUnavailableError, ничего не записано.
2. RESOLVE: StatusInput → статус; confidence считается ВСЕГДА.
3. COMPARE: кеш == новый статус → возврат без записей и side effects.
4. PERSIST: запись кеша, затем фоновая задача:
   flapping check → transition record → alert (если не silent и не flapping)
   → audit. Сбои side effects уходят в error tracker и не влияют на результат.

Циклы одного инстанса сериализуются per-id asyncio.Lock.
"""
import asyncio
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from typing import Any, Callable, Dict, Optional, Protocol, Set

from loguru import logger

from algostudio.core.enums import StrategyStatus, StatusConfidence
from algostudio.core.exceptions import InstanceNotFoundError
from algostudio.services.alert_service import AlertPayload
from algostudio.services.audit_service import AuditEntry
from algostudio.services.strategy_status.config import StrategyStatusConfig, get_config
from algostudio.services.strategy_status.confidence import (
    ConfidenceInput,
    ConfidenceInterval,
    resolve_status_confidence,
)
from algostudio.services.strategy_status.flapping import FlappingDetector
from algostudio.services.strategy_status.resolver import (
    StatusInput,
    get_status_explanation,
    resolve_strategy_status,
)
from algostudio.services.strategy_status.store import (
    HealthFacts,
    InstanceFacts,
    StatusStore,
)


class AlertSink(Protocol):
    async def send(self, payload: AlertPayload) -> Any: ...


class AuditSink(Protocol):
    async def record(self, entry: AuditEntry) -> Any: ...


class ErrorTracker(Protocol):
    def capture(self, error: BaseException, context: Optional[Dict[str, Any]] = None) -> None: ...


@dataclass(frozen=True)
class StatusResult:
    """Результат compute_and_cache_status."""
    status: StrategyStatus
    confidence: StatusConfidence
    changed: bool
    explanation: str = ""


@dataclass(frozen=True)
class StatusChange:
    """Контекст изменения статуса для фоновых side effects."""
    instance: InstanceFacts
    previous: Optional[StrategyStatus]
    new: StrategyStatus
    confidence: StatusConfidence
    status_input: StatusInput
    timestamp: datetime


def build_status_input(
    instance: InstanceFacts,
    health: Optional[HealthFacts],
    has_baseline: bool,
    chain_last_seq_no: int,
) -> StatusInput:
    """Собрать StatusInput из уже валидированных фактов."""
    return StatusInput(
        ea_status=instance.ea_status,
        last_heartbeat=instance.last_heartbeat,
        created_at=instance.created_at,
        deleted_at=instance.deleted_at,
        lifecycle_phase=instance.lifecycle_phase,
        health_status=health.health_status if health else None,
        drift_detected=health.drift_detected if health else False,
        has_baseline=has_baseline,
        chain_verified=chain_last_seq_no > 0,
    )


def build_confidence_input(health: Optional[HealthFacts]) -> Optional[ConfidenceInput]:
    if health is None:
        return None
    return ConfidenceInput(
        trade_count=health.trades_sampled,
        window_days=health.window_days,
        confidence_interval=ConfidenceInterval(
            lower=health.confidence_lower,
            upper=health.confidence_upper,
        ),
    )


class StatusOrchestrator:
    """
    Единственный компонент status engine с side effects.

    Resolver / classifier / detector: чистые и тестируются отдельно.
    """

    def __init__(
        self,
        store: StatusStore,
        alert_sink: AlertSink,
        audit_sink: AuditSink,
        error_tracker: ErrorTracker,
        config: Optional[StrategyStatusConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.alert_sink = alert_sink
        self.audit_sink = audit_sink
        self.error_tracker = error_tracker
        self.config = config or get_config()
        self.detector = FlappingDetector(self.config.flapping)
        self._clock = clock or (lambda: datetime.now(UTC))
        # Лок живёт, пока по id есть активный или ожидающий цикл
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Counter = Counter()
        self._pending: Set[asyncio.Task] = set()

    # =========================================================================
    # ENTRY POINT
    # =========================================================================

    async def compute_and_cache_status(self, instance_id: str) -> StatusResult:
        """
        Compute the strategy status for an instance, cache it, and fire events if changed.

        Raises:
            InstanceNotFoundError: инстанс не существует (не ретраить)
            StoreUnavailableError: сбой store в GATHER/PERSIST (ретраить)
        """
        lock = self._locks.get(instance_id)
        if lock is None:
            lock = self._locks[instance_id] = asyncio.Lock()
        self._lock_users[instance_id] += 1
        try:
            async with lock:
                return await self._resolve_cycle(instance_id)
        finally:
            self._lock_users[instance_id] -= 1
            if self._lock_users[instance_id] <= 0:
                del self._lock_users[instance_id]
                del self._locks[instance_id]

    async def _resolve_cycle(self, instance_id: str) -> StatusResult:
        # === GATHER ===
        instance = await self.store.get_instance(instance_id)
        if instance is None:
            raise InstanceNotFoundError(instance_id)

        health = await self.store.get_latest_health(instance_id)
        has_baseline = await self.store.baseline_exists(instance.strategy_version_id)
        chain_last_seq_no = await self.store.get_chain_last_seq_no(instance_id)

        # === RESOLVE ===
        now = self._clock()
        status_input = build_status_input(instance, health, has_baseline, chain_last_seq_no)
        new_status = resolve_strategy_status(status_input, now=now, config=self.config.resolver)
        confidence = resolve_status_confidence(
            build_confidence_input(health), config=self.config.confidence
        )

        explanation = get_status_explanation(new_status, status_input)

        # === COMPARE ===
        previous = instance.cached_status
        if previous == new_status:
            return StatusResult(new_status, confidence, changed=False, explanation=explanation)

        # === PERSIST ===
        await self.store.update_cached_status(instance_id, new_status, now)

        logger.info(
            f"Strategy status changed for {instance_id}: "
            f"{previous.value if previous else None} → {new_status.value} "
            f"(confidence={confidence.value})"
        )

        self._spawn_side_effects(StatusChange(
            instance=instance,
            previous=previous,
            new=new_status,
            confidence=confidence,
            status_input=status_input,
            timestamp=now,
        ))

        return StatusResult(new_status, confidence, changed=True, explanation=explanation)

    # =========================================================================
    # SIDE EFFECTS (fire-and-forget)
    # =========================================================================

    def _spawn_side_effects(self, change: StatusChange) -> asyncio.Task:
        task = asyncio.create_task(
            self._dispatch_side_effects(change),
            name=f"strategy-status-side-effects:{change.instance.id}",
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Дождаться всех фоновых side effects (shutdown / тесты)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending_side_effects(self) -> int:
        return len(self._pending)

    async def _dispatch_side_effects(self, change: StatusChange) -> None:
        instance_id = change.instance.id
        context = {
            "instance_id": instance_id,
            "from": change.previous.value if change.previous else None,
            "to": change.new.value,
        }

        # (a) flapping: до записи текущего перехода в историю
        suppress = False
        try:
            recent = await self.store.get_recent_transitions(
                instance_id,
                limit=self.config.flapping.window_size,
                window=timedelta(hours=self.config.flapping.window_hours),
                now=change.timestamp,
            )
            suppress = self.detector.should_suppress(recent)
        except Exception as e:
            self._report(e, "flapping_check", context)

        # (c) transition record: безусловно
        try:
            await self.store.append_transition(
                instance_id,
                from_status=change.previous,
                to_status=change.new,
                confidence=change.confidence,
                timestamp=change.timestamp,
            )
        except Exception as e:
            self._report(e, "transition_record", context)

        # (b) alert
        if self.config.is_silent(change.previous, change.new):
            logger.debug(f"Silent transition for {instance_id}, no alert")
        elif suppress:
            logger.info(f"Alert suppressed for {instance_id} (flapping)")
        else:
            try:
                await self.alert_sink.send(self._build_alert(change))
            except Exception as e:
                self._report(e, "alert", context)

        # (c) audit: безусловно
        try:
            await self.audit_sink.record(AuditEntry(
                user_id=change.instance.user_id,
                event_type=self.config.audit_event_type,
                resource_type=self.config.audit_resource_type,
                resource_id=instance_id,
                metadata={
                    "from": context["from"],
                    "to": context["to"],
                    "confidence": change.confidence.value,
                    "timestamp": change.timestamp.isoformat(),
                    "alert_suppressed": suppress,
                },
            ))
        except Exception as e:
            self._report(e, "audit", context)

    def _build_alert(self, change: StatusChange) -> AlertPayload:
        previous = change.previous.value if change.previous else "UNKNOWN"
        explanation = get_status_explanation(change.new, change.status_input)
        return AlertPayload(
            user_id=change.instance.user_id,
            instance_id=change.instance.id,
            ea_name=change.instance.ea_name,
            alert_type=self.config.alert_type,
            message=(
                f"Strategy status changed from {previous} to {change.new.value}. "
                f"{explanation}"
            ),
        )

    def _report(self, error: BaseException, side_effect: str, context: Dict[str, Any]) -> None:
        # WARNING: в Sentry сбой попадает один раз, через error tracker
        logger.warning(
            f"Strategy status {side_effect} failed for {context['instance_id']}: "
            f"{type(error).__name__}: {error}"
        )
        try:
            self.error_tracker.capture(error, {**context, "side_effect": side_effect})
        except Exception as e:
            logger.error(f"Error tracker failed: {e}")
