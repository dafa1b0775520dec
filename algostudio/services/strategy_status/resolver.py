"""
Strategy Status Resolver

Pure function: сводит connection, lifecycle, health, drift и chain
verification в один авторитетный статус. Без I/O, детерминирована
при фиксированном `now`, никогда не бросает исключений.

Precedence chain (первое совпадение выигрывает):
1. RETIRED    : soft-deleted
2. ERROR      : EA репортит ERROR
3. RETIRED    : lifecycle RETIRED (инстанс не удалён)
4. OFFLINE    : не ONLINE, heartbeat отсутствует или устарел
5. UNVERIFIED : нет ни одного записанного trade event
6. DEGRADED   : health DEGRADED (перекрывает lifecycle)
7. TESTING    : NEW/PROVING, нет baseline, нет health данных
8. MONITORING : health WARNING или drift
9. CONSISTENT : всё остальное (PROVEN + HEALTHY + baseline + без drift)

Операционные сбои и целостность данных всегда доминируют над
performance классификацией: упавший агент никогда не "здоров".
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from typing import Optional

from algostudio.core.enums import (
    EAStatus,
    LifecyclePhase,
    HealthStatus,
    StrategyStatus,
    TERMINAL_HEALTHY_STATUS,
)
from algostudio.services.strategy_status.config import ResolverConfig, get_config


@dataclass(frozen=True)
class StatusInput:
    """Снимок всех сигналов для одного инстанса (уже валидированный)."""
    ea_status: EAStatus
    last_heartbeat: Optional[datetime]
    created_at: datetime
    deleted_at: Optional[datetime]
    lifecycle_phase: LifecyclePhase
    health_status: Optional[HealthStatus]
    drift_detected: bool
    has_baseline: bool
    chain_verified: bool


def _as_utc(value: datetime) -> datetime:
    """Naive datetime трактуем как UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def is_heartbeat_stale(
    last_heartbeat: Optional[datetime],
    now: datetime,
    stale_after: timedelta,
) -> bool:
    """Heartbeat отсутствует или старше порога."""
    if last_heartbeat is None:
        return True
    return _as_utc(now) - _as_utc(last_heartbeat) > stale_after


def resolve_strategy_status(
    input: StatusInput,
    now: Optional[datetime] = None,
    config: Optional[ResolverConfig] = None,
) -> StrategyStatus:
    """
    Resolve strategy status from all available signals.

    Args:
        input: Валидированные сигналы инстанса
        now: Текущее время (default: сейчас, UTC)
        config: Настройки резолвера (default: singleton)

    Returns:
        StrategyStatus
    """
    config = config or get_config().resolver
    now = now or datetime.now(UTC)

    # 1-3. Жизненный цикл и операционные ошибки
    if input.deleted_at is not None:
        return StrategyStatus.RETIRED
    if input.ea_status == EAStatus.ERROR:
        return StrategyStatus.ERROR
    if input.lifecycle_phase == LifecyclePhase.RETIRED:
        return StrategyStatus.RETIRED

    # 4. Connection
    stale_after = timedelta(seconds=config.heartbeat_stale_sec)
    if input.ea_status != EAStatus.ONLINE or is_heartbeat_stale(
        input.last_heartbeat, now, stale_after
    ):
        return StrategyStatus.OFFLINE

    # 5. Без истории сделок больше ничего оценить нельзя
    if not input.chain_verified:
        return StrategyStatus.UNVERIFIED

    # 6. DEGRADED перекрывает lifecycle/baseline
    if input.health_status == HealthStatus.DEGRADED:
        return StrategyStatus.DEGRADED

    # 7. TESTING
    if (
        input.lifecycle_phase.is_testing()
        or not input.has_baseline
        or input.health_status in (None, HealthStatus.INSUFFICIENT_DATA)
    ):
        return StrategyStatus.TESTING

    # 8. MONITORING
    if input.health_status == HealthStatus.WARNING or input.drift_detected:
        return StrategyStatus.MONITORING

    # 9. HEALTHY + baseline + PROVEN + без drift
    if (
        input.health_status == HealthStatus.HEALTHY
        and input.lifecycle_phase == LifecyclePhase.PROVEN
    ):
        return TERMINAL_HEALTHY_STATUS

    # Недостижимо при закрытых enums, но функция обязана быть тотальной
    return StrategyStatus.TESTING


def get_status_explanation(status: StrategyStatus, input: Optional[StatusInput] = None) -> str:
    """Human-readable объяснение статуса (для alert'ов и API)."""
    if status == StrategyStatus.RETIRED:
        if input is not None and input.deleted_at is not None:
            return "Strategy has been removed"
        return "Strategy has been retired"
    if status == StrategyStatus.ERROR:
        return "EA is reporting an error state"
    if status == StrategyStatus.OFFLINE:
        if input is not None and input.last_heartbeat is None:
            return "EA has never sent a heartbeat"
        return "EA is offline or its heartbeat is stale"
    if status == StrategyStatus.UNVERIFIED:
        return "No verified trade history recorded yet"
    if status == StrategyStatus.DEGRADED:
        return "Health has degraded significantly, review performance"
    if status == StrategyStatus.TESTING:
        if input is not None and input.lifecycle_phase == LifecyclePhase.NEW:
            return "New strategy collecting initial data"
        if input is not None and not input.has_baseline:
            return "No backtest baseline to compare against yet"
        return "Gathering more data for a reliable assessment"
    if status == StrategyStatus.MONITORING:
        if input is not None and input.drift_detected:
            return "Edge drift detected, live performance diverges from the baseline"
        return "Performance metrics showing warning signs, monitor closely"
    if status == TERMINAL_HEALTHY_STATUS:
        return "Proven strategy with healthy metrics and verified track record"
    return "Status unknown"
