"""
Strategy Status Configuration

Defaults для status engine. Process-level overrides приходят из config.config.
"""
from dataclasses import dataclass, field
from typing import FrozenSet, Tuple

from config.config import (
    STATUS_HEARTBEAT_STALE_SEC,
    STATUS_STORE_TIMEOUT_SEC,
    STATUS_SWEEP_INTERVAL_SEC,
    STATUS_SWEEP_ENABLED,
)
from algostudio.core.enums import StrategyStatus, TERMINAL_HEALTHY_STATUS


@dataclass
class ResolverConfig:
    """Настройки резолвера."""
    heartbeat_stale_sec: int = STATUS_HEARTBEAT_STALE_SEC  # старше = OFFLINE


@dataclass
class ConfidenceConfig:
    """
    Границы tiers для confidence.

    Interval thresholds зависят от единиц метрики (по умолчанию winrate CI,
    т.е. доли 0..1), поэтому это конфиг, а не константы.
    """
    trades_medium: int = 20      # < 20 → LOW
    trades_high: int = 100       # >= 100 → HIGH
    window_medium_days: int = 14  # < 14 → LOW
    window_high_days: int = 60    # >= 60 → HIGH
    interval_wide: float = 0.4    # width >= A → LOW
    interval_narrow: float = 0.2  # width < B → HIGH


@dataclass
class FlappingConfig:
    """Anti-flapping: N последних переходов в окне W."""
    window_size: int = 6          # N
    window_hours: int = 24        # W
    threshold: int = 3            # переходов в одной паре статусов


@dataclass
class SweepConfig:
    """Периодический sweep всех инстансов."""
    enabled: bool = STATUS_SWEEP_ENABLED
    interval_sec: int = STATUS_SWEEP_INTERVAL_SEC
    max_concurrency: int = 10
    retry_attempts: int = 3       # только для StoreUnavailableError
    retry_min_wait_sec: float = 1.0
    retry_max_wait_sec: float = 10.0
    lock_ttl_sec: int = 240       # TTL redis lock sweep'а


@dataclass
class StoreConfig:
    """Store I/O."""
    timeout_sec: float = STATUS_STORE_TIMEOUT_SEC


def _default_silent_transitions() -> FrozenSet[Tuple[StrategyStatus, StrategyStatus]]:
    # Ожидаемый прогресс по lifecycle: не шумим на каждом "выпуске"
    return frozenset({
        (StrategyStatus.TESTING, StrategyStatus.MONITORING),
        (StrategyStatus.TESTING, TERMINAL_HEALTHY_STATUS),
        (StrategyStatus.MONITORING, TERMINAL_HEALTHY_STATUS),
    })


@dataclass
class StrategyStatusConfig:
    """Главная конфигурация Strategy Status Engine."""
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    confidence: ConfidenceConfig = field(default_factory=ConfidenceConfig)
    flapping: FlappingConfig = field(default_factory=FlappingConfig)
    sweep: SweepConfig = field(default_factory=SweepConfig)
    store: StoreConfig = field(default_factory=StoreConfig)

    silent_transitions: FrozenSet[Tuple[StrategyStatus, StrategyStatus]] = field(
        default_factory=_default_silent_transitions
    )

    alert_type: str = "STRATEGY_STATUS_CHANGE"
    audit_event_type: str = "live.strategy_status_change"
    audit_resource_type: str = "live_ea_instance"

    def is_silent(self, previous, new: StrategyStatus) -> bool:
        """Переход без alert'а (previous=None никогда не silent)."""
        return (previous, new) in self.silent_transitions


# Singleton instance
STRATEGY_STATUS_CONFIG = StrategyStatusConfig()


def get_config() -> StrategyStatusConfig:
    """Получить конфигурацию."""
    return STRATEGY_STATUS_CONFIG
