"""
Status Confidence

Уверенность в статусе = МИНИМУМ из трёх независимых tiers:
- sample size (кол-во сделок)
- длина окна наблюдения (дни)
- ширина доверительного интервала метрики

Confidence не может быть выше самого слабого сигнала.
"""
import math
from dataclasses import dataclass
from typing import Optional

from algostudio.core.enums import StatusConfidence
from algostudio.services.strategy_status.config import ConfidenceConfig, get_config


@dataclass(frozen=True)
class ConfidenceInterval:
    """Границы CI метрики (return / winrate)."""
    lower: float
    upper: float

    @property
    def width(self) -> float:
        return self.upper - self.lower


@dataclass(frozen=True)
class ConfidenceInput:
    """Статистика последнего health snapshot."""
    trade_count: int
    window_days: int
    confidence_interval: ConfidenceInterval


def _count_tier(value: int, medium_from: int, high_from: int) -> StatusConfidence:
    if value >= high_from:
        return StatusConfidence.HIGH
    if value >= medium_from:
        return StatusConfidence.MEDIUM
    return StatusConfidence.LOW


def sample_size_tier(trade_count: int, config: ConfidenceConfig) -> StatusConfidence:
    return _count_tier(trade_count, config.trades_medium, config.trades_high)


def window_tier(window_days: int, config: ConfidenceConfig) -> StatusConfidence:
    return _count_tier(window_days, config.window_medium_days, config.window_high_days)


def interval_tier(interval: ConfidenceInterval, config: ConfidenceConfig) -> StatusConfidence:
    """Узкий интервал → HIGH. NaN/inf/отрицательная ширина → LOW."""
    width = interval.width
    if not math.isfinite(width) or width < 0:
        return StatusConfidence.LOW
    if width < config.interval_narrow:
        return StatusConfidence.HIGH
    if width < config.interval_wide:
        return StatusConfidence.MEDIUM
    return StatusConfidence.LOW


def resolve_status_confidence(
    input: Optional[ConfidenceInput],
    config: Optional[ConfidenceConfig] = None,
) -> StatusConfidence:
    """
    Determine how confident the status assessment is.

    Args:
        input: Статистика snapshot'а или None если health данных ещё нет
        config: Границы tiers (default: singleton)

    Returns:
        StatusConfidence (LOW если snapshot отсутствует)
    """
    if input is None:
        return StatusConfidence.LOW

    config = config or get_config().confidence

    return StatusConfidence.weakest(
        sample_size_tier(input.trade_count, config),
        window_tier(input.window_days, config),
        interval_tier(input.confidence_interval, config),
    )
