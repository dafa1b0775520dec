"""
Core Enums - закрытые типы для Strategy Status Engine.

Определяет:
- EAStatus: сырое операционное состояние EA (из heartbeat)
- LifecyclePhase: фаза зрелости инстанса
- HealthStatus: результат health scoring (snapshot)
- StrategyStatus: итоговый статус стратегии (output резолвера)
- StatusConfidence: уверенность в статусе

Значения хранятся в БД строками UPPERCASE. Конвертация raw → Enum
выполняется ОДИН раз на границе store (см. from_raw).
"""

from enum import Enum
from typing import Optional


class _RawEnum(str, Enum):
    """Базовый класс: безопасный парсинг сырых значений из БД."""

    @classmethod
    def from_raw(cls, raw: Optional[str]):
        """Вернуть member или None если значение неизвестно/пустое."""
        if raw is None:
            return None
        if isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw).strip().upper())
        except ValueError:
            return None


class EAStatus(_RawEnum):
    """Операционное состояние EA, которое репортит сам агент."""

    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"
    ERROR = "ERROR"


class LifecyclePhase(_RawEnum):
    """
    Фаза зрелости инстанса.

    NEW → PROVING → PROVEN → RETIRED
    Выставляется процессами вне status engine.
    """

    NEW = "NEW"
    PROVING = "PROVING"
    PROVEN = "PROVEN"
    RETIRED = "RETIRED"

    def is_testing(self) -> bool:
        """Фаза, в которой стратегия ещё набирает историю."""
        return self in (LifecyclePhase.NEW, LifecyclePhase.PROVING)


class HealthStatus(_RawEnum):
    """Статус последнего health snapshot."""

    HEALTHY = "HEALTHY"
    WARNING = "WARNING"
    DEGRADED = "DEGRADED"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"


class StrategyStatus(_RawEnum):
    """
    Итоговый статус стратегии.

    Порядок членов = порядок precedence chain резолвера
    (кроме CONSISTENT, который идёт последним как fallback).
    """

    RETIRED = "RETIRED"
    ERROR = "ERROR"
    OFFLINE = "OFFLINE"
    UNVERIFIED = "UNVERIFIED"
    DEGRADED = "DEGRADED"
    TESTING = "TESTING"
    MONITORING = "MONITORING"
    CONSISTENT = "CONSISTENT"


# Терминальный "здоровый" статус. В ранних ревизиях назывался VERIFIED,
# переименование делается только здесь.
TERMINAL_HEALTHY_STATUS = StrategyStatus.CONSISTENT


class StatusConfidence(_RawEnum):
    """Уверенность в статусе: LOW < MEDIUM < HIGH."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        """Числовой ранг для сравнения tiers."""
        return _CONFIDENCE_RANK[self]

    @classmethod
    def weakest(cls, *tiers: "StatusConfidence") -> "StatusConfidence":
        """Минимальный tier из переданных (LOW если пусто)."""
        if not tiers:
            return cls.LOW
        return min(tiers, key=lambda tier: tier.rank)


_CONFIDENCE_RANK = {
    StatusConfidence.LOW: 0,
    StatusConfidence.MEDIUM: 1,
    StatusConfidence.HIGH: 2,
}
