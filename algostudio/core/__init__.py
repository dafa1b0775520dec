"""
Core module - базовые типы, enums и исключения status engine.
"""

from algostudio.core.enums import (
    EAStatus,
    LifecyclePhase,
    HealthStatus,
    StrategyStatus,
    StatusConfidence,
    TERMINAL_HEALTHY_STATUS,
)
from algostudio.core.exceptions import (
    StrategyStatusError,
    NotFoundError,
    InstanceNotFoundError,
    StoreUnavailableError,
    AlertDeliveryError,
)

__all__ = [
    "EAStatus",
    "LifecyclePhase",
    "HealthStatus",
    "StrategyStatus",
    "StatusConfidence",
    "TERMINAL_HEALTHY_STATUS",
    "StrategyStatusError",
    "NotFoundError",
    "InstanceNotFoundError",
    "StoreUnavailableError",
    "AlertDeliveryError",
]
