"""
Strategy Status Engine

Классификация live EA инстанса в один статус стратегии.
- Resolver: precedence chain (pure)
- Confidence: min(sample size, window, CI width) (pure)
- Flapping detector: подавление alert'ов при осцилляции
- Orchestrator: GATHER → RESOLVE → COMPARE → PERSIST + side effects

NOTE: Store / orchestrator / scheduler импортируются напрямую из своих
модулей чтобы избежать circular imports с algostudio.database.crud:
    from algostudio.services.strategy_status.orchestrator import StatusOrchestrator
    from algostudio.services.strategy_status.scheduler import StrategyStatusScheduler
"""
from algostudio.services.strategy_status.config import (
    StrategyStatusConfig,
    ResolverConfig,
    ConfidenceConfig,
    FlappingConfig,
    SweepConfig,
    StoreConfig,
    get_config,
    STRATEGY_STATUS_CONFIG,
)
from algostudio.services.strategy_status.models import StrategyStatusTransition
from algostudio.services.strategy_status.resolver import (
    StatusInput,
    resolve_strategy_status,
    get_status_explanation,
)
from algostudio.services.strategy_status.confidence import (
    ConfidenceInput,
    ConfidenceInterval,
    resolve_status_confidence,
)
from algostudio.services.strategy_status.flapping import (
    FlappingDetector,
    TransitionRecord,
)

__all__ = [
    # Config
    "StrategyStatusConfig",
    "ResolverConfig",
    "ConfidenceConfig",
    "FlappingConfig",
    "SweepConfig",
    "StoreConfig",
    "get_config",
    "STRATEGY_STATUS_CONFIG",
    # Models
    "StrategyStatusTransition",
    # Resolver
    "StatusInput",
    "resolve_strategy_status",
    "get_status_explanation",
    # Confidence
    "ConfidenceInput",
    "ConfidenceInterval",
    "resolve_status_confidence",
    # Flapping
    "FlappingDetector",
    "TransitionRecord",
]
