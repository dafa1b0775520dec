"""
Strategy Status Store

Граница между БД и status engine:
- одна сессия на операцию, bounded timeout (asyncio.wait_for)
- SQLAlchemyError / OSError / timeout → StoreUnavailableError
- сырые строки → закрытые Enum (один раз, здесь)
- naive datetime из БД → UTC
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from typing import Awaitable, Callable, List, Optional, TypeVar

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from algostudio.core.enums import (
    EAStatus,
    LifecyclePhase,
    HealthStatus,
    StrategyStatus,
    StatusConfidence,
)
from algostudio.core.exceptions import StoreUnavailableError
from algostudio.database import crud
from algostudio.services.strategy_status.config import StoreConfig, get_config
from algostudio.services.strategy_status.flapping import TransitionRecord

T = TypeVar("T")


@dataclass(frozen=True)
class InstanceFacts:
    """Инстанс после валидации на границе store."""
    id: str
    user_id: str
    ea_name: str
    ea_status: EAStatus
    last_heartbeat: Optional[datetime]
    created_at: datetime
    deleted_at: Optional[datetime]
    lifecycle_phase: LifecyclePhase
    strategy_version_id: Optional[str]
    cached_status: Optional[StrategyStatus]


@dataclass(frozen=True)
class HealthFacts:
    """Последний health snapshot после валидации."""
    health_status: Optional[HealthStatus]
    drift_detected: bool
    trades_sampled: int
    window_days: int
    confidence_lower: float
    confidence_upper: float


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite и часть драйверов возвращают naive datetime: считаем их UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _parse_or(enum_cls, raw, fallback, field_name: str, instance_id: str):
    """Raw → Enum; неизвестное значение → консервативный fallback + warning."""
    value = enum_cls.from_raw(raw)
    if value is None and raw is not None:
        logger.warning(
            f"Unknown {field_name}={raw!r} for instance {instance_id}, "
            f"treating as {fallback.value if fallback is not None else None}"
        )
        return fallback
    if value is None:
        return fallback
    return value


class StatusStore:
    """
    Store collaborator для StatusOrchestrator.

    Все операции изолированы (своя сессия) и ограничены timeout'ом,
    поэтому отмена посреди GATHER ничего не оставляет записанным.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        config: Optional[StoreConfig] = None,
    ):
        self._session_maker = session_maker
        self.config = config or get_config().store

    async def _run(self, operation: str, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async def _call() -> T:
            async with self._session_maker() as session:
                try:
                    return await fn(session)
                except SQLAlchemyError:
                    await session.rollback()
                    raise

        try:
            return await asyncio.wait_for(_call(), timeout=self.config.timeout_sec)
        except asyncio.TimeoutError as e:
            raise StoreUnavailableError(operation, e) from e
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError(operation, e) from e

    # =========================================================================
    # READS
    # =========================================================================

    async def get_instance(self, instance_id: str) -> Optional[InstanceFacts]:
        """Инстанс по id (None если не существует)."""
        row = await self._run(
            "get_instance", lambda session: crud.get_instance(session, instance_id)
        )
        if row is None:
            return None

        return InstanceFacts(
            id=row.id,
            user_id=row.user_id,
            ea_name=row.ea_name,
            # Неизвестный operational state не считаем ONLINE
            ea_status=_parse_or(EAStatus, row.status, EAStatus.OFFLINE, "status", row.id),
            last_heartbeat=as_utc(row.last_heartbeat),
            created_at=as_utc(row.created_at),
            deleted_at=as_utc(row.deleted_at),
            lifecycle_phase=_parse_or(
                LifecyclePhase, row.lifecycle_phase, LifecyclePhase.NEW, "lifecycle_phase", row.id
            ),
            strategy_version_id=row.strategy_version_id,
            # Устаревшее имя статуса → None, статус будет перезаписан
            cached_status=_parse_or(
                StrategyStatus, row.strategy_status, None, "strategy_status", row.id
            ),
        )

    async def get_latest_health(self, instance_id: str) -> Optional[HealthFacts]:
        """Последний health snapshot (None если snapshot'ов нет)."""
        row = await self._run(
            "get_latest_health",
            lambda session: crud.get_latest_health_snapshot(session, instance_id),
        )
        if row is None:
            return None

        return HealthFacts(
            health_status=_parse_or(HealthStatus, row.status, None, "health_status", instance_id),
            drift_detected=bool(row.drift_detected),
            trades_sampled=row.trades_sampled or 0,
            window_days=row.window_days or 0,
            confidence_lower=row.confidence_lower,
            confidence_upper=row.confidence_upper,
        )

    async def baseline_exists(self, strategy_version_id: Optional[str]) -> bool:
        """Есть ли backtest baseline для версии стратегии."""
        if not strategy_version_id:
            return False
        return await self._run(
            "baseline_exists",
            lambda session: crud.baseline_exists(session, strategy_version_id),
        )

    async def get_chain_last_seq_no(self, instance_id: str) -> int:
        return await self._run(
            "get_chain_last_seq_no",
            lambda session: crud.get_chain_last_seq_no(session, instance_id),
        )

    async def get_recent_transitions(
        self,
        instance_id: str,
        limit: int,
        window: timedelta,
        now: Optional[datetime] = None,
    ) -> List[TransitionRecord]:
        """Последние N переходов в окне, newest first."""
        rows = await self._run(
            "get_recent_transitions",
            lambda session: crud.get_recent_status_transitions(
                session, instance_id, limit=limit, window=window, now=now
            ),
        )
        return [
            TransitionRecord(
                instance_id=row.instance_id,
                from_status=row.from_status,
                to_status=row.to_status,
                confidence=row.confidence,
                timestamp=as_utc(row.created_at),
            )
            for row in rows
        ]

    # =========================================================================
    # WRITES
    # =========================================================================

    async def update_cached_status(
        self, instance_id: str, status: StrategyStatus, updated_at: datetime
    ) -> None:
        await self._run(
            "update_cached_status",
            lambda session: crud.update_instance_strategy_status(
                session, instance_id, status.value, updated_at
            ),
        )

    async def append_transition(
        self,
        instance_id: str,
        from_status: Optional[StrategyStatus],
        to_status: StrategyStatus,
        confidence: StatusConfidence,
        timestamp: datetime,
    ) -> None:
        await self._run(
            "append_transition",
            lambda session: crud.add_status_transition(
                session,
                instance_id,
                from_status=from_status.value if from_status is not None else None,
                to_status=to_status.value,
                confidence=confidence.value,
                created_at=timestamp,
            ),
        )

    async def list_instance_ids_to_resolve(self) -> List[str]:
        """IDs для sweep."""
        return await self._run(
            "list_instance_ids_to_resolve",
            lambda session: crud.get_instance_ids_to_resolve(session),
        )
