"""
CRUD operations for AlgoStudio Strategy Status Engine

Async database operations using SQLAlchemy 2.0
"""

from datetime import datetime, timedelta, UTC
from typing import List, Optional

from loguru import logger
from sqlalchemy import select, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from algostudio.database.models import (
    LiveEAInstance,
    HealthSnapshot,
    BacktestBaseline,
    TrackRecordState,
    AlertConfig,
    AuditLog,
)
from algostudio.services.strategy_status.models import StrategyStatusTransition


# ===========================
# INSTANCE OPERATIONS
# ===========================


async def get_instance(session: AsyncSession, instance_id: str) -> Optional[LiveEAInstance]:
    """
    Get live EA instance by ID (including soft-deleted)

    Args:
        session: Database session
        instance_id: Instance ID

    Returns:
        LiveEAInstance or None if not found
    """
    stmt = select(LiveEAInstance).where(LiveEAInstance.id == instance_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_instance_ids_to_resolve(session: AsyncSession) -> List[str]:
    """
    IDs инстансов для периодического sweep.

    Берём все не удалённые + удалённые, у которых кеш ещё не RETIRED
    (чтобы soft-delete один раз дошёл до статуса).
    """
    stmt = (
        select(LiveEAInstance.id)
        .where(
            or_(
                LiveEAInstance.deleted_at.is_(None),
                LiveEAInstance.strategy_status.is_(None),
                LiveEAInstance.strategy_status != "RETIRED",
            )
        )
        .order_by(LiveEAInstance.created_at)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def update_instance_strategy_status(
    session: AsyncSession,
    instance_id: str,
    strategy_status: str,
    updated_at: datetime,
) -> None:
    """Persist cached strategy status fields"""
    stmt = (
        update(LiveEAInstance)
        .where(LiveEAInstance.id == instance_id)
        .values(strategy_status=strategy_status, strategy_status_updated_at=updated_at)
    )
    await session.execute(stmt)
    await session.commit()


# ===========================
# HEALTH / BASELINE / CHAIN
# ===========================


async def get_latest_health_snapshot(
    session: AsyncSession, instance_id: str
) -> Optional[HealthSnapshot]:
    """Most recent health snapshot for an instance"""
    stmt = (
        select(HealthSnapshot)
        .where(HealthSnapshot.instance_id == instance_id)
        .order_by(HealthSnapshot.created_at.desc(), HealthSnapshot.id.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def baseline_exists(session: AsyncSession, strategy_version_id: str) -> bool:
    """Check whether a backtest baseline exists for a strategy version"""
    stmt = select(BacktestBaseline.id).where(
        BacktestBaseline.strategy_version_id == strategy_version_id
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none() is not None


async def get_chain_last_seq_no(session: AsyncSession, instance_id: str) -> int:
    """Track record chain last sequence number (0 if no state yet)"""
    stmt = select(TrackRecordState.last_seq_no).where(
        TrackRecordState.instance_id == instance_id
    )
    result = await session.execute(stmt)
    last_seq_no = result.scalar_one_or_none()
    return last_seq_no or 0


# ===========================
# STATUS TRANSITIONS
# ===========================


async def add_status_transition(
    session: AsyncSession,
    instance_id: str,
    from_status: Optional[str],
    to_status: str,
    confidence: str,
    created_at: datetime,
) -> StrategyStatusTransition:
    """Append one status transition record"""
    record = StrategyStatusTransition(
        instance_id=instance_id,
        from_status=from_status,
        to_status=to_status,
        confidence=confidence,
        created_at=created_at,
    )
    session.add(record)
    await session.commit()
    await session.refresh(record)
    return record


async def get_recent_status_transitions(
    session: AsyncSession,
    instance_id: str,
    limit: int,
    window: timedelta,
    now: Optional[datetime] = None,
) -> List[StrategyStatusTransition]:
    """
    Last N transitions of an instance within the trailing window

    Returns:
        Transitions ordered newest first
    """
    now = now or datetime.now(UTC)
    stmt = (
        select(StrategyStatusTransition)
        .where(
            StrategyStatusTransition.instance_id == instance_id,
            StrategyStatusTransition.created_at >= now - window,
        )
        .order_by(
            StrategyStatusTransition.created_at.desc(),
            StrategyStatusTransition.id.desc(),
        )
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


# ===========================
# ALERT CONFIG OPERATIONS
# ===========================


async def get_enabled_alert_configs(
    session: AsyncSession,
    user_id: str,
    alert_type: str,
    instance_id: str,
) -> List[AlertConfig]:
    """Enabled alert configs matching the instance or all instances"""
    stmt = select(AlertConfig).where(
        AlertConfig.user_id == user_id,
        AlertConfig.alert_type == alert_type,
        AlertConfig.enabled.is_(True),
        or_(AlertConfig.instance_id.is_(None), AlertConfig.instance_id == instance_id),
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def mark_alert_triggered(
    session: AsyncSession, config_id: int, triggered_at: datetime
) -> None:
    """Stamp last_triggered for rate limiting"""
    stmt = (
        update(AlertConfig)
        .where(AlertConfig.id == config_id)
        .values(last_triggered=triggered_at)
    )
    await session.execute(stmt)
    await session.commit()


# ===========================
# AUDIT LOG OPERATIONS
# ===========================


async def add_audit_log(
    session: AsyncSession,
    event_type: str,
    user_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> AuditLog:
    """
    Persist audit log entry

    Returns:
        Created AuditLog model
    """
    entry = AuditLog(
        user_id=user_id,
        event_type=event_type,
        resource_type=resource_type,
        resource_id=resource_id,
        metadata_json=metadata,
    )
    session.add(entry)
    await session.commit()
    await session.refresh(entry)

    logger.debug(f"Audit log persisted: {event_type} for {resource_id}")
    return entry


async def get_audit_logs(
    session: AsyncSession,
    resource_id: Optional[str] = None,
    event_type: Optional[str] = None,
    limit: int = 50,
) -> List[AuditLog]:
    """Get recent audit logs (newest first)"""
    stmt = select(AuditLog).order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    if resource_id is not None:
        stmt = stmt.where(AuditLog.resource_id == resource_id)
    if event_type is not None:
        stmt = stmt.where(AuditLog.event_type == event_type)
    result = await session.execute(stmt.limit(limit))
    return list(result.scalars().all())
