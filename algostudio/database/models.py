"""
Database models for AlgoStudio Strategy Status Engine

SQLAlchemy 2.0 models with full type hints.

Enum-поля хранятся как String (UPPERCASE значения из algostudio.core.enums):
сырые строки валидируются один раз на границе store, а не в модели.
"""

import uuid
from datetime import datetime, UTC
from enum import Enum
from typing import Optional

from sqlalchemy import (
    String,
    Integer,
    Float,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    JSON,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models"""

    pass


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ===========================
# LIVE EA INSTANCES
# ===========================


class LiveEAInstance(Base):
    """
    Live EA instance - один задеплоенный торговый агент.

    strategy_status: кеш последнего результата резолвера.
    Нужен только для детекта изменения, никогда не заменяет свежий расчёт.
    Инстансы не удаляются физически, только soft-delete через deleted_at.
    """

    __tablename__ = "live_ea_instances"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), nullable=False, index=True, comment="Owning user ID"
    )
    ea_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # === OPERATIONAL STATE (reported by the EA) ===
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="OFFLINE", comment="ONLINE/OFFLINE/ERROR"
    )
    last_heartbeat: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # === LIFECYCLE ===
    lifecycle_phase: Mapped[str] = mapped_column(
        String(20), nullable=False, default="NEW", comment="NEW/PROVING/PROVEN/RETIRED"
    )
    strategy_version_id: Mapped[Optional[str]] = mapped_column(
        String(36), nullable=True, index=True
    )

    # === CACHED STATUS ===
    strategy_status: Mapped[Optional[str]] = mapped_column(
        String(20), nullable=True, comment="Last resolved StrategyStatus"
    )
    strategy_status_updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, comment="Soft-delete marker"
    )

    __table_args__ = (
        Index("ix_live_ea_deleted_status", "deleted_at", "strategy_status"),
    )

    def __repr__(self) -> str:
        return (
            f"<LiveEAInstance(id={self.id[:8]}, ea={self.ea_name}, "
            f"status={self.status}, strategy_status={self.strategy_status})>"
        )


class HealthSnapshot(Base):
    """
    Health snapshot - append-only, производится вне status engine.

    Engine читает только последний snapshot инстанса.
    """

    __tablename__ = "health_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    instance_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("live_ea_instances.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, comment="HEALTHY/WARNING/DEGRADED/INSUFFICIENT_DATA"
    )
    drift_detected: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    trades_sampled: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    window_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    confidence_lower: Mapped[float] = mapped_column(
        Float, nullable=False, comment="Lower bound of the metric CI"
    )
    confidence_upper: Mapped[float] = mapped_column(
        Float, nullable=False, comment="Upper bound of the metric CI"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_health_snapshot_instance_created", "instance_id", "created_at"),
    )


class BacktestBaseline(Base):
    """Backtest baseline для drift сравнения. Для резолвера важно только наличие."""

    __tablename__ = "backtest_baselines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    strategy_version_id: Mapped[str] = mapped_column(
        String(36), unique=True, nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )


class TrackRecordState(Base):
    """Состояние hash-chain track record. last_seq_no > 0 => chain verified."""

    __tablename__ = "track_record_states"

    instance_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("live_ea_instances.id", ondelete="CASCADE"),
        primary_key=True,
    )
    last_seq_no: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )


# ===========================
# ALERTS
# ===========================


class AlertChannel(str, Enum):
    """Alert delivery channels"""

    TELEGRAM = "TELEGRAM"
    WEBHOOK = "WEBHOOK"


class AlertConfig(Base):
    """
    User alert configuration.

    instance_id = NULL означает "все инстансы пользователя".
    last_triggered используется для rate limit (1 alert / тип / 15 мин).
    """

    __tablename__ = "ea_alert_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    instance_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    alert_type: Mapped[str] = mapped_column(
        String(50), nullable=False, comment="e.g. STRATEGY_STATUS_CHANGE"
    )
    channel: Mapped[str] = mapped_column(String(20), nullable=False, comment="TELEGRAM/WEBHOOK")
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    webhook_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    telegram_chat_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    last_triggered: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_alert_config_user_type", "user_id", "alert_type", "enabled"),
    )


# ===========================
# AUDIT
# ===========================


class AuditLog(Base):
    """
    Audit log - append-only журнал важных событий.

    Used for:
    - Compliance audit trail
    - Strategy status change history
    """

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    resource_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    resource_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    metadata_json: Mapped[Optional[dict]] = mapped_column(
        "metadata", JSON, nullable=True, comment="Event metadata"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False, index=True
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, event={self.event_type}, resource={self.resource_id})>"
