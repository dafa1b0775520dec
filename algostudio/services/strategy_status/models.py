"""
Strategy Status Database Models

SQLAlchemy 2.0 models для истории переходов статуса.
"""
from datetime import datetime, UTC

from sqlalchemy import (
    String,
    Integer,
    DateTime,
    ForeignKey,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column

from algostudio.database.models import Base


class StrategyStatusTransition(Base):
    """
    Запись перехода статуса (append-only).

    Пишется на КАЖДОЕ изменение статуса, даже если alert подавлен
    flapping detector'ом. Читается только flapping detector'ом
    в пределах trailing window.
    """
    __tablename__ = "strategy_status_transitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    instance_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("live_ea_instances.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # === TRANSITION ===
    from_status: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
        comment="Previous cached status (NULL = first resolution)"
    )
    to_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="Newly resolved status"
    )
    confidence: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        comment="LOW/MEDIUM/HIGH at transition time"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False
    )

    __table_args__ = (
        Index('ix_status_transition_instance_ts', 'instance_id', 'created_at'),
    )

    def __repr__(self) -> str:
        return (
            f"<StrategyStatusTransition({self.instance_id[:8]} "
            f"{self.from_status}→{self.to_status})>"
        )
