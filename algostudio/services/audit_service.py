"""
Audit Service

Audit sink: record(entry).
Пишет структурированную строку в лог (audit=True → отдельный файл)
и сохраняет AuditLog в БД, повторяя insert один раз при сбое.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from algostudio.database import crud



def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(f"Failed to persist audit log, retrying: {error}")


@dataclass(frozen=True)
class AuditEntry:
    """Одно audit событие."""
    user_id: Optional[str]
    event_type: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class AuditService:
    """Structured log + persisted AuditLog."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def record(self, entry: AuditEntry) -> None:
        """
        Log an audit event.

        Raises:
            SQLAlchemyError: если insert не прошёл и после повтора
        """
        logger.bind(
            audit=True,
            user_id=entry.user_id,
            event_type=entry.event_type,
            resource_type=entry.resource_type,
            resource_id=entry.resource_id,
            metadata=entry.metadata,
        ).info(f"Audit: {entry.event_type}")

        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(SQLAlchemyError),
            stop=stop_after_attempt(2),
            before_sleep=_log_retry,
            reraise=True,
        ):
            with attempt:
                await self._persist(entry)

    async def _persist(self, entry: AuditEntry) -> None:
        async with self._session_maker() as session:
            await crud.add_audit_log(
                session,
                event_type=entry.event_type,
                user_id=entry.user_id,
                resource_type=entry.resource_type,
                resource_id=entry.resource_id,
                metadata=entry.metadata or None,
            )
