"""
Исключения Strategy Status Engine.

Таксономия:
- NotFoundError / InstanceNotFoundError: терминальная, НЕ ретраится
- StoreUnavailableError: транзиентный сбой store, ретраится вызывающим
"""

from typing import Optional


class StrategyStatusError(Exception):
    """Базовое исключение status engine."""

    retryable: bool = False


class NotFoundError(StrategyStatusError, LookupError):
    """Запрошенный ресурс не существует."""


class InstanceNotFoundError(NotFoundError):
    """Инстанс с таким id не найден."""

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Instance {instance_id} not found")


class StoreUnavailableError(StrategyStatusError):
    """Сбой чтения/записи store (timeout, connection, SQL error)."""

    retryable = True

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        message = f"Store unavailable during {operation}"
        if cause is not None:
            message = f"{message}: {type(cause).__name__}: {cause}"
        super().__init__(message)


class AlertDeliveryError(StrategyStatusError):
    """Хотя бы один канал доставки alert'а упал."""

    def __init__(self, alert_type: str, failures: list):
        self.alert_type = alert_type
        self.failures = failures
        super().__init__(f"Alert {alert_type} failed on {len(failures)} channel(s): {failures}")
