# coding: utf-8
"""
Sentry configuration for error monitoring and tracking

SentryErrorTracker: error tracker collaborator для status engine:
получает только сбои side effects (alert/audit), основной цикл
резолва в Sentry не репортит.
"""
from typing import Any, Dict, Optional

import sentry_sdk
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.aiohttp import AioHttpIntegration
from loguru import logger

from config.config import SENTRY_DSN, ENVIRONMENT


def init_sentry() -> None:
    """
    Initialize Sentry SDK for error monitoring
    """
    if not SENTRY_DSN:
        logger.warning("SENTRY_DSN not configured - error monitoring disabled")
        return

    try:
        sentry_sdk.init(
            dsn=SENTRY_DSN,
            environment=ENVIRONMENT,
            integrations=[
                AsyncioIntegration(),  # Async support
                SqlalchemyIntegration(),  # Database queries tracking
                AioHttpIntegration(),  # Webhook alert delivery
            ],
            traces_sample_rate=0.1 if ENVIRONMENT == "production" else 1.0,
            sample_rate=1.0,  # Capture 100% of errors
            attach_stacktrace=True,
            send_default_pii=False,
            max_breadcrumbs=50,
            before_send=before_send_hook,
        )

        logger.info(f"Sentry initialized successfully (Environment: {ENVIRONMENT})")

    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")


def before_send_hook(event, hint):
    """
    Filter/modify events before sending to Sentry
    """
    if 'exc_info' in hint:
        exc_type, exc_value, tb = hint['exc_info']

        if isinstance(exc_value, KeyboardInterrupt):
            return None

    # Remove sensitive data from event
    if event.get('request'):
        headers = event['request'].get('headers', {})
        if 'Authorization' in headers:
            headers['Authorization'] = '[Filtered]'
        if 'X-API-Key' in headers:
            headers['X-API-Key'] = '[Filtered]'

    return event


def capture_exception(error: BaseException, **extra_context):
    """
    Manually capture an exception with extra context

    Args:
        error: Exception to capture
        extra_context: Additional context data
    """
    with sentry_sdk.new_scope() as scope:
        for key, value in extra_context.items():
            scope.set_extra(key, value)

        sentry_sdk.capture_exception(error)


class SentryErrorTracker:
    """Error tracker на базе Sentry: capture(error, context)."""

    def capture(self, error: BaseException, context: Optional[Dict[str, Any]] = None) -> None:
        context = context or {}
        try:
            capture_exception(error, **context)
        except Exception as e:
            # Трекер не должен ронять вызывающий side effect
            logger.error(f"Failed to report error to Sentry: {e}")
