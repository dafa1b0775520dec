"""
Strategy Status Scheduler

APScheduler job для периодического sweep всех инстансов + event hook
для резолва сразу после ingest нового health snapshot.

- Sweep: каждые N сек, redis lock (только один worker), bounded concurrency
- Retry: только StoreUnavailableError, exponential backoff (tenacity)
- InstanceNotFoundError никогда не ретраится
"""
import asyncio
from typing import Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config.config import REDIS_URL
from algostudio.core.exceptions import InstanceNotFoundError, StoreUnavailableError
from algostudio.services.strategy_status.config import StrategyStatusConfig, get_config
from algostudio.services.strategy_status.orchestrator import StatusOrchestrator, StatusResult


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        f"Status resolution retry #{retry_state.attempt_number} "
        f"after store failure: {error}"
    )


class StrategyStatusScheduler:
    """
    APScheduler для strategy status sweep.

    Jobs:
    - strategy_status_sweep: резолв всех активных инстансов
    """

    LOCK_KEY = "strategy_status:sweep_lock"

    def __init__(
        self,
        orchestrator: StatusOrchestrator,
        config: Optional[StrategyStatusConfig] = None,
        redis_client: Optional[redis.Redis] = None,
        use_lock: bool = True,
    ):
        self.orchestrator = orchestrator
        self.config = config or get_config()
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self._redis = redis_client
        self._use_lock = use_lock

    def start(self):
        """Запустить scheduler."""
        if self._running:
            logger.warning("Strategy status scheduler already running")
            return

        if not self.config.sweep.enabled:
            logger.info("Strategy status sweep disabled, scheduler not started")
            return

        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self._job_sweep,
            IntervalTrigger(seconds=self.config.sweep.interval_sec),
            id="strategy_status_sweep",
            name="Strategy Status Sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        self._running = True

        logger.info(
            f"Strategy status scheduler started: sweep every {self.config.sweep.interval_sec}s, "
            f"concurrency {self.config.sweep.max_concurrency}"
        )

    def stop(self):
        """Остановить scheduler."""
        if self.scheduler:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Strategy status scheduler stopped")

    async def trigger_sweep_now(self) -> Dict[str, int]:
        """Ручной запуск sweep."""
        logger.info("Manual strategy status sweep triggered")
        return await self._job_sweep()

    async def on_health_snapshot_ingested(self, instance_id: str) -> Optional[StatusResult]:
        """
        Event hook: новый health snapshot → резолв одного инстанса.

        Returns:
            StatusResult или None если инстанс не найден / store недоступен
        """
        try:
            return await self.resolve_with_retry(instance_id)
        except InstanceNotFoundError:
            logger.warning(f"Health snapshot ingested for unknown instance {instance_id}")
            return None
        except StoreUnavailableError as e:
            logger.warning(f"Status resolution for {instance_id} gave up: {e}")
            return None

    async def resolve_with_retry(self, instance_id: str) -> StatusResult:
        """Резолв с backoff только на StoreUnavailableError."""
        sweep = self.config.sweep
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(StoreUnavailableError),
            stop=stop_after_attempt(sweep.retry_attempts),
            wait=wait_exponential(min=sweep.retry_min_wait_sec, max=sweep.retry_max_wait_sec),
            before_sleep=_log_retry,
            reraise=True,
        ):
            with attempt:
                return await self.orchestrator.compute_and_cache_status(instance_id)

    # =========================================================================
    # JOBS
    # =========================================================================

    async def _job_sweep(self) -> Dict[str, int]:
        """Job: sweep всех инстансов."""
        summary = {"resolved": 0, "changed": 0, "not_found": 0, "failed": 0}

        if not await self._acquire_lock():
            logger.debug("Strategy status sweep lock not acquired, skipping")
            return {**summary, "skipped": 1}

        try:
            try:
                instance_ids = await self.orchestrator.store.list_instance_ids_to_resolve()
            except StoreUnavailableError as e:
                logger.warning(f"Strategy status sweep failed to list instances: {e}")
                return {**summary, "failed": 1}

            semaphore = asyncio.Semaphore(self.config.sweep.max_concurrency)

            async def _resolve(instance_id: str) -> str:
                async with semaphore:
                    try:
                        result = await self.resolve_with_retry(instance_id)
                    except InstanceNotFoundError:
                        return "not_found"
                    except StoreUnavailableError as e:
                        logger.warning(f"Status resolution for {instance_id} failed: {e}")
                        return "failed"
                    return "changed" if result.changed else "resolved"

            outcomes: List[str] = await asyncio.gather(
                *(_resolve(instance_id) for instance_id in instance_ids)
            )

            for outcome in outcomes:
                summary[outcome] += 1
            # changed тоже resolved
            summary["resolved"] += summary["changed"]

            logger.info(
                f"Strategy status sweep: {summary['resolved']} resolved, "
                f"{summary['changed']} changed, {summary['failed']} failed"
            )
            return summary

        finally:
            await self._release_lock()

    # =========================================================================
    # LOCK
    # =========================================================================

    async def _acquire_lock(self) -> bool:
        """Acquire distributed lock."""
        if not self._use_lock:
            return True
        try:
            if not self._redis:
                self._redis = redis.from_url(REDIS_URL)

            result = await self._redis.set(
                self.LOCK_KEY,
                "1",
                nx=True,
                ex=self.config.sweep.lock_ttl_sec
            )
            return bool(result)
        except (RedisError, OSError) as e:
            logger.warning(f"Redis lock failed, proceeding without lock: {e}")
            return True

    async def _release_lock(self):
        """Release distributed lock."""
        if not self._use_lock or not self._redis:
            return
        try:
            await self._redis.delete(self.LOCK_KEY)
        except (RedisError, OSError) as e:
            logger.warning(f"Redis lock release failed: {e}")
