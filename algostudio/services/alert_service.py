"""
Alert Service

Доставка alert'ов по пользовательским AlertConfig.
- Rate limit: 1 alert на тип на config раз в 15 минут
- Каналы: TELEGRAM (aiogram Bot), WEBHOOK (aiohttp POST JSON)

Сбой одного канала не останавливает остальные; по итогу
поднимается AlertDeliveryError, чтобы вызывающий мог его зарепортить.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from html import escape
from typing import Any, Dict, List, Optional

import aiohttp
from aiogram import Bot
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.config import BOT_TOKEN
from algostudio.core.exceptions import AlertDeliveryError
from algostudio.database import crud
from algostudio.database.models import AlertChannel, AlertConfig


RATE_LIMIT = timedelta(minutes=15)
WEBHOOK_TIMEOUT_SEC = 10


@dataclass(frozen=True)
class AlertPayload:
    """Payload alert'а для одного инстанса."""
    user_id: str
    instance_id: str
    ea_name: str
    alert_type: str
    message: str


class AlertService:
    """
    Alert sink: send(payload).

    Bot создаётся лениво из BOT_TOKEN, если не передан снаружи.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        bot: Optional[Bot] = None,
    ):
        self._session_maker = session_maker
        self.bot = bot
        self._own_bot = False

    async def _get_bot(self) -> Bot:
        """Получить bot instance (lazy init)."""
        if self.bot is None:
            self.bot = Bot(
                token=BOT_TOKEN,
                default=DefaultBotProperties(parse_mode=ParseMode.HTML)
            )
            self._own_bot = True
        return self.bot

    async def close(self):
        """Закрыть bot session если создан нами."""
        if self._own_bot and self.bot:
            await self.bot.session.close()
            self.bot = None
            self._own_bot = False

    async def send(self, payload: AlertPayload) -> Dict[str, int]:
        """
        Trigger all matching alert configs for an event.

        Returns:
            {"sent": N, "rate_limited": N}

        Raises:
            AlertDeliveryError: если хотя бы один канал упал
        """
        now = datetime.now(UTC)
        sent = 0
        rate_limited = 0
        failures: List[str] = []

        async with self._session_maker() as session:
            configs = await crud.get_enabled_alert_configs(
                session, payload.user_id, payload.alert_type, payload.instance_id
            )
            if not configs:
                logger.debug(
                    f"No alert configs for {payload.alert_type} "
                    f"(user={payload.user_id}, instance={payload.instance_id})"
                )
                return {"sent": 0, "rate_limited": 0}

            for config in configs:
                if self._is_rate_limited(config, now):
                    rate_limited += 1
                    continue

                await crud.mark_alert_triggered(session, config.id, now)

                try:
                    await self._deliver(config, payload, now)
                    sent += 1
                    logger.info(
                        f"Alert triggered: {payload.alert_type} via {config.channel} "
                        f"for instance {payload.instance_id}"
                    )
                except Exception as e:
                    failures.append(f"{config.channel}#{config.id}: {e}")
                    logger.warning(
                        f"Alert delivery failed: {payload.alert_type} via {config.channel} "
                        f"for instance {payload.instance_id}: {e}"
                    )

        if failures:
            raise AlertDeliveryError(payload.alert_type, failures)

        return {"sent": sent, "rate_limited": rate_limited}

    @staticmethod
    def _is_rate_limited(config: AlertConfig, now: datetime) -> bool:
        if config.last_triggered is None:
            return False
        last = config.last_triggered
        if last.tzinfo is None:
            last = last.replace(tzinfo=UTC)
        return now - last < RATE_LIMIT

    async def _deliver(self, config: AlertConfig, payload: AlertPayload, now: datetime) -> None:
        if config.channel == AlertChannel.TELEGRAM.value:
            if not config.telegram_chat_id:
                logger.warning(f"Telegram alert config #{config.id} has no chat id, skipping")
                return
            await self._send_telegram(config.telegram_chat_id, self._format_telegram(payload))
        elif config.channel == AlertChannel.WEBHOOK.value:
            if not config.webhook_url:
                logger.warning(f"Webhook alert config #{config.id} has no URL, skipping")
                return
            await self._send_webhook(config.webhook_url, {
                "event": "alert",
                "alertType": payload.alert_type,
                "eaName": payload.ea_name,
                "instanceId": payload.instance_id,
                "message": payload.message,
                "triggeredAt": now.isoformat(),
            })
        else:
            logger.warning(f"Unsupported alert channel {config.channel} (config #{config.id})")

    @staticmethod
    def _format_telegram(payload: AlertPayload) -> str:
        return (
            f"<b>AlgoStudio Alert: {escape(payload.alert_type)}</b>\n\n"
            f"EA: {escape(payload.ea_name)}\n"
            f"{escape(payload.message)}"
        )

    async def _send_telegram(self, chat_id: str, text: str) -> None:
        bot = await self._get_bot()
        await bot.send_message(chat_id=chat_id, text=text)

    async def _send_webhook(self, url: str, body: Dict[str, Any]) -> None:
        timeout = aiohttp.ClientTimeout(total=WEBHOOK_TIMEOUT_SEC)
        async with aiohttp.ClientSession(timeout=timeout) as http:
            async with http.post(url, json=body) as response:
                if response.status >= 400:
                    raise RuntimeError(f"webhook responded {response.status}")
