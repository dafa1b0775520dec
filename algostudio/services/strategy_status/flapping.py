"""
Flapping Detector

Подавляет alert'ы когда статус "прыгает" между двумя значениями.

Переходы группируются по НЕупорядоченной паре статусов:
MONITORING→CONSISTENT→MONITORING→CONSISTENT: это flapping, хотя ни одно
направленное ребро не повторилось 3 раза.

Подавляется только доставка alert'а. Кеш статуса и transition record
пишутся всегда.
"""
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence, Tuple

from loguru import logger

from algostudio.services.strategy_status.config import FlappingConfig, get_config


@dataclass(frozen=True)
class TransitionRecord:
    """Один переход статуса (строки из strategy_status_transitions)."""
    instance_id: str
    from_status: Optional[str]
    to_status: str
    confidence: str
    timestamp: datetime


def transition_pair_key(record: TransitionRecord) -> Tuple[str, ...]:
    """Ключ пары без учёта направления: sorted([from, to])."""
    statuses = [record.from_status or "NONE", record.to_status]
    return tuple(sorted(statuses))


class FlappingDetector:
    """
    Решает, подавлять ли alert для очередного перехода.

    Вход: последние N переходов инстанса в окне W (текущий переход
    ещё НЕ записан).
    """

    def __init__(self, config: Optional[FlappingConfig] = None):
        self.config = config or get_config().flapping

    def should_suppress(self, recent: Sequence[TransitionRecord]) -> bool:
        """
        Returns:
            True если какая-то пара статусов встречается >= threshold раз
            среди N последних переходов
        """
        window = list(recent)[: self.config.window_size]

        # Мало истории: не называем это flapping
        if len(window) < self.config.window_size:
            return False

        counts = Counter(transition_pair_key(record) for record in window)
        pair, count = counts.most_common(1)[0]

        if count >= self.config.threshold:
            logger.warning(
                f"Status flapping detected for {window[0].instance_id}: "
                f"{'↔'.join(pair)} x{count} in last {len(window)} transitions, "
                f"suppressing alert"
            )
            return True

        return False
