import json
import logging
from typing import Optional
from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from marketplace.application.interfaces import EventProducer

logger = logging.getLogger(__name__)


class KafkaProducerClient(EventProducer):
    """Публикует события заказов, ключ сообщения это ID заказа"""

    def __init__(self, bootstrap_servers: str, topic: str):
        self._bootstrap_servers = bootstrap_servers
        self._topic = topic
        self._producer: Optional[AIOKafkaProducer] = None

    async def start(self):
        if self._producer:
            return
        self._producer = AIOKafkaProducer(
            bootstrap_servers=self._bootstrap_servers,
            acks="all",
            enable_idempotence=True
        )
        await self._producer.start()
        logger.info(f"Kafka producer подключен, топик {self._topic}")

    async def stop(self):
        if not self._producer:
            return
        await self._producer.stop()
        self._producer = None
        logger.info("Kafka producer остановлен")

    async def publish(self, event_type: str, event_data: dict, key: str) -> bool:
        if not self._producer:
            logger.error("Kafka producer не запущен")
            return False

        payload = json.dumps({"event_type": event_type, **event_data}, default=str)
        try:
            await self._producer.send_and_wait(
                self._topic,
                key=key.encode(),
                value=payload.encode(),
                headers=[("event_type", event_type.encode())]
            )
        except KafkaError as e:
            logger.error(f"Не удалось отправить {event_type} по заказу {key}: {e}")
            return False

        logger.debug(f"{event_type} отправлено в {self._topic}, заказ {key}")
        return True
