import asyncio
import logging

from marketplace.database import AsyncSessionLocal
from marketplace.infrastructure.unit_of_work import UnitOfWork
from marketplace.infrastructure.kafka_producer import KafkaProducerClient
from marketplace.application.process_outbox import ProcessOutboxEventsUseCase
from marketplace.config import settings

logger = logging.getLogger(__name__)


async def outbox_worker(producer: KafkaProducerClient, poll_interval: float = 3.0):
    """Worker для публикации outbox событий"""
    logger.info("Outbox worker запущен")
    await producer.start()

    try:
        while True:
            try:
                use_case = ProcessOutboxEventsUseCase(
                    unit_of_work=UnitOfWork(AsyncSessionLocal),
                    event_producer=producer
                )
                processed = await use_case(limit=5)
                if processed:
                    logger.info(f"Опубликовано {processed} outbox events")

                await asyncio.sleep(poll_interval)

            except Exception as e:
                logger.error(f"Ошибка в outbox worker: {e}", exc_info=True)
                await asyncio.sleep(10)
    finally:
        await producer.stop()


async def main():
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    producer = KafkaProducerClient(settings.KAFKA_BOOTSTRAP_SERVERS, settings.ORDER_EVENTS_TOPIC)
    await outbox_worker(producer)


if __name__ == "__main__":
    asyncio.run(main())
