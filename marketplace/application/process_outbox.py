import logging
import json

from marketplace.application.interfaces import EventProducer

logger = logging.getLogger(__name__)


class ProcessOutboxEventsUseCase:
    def __init__(self, unit_of_work, event_producer: EventProducer):
        self._uow = unit_of_work
        self._producer = event_producer

    async def __call__(self, limit: int = 5) -> int:
        """Публикует pending события из outbox. Возвращает количество опубликованных."""
        published = 0

        async with self._uow() as uow:
            pending = await uow.outbox.get_pending(limit=limit)

            for event in pending:
                event_data = event["event_data"]
                if isinstance(event_data, str):
                    event_data = json.loads(event_data)

                success = await self._producer.publish(
                    event_type=event["event_type"],
                    event_data=event_data,
                    key=event["order_id"]
                )
                if success:
                    await uow.outbox.mark_as_published(event["id"])
                    published += 1
                    logger.info(f"Опубликовано {event['event_type']} event {event['id']}")
                else:
                    logger.warning(f"Не удалось опубликовать {event['event_type']} event {event['id']}")

            await uow.commit()

        return published
