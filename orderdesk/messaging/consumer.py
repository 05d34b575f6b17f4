import json
import logging
import aio_pika
from orderdesk.core.config import settings
from orderdesk.messaging.producer import EXCHANGE_NAME, ORDER_CREATED_KEY, ORDER_STATUS_CHANGED_KEY
from orderdesk.services.notifications import (
    ORDER_CREATED, ORDER_STATUS_CHANGED, NotificationDispatcher, notify_for_event,
)

logger = logging.getLogger(__name__)

QUEUE_NAME = "order_notifications"

class NotificationConsumer:
    """Turns order events from the broker into customer notifications."""

    def __init__(self, dispatcher: NotificationDispatcher, url: str = None):
        self.dispatcher = dispatcher
        self.url = url or settings.RABBITMQ_URL
        self.connection = None

    async def connect(self):
        try:
            self.connection = await aio_pika.connect_robust(self.url)
            channel = await self.connection.channel()
            exchange = await channel.declare_exchange(
                EXCHANGE_NAME, aio_pika.ExchangeType.TOPIC, durable=True
            )
            queue = await channel.declare_queue(QUEUE_NAME, durable=True)
            await queue.bind(exchange, routing_key=ORDER_CREATED_KEY)
            await queue.bind(exchange, routing_key=ORDER_STATUS_CHANGED_KEY)

            await queue.consume(self.process_message)
            logger.info("Listening for order events...")
        except Exception as e:
            logger.error(f"Failed to connect to RabbitMQ consumer: {e}")
            raise

    async def close(self):
        if self.connection:
            await self.connection.close()
            self.connection = None

    async def process_message(self, message: aio_pika.abc.AbstractIncomingMessage):
        async with message.process():
            try:
                body = json.loads(message.body)
            except ValueError as e:
                logger.error(f"Discarding malformed order event: {e}")
                return
            await self.handle_event(body)

    async def handle_event(self, event: dict) -> bool:
        event_type = event.get("event_type")
        payload = event.get("payload") or {}
        if event_type not in (ORDER_CREATED, ORDER_STATUS_CHANGED):
            logger.warning(f"Ignoring unknown event type {event_type}")
            return False
        if not payload.get("order_number"):
            logger.warning(f"Ignoring {event_type} event without an order number")
            return False

        sent = await notify_for_event(self.dispatcher, event_type, payload)
        if sent:
            logger.info(f"Notified customer about {event_type} for order {payload['order_number']}")
        return sent
