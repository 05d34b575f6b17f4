import json
import logging
import uuid
from datetime import datetime, timezone
import aio_pika
from orderdesk.core.config import settings

logger = logging.getLogger(__name__)

EXCHANGE_NAME = "orders"
ORDER_CREATED_KEY = "order.created"
ORDER_STATUS_CHANGED_KEY = "order.status_changed"

class OrderEventProducer:
    def __init__(self, url: str = None):
        self.url = url or settings.RABBITMQ_URL
        self.connection = None
        self.channel = None
        self.exchange = None

    async def connect(self):
        if not self.connection:
            try:
                self.connection = await aio_pika.connect_robust(self.url)
                self.channel = await self.connection.channel()
                self.exchange = await self.channel.declare_exchange(
                    EXCHANGE_NAME, aio_pika.ExchangeType.TOPIC, durable=True
                )
                logger.info("Connected to RabbitMQ for producing.")
            except Exception as e:
                logger.error(f"Failed to connect to RabbitMQ producer: {e}")
                self.connection = None
                raise

    async def close(self):
        if self.connection:
            await self.connection.close()
            self.connection = None
            self.exchange = None

    async def publish_order_created(self, order_data: dict):
        await self._publish("OrderCreated", ORDER_CREATED_KEY, order_data)

    async def publish_status_changed(self, change_data: dict):
        await self._publish("OrderStatusChanged", ORDER_STATUS_CHANGED_KEY, change_data)

    async def _publish(self, event_type: str, routing_key: str, payload: dict):
        if not self.exchange:
            await self.connect()

        event = {
            "event_type": event_type,
            "event_id": str(uuid.uuid4()),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "payload": payload
        }

        message = aio_pika.Message(
            body=json.dumps(event, default=str).encode(),
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT
        )

        await self.exchange.publish(message, routing_key=routing_key)
        logger.info(f"Published {event_type} event for order {payload.get('order_number')}")

producer = OrderEventProducer()

def default_publisher():
    """Publisher used by the services when none is injected; None disables events."""
    return producer if settings.EVENTS_ENABLED else None

