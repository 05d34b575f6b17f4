import asyncio
import logging
from contextlib import asynccontextmanager

from orderdesk.caching.redis_client import redis_client
from orderdesk.core.config import settings
from orderdesk.data.database import create_tables, engine
from orderdesk.messaging.consumer import NotificationConsumer
from orderdesk.messaging.producer import producer
from orderdesk.services.notifications import LoggingNotificationDispatcher

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan():
    # Startup
    logger.info("Starting up...")

    await create_tables()

    consumer = NotificationConsumer(LoggingNotificationDispatcher())
    if settings.EVENTS_ENABLED:
        await producer.connect()
        await consumer.connect()
    if settings.ORDER_SEQUENCE_BACKEND == "redis":
        await redis_client.connect()

    try:
        yield consumer
    finally:
        # Shutdown
        logger.info("Shutting down...")
        await consumer.close()
        await producer.close()
        await redis_client.close()
        await engine.dispose()

async def main():
    async with lifespan():
        # consumer callbacks run on the loop until the process is stopped
        await asyncio.Future()

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Stopped.")
