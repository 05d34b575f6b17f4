import logging
from typing import Optional, Protocol

from orderdesk.core.config import settings
from orderdesk.core.status import OrderStatus

logger = logging.getLogger(__name__)

ORDER_CREATED = "OrderCreated"
ORDER_STATUS_CHANGED = "OrderStatusChanged"


class NotificationDispatcher(Protocol):
    async def notify(self, phone: str, message: str) -> bool:
        ...


class OrderEventPublisher(Protocol):
    async def publish_order_created(self, order_data: dict) -> None:
        ...

    async def publish_status_changed(self, change_data: dict) -> None:
        ...


class LoggingNotificationDispatcher:
    """Dispatcher used when no SMS gateway is wired in: records the message in the log."""

    async def notify(self, phone: str, message: str) -> bool:
        logger.info(f"Notification to {phone}: {message}")
        return True


def build_created_message(order_number: str, total_amount, currency: str = None) -> str:
    currency = currency or settings.CURRENCY
    return (
        f"Order confirmed! Your order #{order_number} has been received and is being processed. "
        f"Total: {total_amount} {currency}. We'll notify you when it's ready for shipment."
    )


def build_status_message(order_number: str, status, notes: Optional[str] = None) -> Optional[str]:
    """Customer-facing text for a status change, or None when the status is not announced."""
    status = OrderStatus(status)
    if status == OrderStatus.CONFIRMED:
        return f"Your order #{order_number} has been confirmed and is being prepared for shipment."
    if status == OrderStatus.READY_TO_SHIP:
        return f"Great news! Your order #{order_number} is ready for shipment and will be sent out soon."
    if status == OrderStatus.SHIPPED:
        return f"Your order #{order_number} has been shipped! Please prepare the cash payment upon delivery."
    if status == OrderStatus.DELIVERED:
        return f"Your order #{order_number} has been delivered successfully. Thank you for your business!"
    if status == OrderStatus.CANCELLED:
        message = f"Your order #{order_number} has been cancelled."
        if notes:
            message += f" Reason: {notes}"
        return message
    return None


def message_for_event(event_type: str, payload: dict) -> Optional[str]:
    if event_type == ORDER_CREATED:
        return build_created_message(payload["order_number"], payload.get("total_amount"))
    if event_type == ORDER_STATUS_CHANGED:
        return build_status_message(
            payload["order_number"], payload["new_status"], payload.get("notes")
        )
    return None


async def notify_for_event(dispatcher: NotificationDispatcher, event_type: str, payload: dict) -> bool:
    """
    Sends the customer notification for an order event.

    Returns True only if a message was sent. Dispatcher failures are logged and
    reported as False; they never propagate to the caller.
    """
    phone = payload.get("customer_phone")
    message = message_for_event(event_type, payload)
    if not phone or not message:
        return False
    try:
        sent = await dispatcher.notify(phone, message)
    except Exception as e:
        logger.error(f"Failed to send notification for order {payload.get('order_number')}: {e}")
        return False
    if not sent:
        logger.warning(f"Notification for order {payload.get('order_number')} was not delivered")
    return bool(sent)


class InlineNotificationPublisher:
    """Publisher that notifies the customer directly instead of going through the broker."""

    def __init__(self, dispatcher: NotificationDispatcher):
        self.dispatcher = dispatcher

    async def publish_order_created(self, order_data: dict) -> None:
        await notify_for_event(self.dispatcher, ORDER_CREATED, order_data)

    async def publish_status_changed(self, change_data: dict) -> None:
        await notify_for_event(self.dispatcher, ORDER_STATUS_CHANGED, change_data)


async def publish_safely(publisher: Optional[OrderEventPublisher], method: str, data: dict) -> None:
    """Best-effort publish after commit. Failures are logged, never raised."""
    if publisher is None:
        return
    try:
        await getattr(publisher, method)(data)
    except Exception as e:
        logger.error(f"Failed to publish {method} for order {data.get('order_number')}: {e}")
