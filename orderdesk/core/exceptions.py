from typing import Optional


class OrderServiceError(Exception):
    """Base class for errors raised by the order lifecycle services."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(OrderServiceError):
    """Malformed input: empty item list, bad quantity, unknown status value."""


class NotFoundError(OrderServiceError):
    """Unknown order or product."""


class BusinessLogicError(OrderServiceError):
    """Well-formed request that the current state of the data forbids."""


class ConcurrentModificationError(BusinessLogicError):
    """The order was changed by someone else between read and write."""


class DatabaseError(OrderServiceError):
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
