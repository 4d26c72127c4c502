"""Domain errors raised by the service layer.

Routers translate them into HTTP responses (see ``server/main.py``); the
payment webhook handles :class:`CorrelationFailure` itself because the
provider must still get its acknowledgement.
"""

from typing import Any, Optional


class ServiceError(Exception):
    """Base class for errors raised by services."""


class ValidationError(ServiceError):
    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class NotFoundError(ServiceError):
    def __init__(self, entity: str, key: Any):
        super().__init__(f"{entity} {key!r} not found")
        self.entity = entity
        self.key = key


class CorrelationFailure(ServiceError):
    """A payment event that cannot be matched to a payable order.

    Money has already moved when this happens, so it needs manual
    reconciliation rather than a retry.
    """

    def __init__(self, reason: str, payload: Optional[str] = None, order_id: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.payload = payload
        self.order_id = order_id
