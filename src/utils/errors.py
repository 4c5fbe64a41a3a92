# structured failures raised by the stores, the order engine and attendance
from __future__ import annotations

from datetime import date
from typing import Any, Dict, Optional


class TinapaError(Exception):
    """Base class for every failure the core raises on purpose.

    ``kind`` is a stable code a client can switch on, ``details()`` carries
    the identifiers needed to render a specific message.
    """

    kind = "Error"

    def details(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": str(self), **self.details()}


class ValidationError(TinapaError):
    kind = "ValidationError"


class DatabaseClosed(TinapaError):
    kind = "DatabaseClosed"


class NotFound(TinapaError):
    kind = "NotFound"

    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(f"{entity} {entity_id} not found.")
        self.entity = entity
        self.entity_id = entity_id

    def details(self) -> Dict[str, Any]:
        return {"entity": self.entity, "entity_id": self.entity_id}


class InsufficientStock(TinapaError):
    kind = "InsufficientStock"

    def __init__(
        self,
        product_id: int,
        requested: int,
        available: int,
        product_name: Optional[str] = None,
    ) -> None:
        label = product_name or f"product {product_id}"
        super().__init__(
            f"Cannot take {requested} of {label}: only {available} left in stock."
        )
        self.product_id = product_id
        self.product_name = product_name
        self.requested = requested
        self.available = available

    @property
    def shortfall(self) -> int:
        return self.requested - self.available

    def details(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "requested": self.requested,
            "available": self.available,
            "shortfall": self.shortfall,
        }


class EmptySelection(TinapaError):
    kind = "EmptySelection"

    def __init__(self) -> None:
        super().__init__("Select at least one cart item to order.")


class NotOwner(TinapaError):
    kind = "NotOwner"

    def __init__(self, cart_line_id: int, owner_id: Optional[int]) -> None:
        super().__init__(
            f"Cart item {cart_line_id} does not belong to user {owner_id}."
        )
        self.cart_line_id = cart_line_id
        self.owner_id = owner_id

    def details(self) -> Dict[str, Any]:
        return {"cart_line_id": self.cart_line_id, "owner_id": self.owner_id}


class InvalidTransition(TinapaError):
    kind = "InvalidTransition"

    def __init__(self, order_id: int, current: str, requested: str) -> None:
        super().__init__(
            f"Order {order_id} cannot move from {current} to {requested}."
        )
        self.order_id = order_id
        self.current = current
        self.requested = requested

    def details(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "current": self.current,
            "requested": self.requested,
        }


class AlreadyRecorded(TinapaError):
    kind = "AlreadyRecorded"

    def __init__(self, employee_id: int, day: date, action: str) -> None:
        verb = "timed in" if action == "time_in" else "timed out"
        super().__init__(f"Employee {employee_id} already {verb} on {day}.")
        self.employee_id = employee_id
        self.day = day
        self.action = action

    def details(self) -> Dict[str, Any]:
        return {
            "employee_id": self.employee_id,
            "day": self.day.isoformat(),
            "action": self.action,
        }


class NoTimeInFound(TinapaError):
    kind = "NoTimeInFound"

    def __init__(self, employee_id: int, day: date) -> None:
        super().__init__(
            f"Employee {employee_id} must time in on {day} before timing out."
        )
        self.employee_id = employee_id
        self.day = day

    def details(self) -> Dict[str, Any]:
        return {"employee_id": self.employee_id, "day": self.day.isoformat()}
