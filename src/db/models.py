# provide dataclass models

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class AttendanceStatus(str, Enum):
    OVERTIME = "OVERTIME"
    UNDERTIME = "UNDERTIME"
    EXACT_TIME = "EXACT_TIME"


class PunchKind(str, Enum):
    TIME_IN = "TIME_IN"
    TIME_OUT = "TIME_OUT"


@dataclass(frozen=True)
class Product:
    id: int
    name: str
    description: str
    price: Decimal
    stock: int
    categories: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CartLineItem:
    id: int
    owner_id: int
    product_id: int
    quantity: int
    product_name: str
    unit_price: Decimal  # current product price, not a snapshot

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class OrderLineItem:
    id: int
    order_id: int
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal  # price at time of order

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class Order:
    id: int
    order_number: str
    owner_id: Optional[int]
    status: OrderStatus
    total_price: Decimal
    created_at: datetime
    updated_at: datetime
    items: Tuple[OrderLineItem, ...] = ()


@dataclass(frozen=True)
class Employee:
    id: int
    firstname: str
    lastname: str
    username: str
    is_active: bool = True

    @property
    def full_name(self) -> str:
        return f"{self.firstname} {self.lastname}"


@dataclass(frozen=True)
class Attendance:
    id: int
    employee_id: int
    day: date
    time_in: Optional[datetime]
    time_out: Optional[datetime]
    status: Optional[AttendanceStatus]


@dataclass(frozen=True)
class AttendanceStats:
    total_days: int
    complete_days: int
    incomplete_days: int
    total_hours: float
    average_hours: float
