# turns cart selections into orders and moves orders through their statuses
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from sqlite3 import Row
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

import aiosqlite

from db import models
from db.cart import CartManager
from db.database import Database, fetch_all, fetch_one
from db.models import OrderStatus
from db.products import ProductStore
from utils.errors import (
    EmptySelection,
    InsufficientStock,
    InvalidTransition,
    NotFound,
    TinapaError,
    ValidationError,
)
from utils.logger import get_logger
from utils.pure import (
    check_quantity,
    from_cents,
    from_db_ts,
    generate_order_number,
    like_pattern,
    to_cents,
    to_db_ts,
)

_logger = get_logger(__name__)

# DELIVERED and CANCELLED are terminal
TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

ORDER_SELECT = """
    SELECT id, order_number, owner_id, status, total_cents, created_at, updated_at
    FROM orders
"""

ITEM_SELECT = """
    SELECT oi.id, oi.order_id, oi.product_id, p.name, oi.quantity, oi.unit_cents
    FROM order_items oi
    JOIN products p ON p.id = oi.product_id
"""


@dataclass(frozen=True)
class OrderFilter:
    """
    Criteria for list_orders; unset fields do not filter.

    Fields:
      - owner_id: orders of one user (admin views leave it unset)
      - status: only orders in this status
      - search: case-insensitive substring of the order number
      - created_from / created_to: inclusive bounds on created_at
      - page / page_size: 1-based page; no page means everything
    """

    owner_id: Optional[int] = None
    status: Optional[OrderStatus] = None
    search: Optional[str] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    page: Optional[int] = None
    page_size: int = 20


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS[current]


def _parse_status(status) -> OrderStatus:
    try:
        return OrderStatus(status)
    except ValueError:
        raise ValidationError(f"Unknown order status {status!r}.") from None


def _row_to_item(row: Row) -> models.OrderLineItem:
    return models.OrderLineItem(
        id=row[0],
        order_id=row[1],
        product_id=row[2],
        product_name=row[3],
        quantity=int(row[4]),
        unit_price=from_cents(row[5]),
    )


def _row_to_order(row: Row, items: Sequence[models.OrderLineItem]) -> models.Order:
    return models.Order(
        id=row[0],
        order_number=row[1],
        owner_id=row[2],
        status=OrderStatus(row[3]),
        total_price=from_cents(row[4]),
        created_at=from_db_ts(row[5]),
        updated_at=from_db_ts(row[6]),
        items=tuple(items),
    )


def _filter_clause(flt: OrderFilter) -> Tuple[str, List[object]]:
    clauses: List[str] = []
    params: List[object] = []
    if flt.owner_id is not None:
        clauses.append("owner_id = ?")
        params.append(flt.owner_id)
    if flt.status is not None:
        clauses.append("status = ?")
        params.append(_parse_status(flt.status).value)
    if flt.search and flt.search.strip():
        clauses.append("LOWER(order_number) LIKE ? ESCAPE '\\'")
        params.append(like_pattern(flt.search))
    if flt.created_from is not None:
        clauses.append("created_at >= ?")
        params.append(to_db_ts(flt.created_from))
    if flt.created_to is not None:
        clauses.append("created_at <= ?")
        params.append(to_db_ts(flt.created_to))
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, params


class OrderEngine:
    """Creates orders from cart selections and governs their status.

    Stock checks, stock decrements, the order rows and the removal of the
    consumed cart lines all happen in one transaction, so a failed item
    leaves stock, cart and orders untouched.
    """

    def __init__(
        self,
        db: Database,
        products: Optional[ProductStore] = None,
        carts: Optional[CartManager] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._db = db
        self._products = products or ProductStore(db)
        self._carts = carts or CartManager(db)
        self._clock = clock or datetime.now

    # ---------------------------
    # Creation
    # ---------------------------

    async def create_order(
        self, owner_id: Optional[int], cart_line_ids: Iterable[int]
    ) -> models.Order:
        """
        Order the selected cart lines of ``owner_id``.

        Unit prices are read from the products at this moment and frozen on
        the order lines. Only the selected cart lines are removed.
        """
        ids = list(dict.fromkeys(cart_line_ids))
        if not ids:
            raise EmptySelection()
        try:
            async with self._db.transaction() as conn:
                lines = await self._carts.get_line_items(owner_id, ids, conn)
                order_id = await self._place(
                    conn,
                    owner_id,
                    [(line.product_id, line.quantity) for line in lines],
                    OrderStatus.PENDING,
                )
                await self._carts.remove_line_items(ids, conn)
                order = await self._load(conn, order_id)
        except TinapaError as e:
            _logger.warning(f"Order for user {owner_id} rejected: {e}")
            raise
        _logger.info(
            f"Order {order.order_number} created for user {owner_id}: "
            f"{len(order.items)} line(s), total {order.total_price}"
        )
        return order

    async def create_walk_in_order(
        self, items: Iterable[Tuple[int, int]]
    ) -> models.Order:
        """
        Counter sale without a user or cart: ``items`` are (product_id, quantity)
        pairs. The order starts CONFIRMED.
        """
        merged: Dict[int, int] = {}
        for product_id, quantity in items:
            merged[product_id] = merged.get(product_id, 0) + check_quantity(quantity)
        if not merged:
            raise EmptySelection()
        try:
            async with self._db.transaction() as conn:
                order_id = await self._place(
                    conn, None, list(merged.items()), OrderStatus.CONFIRMED
                )
                order = await self._load(conn, order_id)
        except TinapaError as e:
            _logger.warning(f"Walk-in order rejected: {e}")
            raise
        _logger.info(
            f"Walk-in order {order.order_number} created, total {order.total_price}"
        )
        return order

    async def _place(
        self,
        conn: aiosqlite.Connection,
        owner_id: Optional[int],
        items: List[Tuple[int, int]],
        status: OrderStatus,
    ) -> int:
        # validate every line before touching stock
        products = []
        for product_id, quantity in items:
            product = await self._products.get_product(product_id, conn)
            if product.stock < quantity:
                raise InsufficientStock(
                    product_id, quantity, product.stock, product.name
                )
            products.append((product, quantity))

        for product, quantity in products:
            await self._products.decrement_stock(conn, product.id, quantity)

        total_cents = sum(to_cents(p.price) * q for p, q in products)
        now = self._clock()

        # pick unique order number
        while True:
            order_number = generate_order_number(now)
            exists = await fetch_one(
                conn, "SELECT 1 FROM orders WHERE order_number = ?;", (order_number,)
            )
            if not exists:
                break

        cur = await conn.execute(
            """
            INSERT INTO orders(order_number, owner_id, status, total_cents, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?);
            """,
            (order_number, owner_id, status.value, total_cents, to_db_ts(now), to_db_ts(now)),
        )
        order_id = cur.lastrowid
        await cur.close()
        await conn.executemany(
            "INSERT INTO order_items(order_id, product_id, quantity, unit_cents) VALUES (?, ?, ?, ?);",
            [(order_id, p.id, q, to_cents(p.price)) for p, q in products],
        )
        return order_id

    # ---------------------------
    # Status
    # ---------------------------

    async def update_status(self, order_id: int, new_status) -> models.Order:
        """
        Move an order along PENDING -> CONFIRMED -> DELIVERED, or PENDING ->
        CANCELLED. Asking for the status the order already has changes nothing,
        terminal ones included: DELIVERED -> DELIVERED and CANCELLED -> CANCELLED
        return the order as it is, without touching ``updated_at`` or stock.
        """
        target = _parse_status(new_status)
        restock = self._db.settings.restock_on_cancel
        async with self._db.transaction() as conn:
            order = await self._load(conn, order_id)
            if order.status is target:
                return order
            if not can_transition(order.status, target):
                _logger.warning(
                    f"Order {order.order_number}: {order.status.value} -> {target.value} refused"
                )
                raise InvalidTransition(order_id, order.status.value, target.value)
            if target is OrderStatus.CANCELLED and restock:
                for item in order.items:
                    await self._products.increment_stock(
                        conn, item.product_id, item.quantity
                    )
            await conn.execute(
                "UPDATE orders SET status = ?, updated_at = ? WHERE id = ?;",
                (target.value, to_db_ts(self._clock()), order_id),
            )
            updated = await self._load(conn, order_id)
        _logger.info(
            f"Order {updated.order_number}: {order.status.value} -> {target.value}"
        )
        return updated

    async def delete_order(self, order_id: int) -> None:
        """Remove an order and its lines for good. Stock is not given back."""
        async with self._db.transaction() as conn:
            row = await fetch_one(
                conn, "SELECT order_number FROM orders WHERE id = ?;", (order_id,)
            )
            if not row:
                raise NotFound("Order", order_id)
            await conn.execute("DELETE FROM order_items WHERE order_id = ?;", (order_id,))
            await conn.execute("DELETE FROM orders WHERE id = ?;", (order_id,))
        _logger.info(f"Order {row[0]} deleted")

    # ---------------------------
    # Read
    # ---------------------------

    async def get_order(self, order_id: int) -> models.Order:
        async with self._db.connect() as conn:
            return await self._load(conn, order_id)

    async def get_order_by_number(self, order_number: str) -> models.Order:
        async with self._db.connect() as conn:
            row = await fetch_one(
                conn, ORDER_SELECT + " WHERE order_number = ?;", (order_number,)
            )
            if not row:
                raise NotFound("Order", order_number)
            items = await self._items_for(conn, [row[0]])
        return _row_to_order(row, items.get(row[0], []))

    async def list_orders(
        self, flt: Optional[OrderFilter] = None
    ) -> List[models.Order]:
        """Orders matching ``flt``, newest first."""
        flt = flt or OrderFilter()
        where, params = _filter_clause(flt)
        sql = f"{ORDER_SELECT} {where} ORDER BY created_at DESC, id DESC"
        if flt.page is not None:
            if flt.page < 1 or flt.page_size < 1:
                raise ValidationError("Page and page size must be at least 1.")
            sql += " LIMIT ? OFFSET ?"
            params = params + [flt.page_size, (flt.page - 1) * flt.page_size]
        async with self._db.connect() as conn:
            rows = await fetch_all(conn, sql + ";", params)
            items = await self._items_for(conn, [r[0] for r in rows])
        return [_row_to_order(r, items.get(r[0], [])) for r in rows]

    async def count_orders(self, flt: Optional[OrderFilter] = None) -> int:
        where, params = _filter_clause(flt or OrderFilter())
        async with self._db.connect() as conn:
            row = await fetch_one(conn, f"SELECT COUNT(*) FROM orders {where};", params)
        return int(row[0])

    async def _load(self, conn: aiosqlite.Connection, order_id: int) -> models.Order:
        row = await fetch_one(conn, ORDER_SELECT + " WHERE id = ?;", (order_id,))
        if not row:
            raise NotFound("Order", order_id)
        items = await self._items_for(conn, [order_id])
        return _row_to_order(row, items.get(order_id, []))

    async def _items_for(
        self, conn: aiosqlite.Connection, order_ids: List[int]
    ) -> Dict[int, List[models.OrderLineItem]]:
        if not order_ids:
            return {}
        marks = ", ".join("?" * len(order_ids))
        rows = await fetch_all(
            conn, ITEM_SELECT + f" WHERE oi.order_id IN ({marks}) ORDER BY oi.id;", order_ids
        )
        grouped: Dict[int, List[models.OrderLineItem]] = {}
        for row in rows:
            item = _row_to_item(row)
            grouped.setdefault(item.order_id, []).append(item)
        return grouped
