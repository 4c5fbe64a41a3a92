# per-user cart lines waiting to be ordered
from __future__ import annotations

from sqlite3 import Row
from typing import Iterable, List, Optional

import aiosqlite

from db import models
from db.database import Database, fetch_all, fetch_one
from utils.errors import InsufficientStock, NotFound, NotOwner
from utils.logger import get_logger
from utils.pure import check_quantity, from_cents

_logger = get_logger(__name__)

CART_SELECT = """
    SELECT ci.id, ci.owner_id, ci.product_id, ci.quantity, p.name, p.price_cents
    FROM cart_items ci
    JOIN products p ON p.id = ci.product_id
"""


def row_to_line(row: Row) -> models.CartLineItem:
    return models.CartLineItem(
        id=row[0],
        owner_id=row[1],
        product_id=row[2],
        quantity=int(row[3]),
        product_name=row[4],
        unit_price=from_cents(row[5]),
    )


def _placeholders(n: int) -> str:
    return ", ".join("?" * n)


async def _stock_of(conn: aiosqlite.Connection, product_id: int) -> Row:
    row = await fetch_one(
        conn, "SELECT stock, name FROM products WHERE id = ?;", (product_id,)
    )
    if not row:
        raise NotFound("Product", product_id)
    return row


class CartManager:
    """
    Cart lines owned by a single user; one line per (owner, product).

    Quantities are checked against stock whenever they change. The check is
    repeated when the lines are turned into an order.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    async def get_cart(self, owner_id: int) -> List[models.CartLineItem]:
        async with self._db.connect() as conn:
            rows = await fetch_all(
                conn, CART_SELECT + " WHERE ci.owner_id = ? ORDER BY ci.id;", (owner_id,)
            )
        return [row_to_line(r) for r in rows]

    async def _get_line(
        self, conn: aiosqlite.Connection, owner_id: int, line_id: int
    ) -> models.CartLineItem:
        row = await fetch_one(conn, CART_SELECT + " WHERE ci.id = ?;", (line_id,))
        if not row:
            raise NotFound("Cart item", line_id)
        line = row_to_line(row)
        if line.owner_id != owner_id:
            raise NotOwner(line_id, owner_id)
        return line

    async def add_to_cart(
        self, owner_id: int, product_id: int, quantity: int = 1
    ) -> models.CartLineItem:
        """
        Add ``quantity`` of a product; if the owner already has a line for it,
        the line's quantity is increased instead.
        """
        check_quantity(quantity)
        async with self._db.transaction() as conn:
            stock, name = await _stock_of(conn, product_id)
            existing = await fetch_one(
                conn,
                "SELECT id, quantity FROM cart_items WHERE owner_id = ? AND product_id = ?;",
                (owner_id, product_id),
            )
            new_qty = quantity + (int(existing[1]) if existing else 0)
            if new_qty > stock:
                raise InsufficientStock(product_id, new_qty, int(stock), name)
            if existing:
                line_id = existing[0]
                await conn.execute(
                    "UPDATE cart_items SET quantity = ? WHERE id = ?;", (new_qty, line_id)
                )
            else:
                cur = await conn.execute(
                    "INSERT INTO cart_items(owner_id, product_id, quantity) VALUES (?, ?, ?);",
                    (owner_id, product_id, new_qty),
                )
                line_id = cur.lastrowid
                await cur.close()
            line = await self._get_line(conn, owner_id, line_id)
        _logger.debug(f"Cart of user {owner_id}: product {product_id} x{new_qty}")
        return line

    async def update_quantity(
        self, owner_id: int, line_id: int, quantity: int
    ) -> Optional[models.CartLineItem]:
        """Set a line's quantity; 0 removes the line and returns None."""
        check_quantity(quantity, minimum=0)
        async with self._db.transaction() as conn:
            line = await self._get_line(conn, owner_id, line_id)
            if quantity == 0:
                await conn.execute("DELETE FROM cart_items WHERE id = ?;", (line_id,))
                return None
            stock, name = await _stock_of(conn, line.product_id)
            if quantity > stock:
                raise InsufficientStock(line.product_id, quantity, int(stock), name)
            await conn.execute(
                "UPDATE cart_items SET quantity = ? WHERE id = ?;", (quantity, line_id)
            )
            return await self._get_line(conn, owner_id, line_id)

    async def remove_from_cart(self, owner_id: int, line_id: int) -> None:
        async with self._db.transaction() as conn:
            await self._get_line(conn, owner_id, line_id)
            await conn.execute("DELETE FROM cart_items WHERE id = ?;", (line_id,))

    async def clear_cart(self, owner_id: int) -> None:
        async with self._db.connect() as conn:
            await conn.execute("DELETE FROM cart_items WHERE owner_id = ?;", (owner_id,))

    async def get_line_items(
        self,
        owner_id: int,
        line_ids: Iterable[int],
        conn: Optional[aiosqlite.Connection] = None,
    ) -> List[models.CartLineItem]:
        """
        Fetch the given lines in the order requested (duplicates dropped).
        Every id must exist and belong to ``owner_id``.
        """
        ids = list(dict.fromkeys(line_ids))
        if not ids:
            return []
        async with self._db.use(conn) as c:
            rows = await fetch_all(
                c, CART_SELECT + f" WHERE ci.id IN ({_placeholders(len(ids))});", ids
            )
        by_id = {row[0]: row_to_line(row) for row in rows}
        lines = []
        for line_id in ids:
            line = by_id.get(line_id)
            if line is None:
                raise NotFound("Cart item", line_id)
            if line.owner_id != owner_id:
                raise NotOwner(line_id, owner_id)
            lines.append(line)
        return lines

    async def remove_line_items(
        self, line_ids: Iterable[int], conn: Optional[aiosqlite.Connection] = None
    ) -> int:
        ids = list(dict.fromkeys(line_ids))
        if not ids:
            return 0
        async with self._db.use(conn) as c:
            cur = await c.execute(
                f"DELETE FROM cart_items WHERE id IN ({_placeholders(len(ids))});", ids
            )
            removed = cur.rowcount
            await cur.close()
        return removed
