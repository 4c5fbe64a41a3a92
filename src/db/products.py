# product catalogue and stock
from __future__ import annotations

from sqlite3 import Row
from typing import List, Optional, Tuple

import aiosqlite

from db import models
from db.database import Database, fetch_all, fetch_one
from utils.errors import InsufficientStock, NotFound, ValidationError
from utils.logger import get_logger
from utils.pure import Money, check_quantity, from_cents, like_pattern, to_cents

_logger = get_logger(__name__)

_SEP = "\x1f"

PRODUCT_SELECT = f"""
    SELECT p.id, p.name, p.description, p.price_cents, p.stock,
           (SELECT GROUP_CONCAT(c.name, '{_SEP}')
              FROM product_categories pc
              JOIN categories c ON c.id = pc.category_id
             WHERE pc.product_id = p.id) AS categories
    FROM products p
"""

SORT_COLUMNS = {"name": "p.name", "price": "p.price_cents", "stock": "p.stock"}
MAX_PAGE_SIZE = 100


def row_to_product(row: Row) -> models.Product:
    cats = tuple(sorted(row[5].split(_SEP))) if row[5] else ()
    return models.Product(
        id=row[0],
        name=row[1],
        description=row[2],
        price=from_cents(row[3]),
        stock=int(row[4]),
        categories=cats,
    )


async def _upsert_category(conn: aiosqlite.Connection, name: str) -> int:
    await conn.execute("INSERT OR IGNORE INTO categories(name) VALUES (?);", (name,))
    row = await fetch_one(conn, "SELECT id FROM categories WHERE name = ?;", (name,))
    return int(row[0])


async def _link_category(
    conn: aiosqlite.Connection, product_id: int, category: str
) -> None:
    await conn.execute(
        "DELETE FROM product_categories WHERE product_id = ?;", (product_id,)
    )
    category_id = await _upsert_category(conn, category)
    await conn.execute(
        "INSERT INTO product_categories(product_id, category_id) VALUES (?, ?);",
        (product_id, category_id),
    )


def _clean_name(name: str, what: str = "Product name") -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError(f"{what} is required.")
    return name


def _check_stock(stock: int) -> int:
    if isinstance(stock, bool) or not isinstance(stock, int):
        raise ValidationError("Stock must be a whole number.")
    if stock < 0:
        raise ValidationError("Stock cannot be negative.")
    return stock


class ProductStore:
    """Products, their categories, and the stock counter orders draw from."""

    def __init__(self, db: Database) -> None:
        self._db = db

    # ---------------------------
    # Read
    # ---------------------------

    async def get_product(
        self, product_id: int, conn: Optional[aiosqlite.Connection] = None
    ) -> models.Product:
        async with self._db.use(conn) as c:
            row = await fetch_one(c, PRODUCT_SELECT + " WHERE p.id = ?;", (product_id,))
        if not row:
            raise NotFound("Product", product_id)
        return row_to_product(row)

    async def list_products(
        self,
        search: Optional[str] = None,
        category: Optional[str] = None,
        sort_by: str = "name",
        sort_order: str = "asc",
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[models.Product], int]:
        """
        Case-insensitive search over name/description, optionally restricted
        to one category ("All" means any). Returns (products for page, total).
        """
        if sort_by not in SORT_COLUMNS:
            raise ValidationError(f"Cannot sort products by {sort_by!r}.")
        direction = sort_order.lower()
        if direction not in ("asc", "desc"):
            raise ValidationError(f"Unknown sort order {sort_order!r}.")
        if page < 1 or not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(
                f"Page must be >= 1 and limit between 1 and {MAX_PAGE_SIZE}."
            )

        clauses: List[str] = []
        params: List[object] = []
        phrase = (search or "").strip().lower()
        if phrase:
            like = like_pattern(phrase)
            clauses.append(
                "(LOWER(p.name) LIKE ? ESCAPE '\\' OR LOWER(p.description) LIKE ? ESCAPE '\\')"
            )
            params.extend([like, like])
        if category and category != "All":
            clauses.append(
                """
                EXISTS (SELECT 1
                          FROM product_categories pc
                          JOIN categories c ON c.id = pc.category_id
                         WHERE pc.product_id = p.id AND c.name = ?)
                """
            )
            params.append(category)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        async with self._db.connect() as conn:
            row = await fetch_one(
                conn, f"SELECT COUNT(*) FROM products p {where};", params
            )
            total = int(row[0])
            rows = await fetch_all(
                conn,
                f"""
                {PRODUCT_SELECT}
                {where}
                ORDER BY {SORT_COLUMNS[sort_by]} {direction.upper()}, p.id
                LIMIT ? OFFSET ?;
                """,
                params + [limit, (page - 1) * limit],
            )
        return [row_to_product(r) for r in rows], total

    async def list_categories(self) -> List[str]:
        async with self._db.connect() as conn:
            rows = await fetch_all(conn, "SELECT name FROM categories ORDER BY name;")
        return ["All", *(r[0] for r in rows)]

    # ---------------------------
    # Write
    # ---------------------------

    async def create_product(
        self,
        name: str,
        description: str,
        price: Money,
        stock: int,
        category: Optional[str] = None,
    ) -> models.Product:
        name = _clean_name(name)
        cents = to_cents(price)
        stock = _check_stock(stock)
        async with self._db.transaction() as conn:
            cur = await conn.execute(
                "INSERT INTO products(name, description, price_cents, stock) VALUES (?, ?, ?, ?);",
                (name, (description or "").strip(), cents, stock),
            )
            product_id = cur.lastrowid
            await cur.close()
            if category:
                await _link_category(conn, product_id, _clean_name(category, "Category"))
            product = await self.get_product(product_id, conn)
        _logger.info(f"Created product {product.id} '{product.name}' (stock {stock})")
        return product

    async def update_product(
        self,
        product_id: int,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        price: Optional[Money] = None,
        stock: Optional[int] = None,
        category: Optional[str] = None,
    ) -> models.Product:
        """Update only the provided fields; a category replaces the old ones."""
        async with self._db.transaction() as conn:
            current = await self.get_product(product_id, conn)
            await conn.execute(
                """
                UPDATE products
                   SET name = ?, description = ?, price_cents = ?, stock = ?
                 WHERE id = ?;
                """,
                (
                    _clean_name(name) if name is not None else current.name,
                    description.strip() if description is not None else current.description,
                    to_cents(price) if price is not None else to_cents(current.price),
                    _check_stock(stock) if stock is not None else current.stock,
                    product_id,
                ),
            )
            if category is not None:
                await _link_category(conn, product_id, _clean_name(category, "Category"))
            return await self.get_product(product_id, conn)

    async def delete_product(self, product_id: int) -> None:
        async with self._db.transaction() as conn:
            await self.get_product(product_id, conn)
            used = await fetch_one(
                conn, "SELECT 1 FROM order_items WHERE product_id = ? LIMIT 1;", (product_id,)
            )
            if used:
                raise ValidationError(
                    f"Product {product_id} appears in past orders and cannot be deleted."
                )
            await conn.execute("DELETE FROM products WHERE id = ?;", (product_id,))
        _logger.info(f"Deleted product {product_id}")

    # ---------------------------
    # Stock
    # ---------------------------

    async def adjust_stock(self, product_id: int, delta: int) -> models.Product:
        """Add (or with a negative delta, remove) stock outside of any order."""
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise ValidationError(f"Stock change must be a whole number, got {delta!r}.")
        async with self._db.transaction() as conn:
            product = await self.get_product(product_id, conn)
            if product.stock + delta < 0:
                raise InsufficientStock(product_id, -delta, product.stock, product.name)
            await conn.execute(
                "UPDATE products SET stock = stock + ? WHERE id = ?;", (delta, product_id)
            )
            updated = await self.get_product(product_id, conn)
        _logger.info(
            f"Stock of product {product_id} adjusted by {delta:+d} -> {updated.stock}"
        )
        return updated

    async def decrement_stock(
        self, conn: aiosqlite.Connection, product_id: int, amount: int
    ) -> models.Product:
        """Take ``amount`` units inside the caller's transaction.

        The update only matches while enough stock is left, so stock cannot
        go below zero even if the caller skipped its own check.
        """
        if not conn.in_transaction:
            raise RuntimeError("decrement_stock must run inside a transaction")
        check_quantity(amount)
        cur = await conn.execute(
            "UPDATE products SET stock = stock - ? WHERE id = ? AND stock >= ?;",
            (amount, product_id, amount),
        )
        changed = cur.rowcount
        await cur.close()
        product = await self.get_product(product_id, conn)
        if changed == 0:
            raise InsufficientStock(product_id, amount, product.stock, product.name)
        return product

    async def increment_stock(
        self, conn: aiosqlite.Connection, product_id: int, amount: int
    ) -> models.Product:
        if not conn.in_transaction:
            raise RuntimeError("increment_stock must run inside a transaction")
        check_quantity(amount)
        await conn.execute(
            "UPDATE products SET stock = stock + ? WHERE id = ?;", (amount, product_id)
        )
        return await self.get_product(product_id, conn)
