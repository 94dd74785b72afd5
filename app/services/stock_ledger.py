"""Stock ledger: reserve and release product stock for orders.

consume_stock is called only when an order is placed; restore_stock only when
an order that still holds stock (Order.stock_consumed) reaches a failed,
cancelled or expired state. Neither function commits: both run inside the
caller's transaction so that a failure on any line rolls back every line.

Rows are locked with SELECT ... FOR UPDATE in ascending product id order, so
two orders touching overlapping products always acquire locks in the same
order.
"""

import logging
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy.orm import Session

from app.models import OrderItem, Product, ProductCombination
from app.services.errors import ProductNotFound, StockInsufficient, StockInvariantViolation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockLine:
    product_id: int
    quantity: int
    combination_id: str | None = None


def aggregate_lines(lines: Iterable[StockLine]) -> list[StockLine]:
    """Sum quantities per (product_id, combination_id), sorted by product id.

    An order may list the same product or variant on several lines; checking
    each line separately against the same stock would oversell.
    """
    totals: dict[tuple[int, str | None], int] = {}
    for line in lines:
        if line.quantity < 1:
            raise ValueError(f"Quantity must be positive for product {line.product_id}")
        combination_id = str(line.combination_id) if line.combination_id else None
        key = (line.product_id, combination_id)
        totals[key] = totals.get(key, 0) + line.quantity

    ordered_keys = sorted(totals, key=lambda key: (key[0], key[1] or ""))
    return [
        StockLine(product_id=product_id, quantity=totals[(product_id, combination_id)], combination_id=combination_id)
        for product_id, combination_id in ordered_keys
    ]


def lines_from_order_items(items: Iterable[OrderItem]) -> list[StockLine]:
    return [
        StockLine(product_id=item.product_id, quantity=item.quantity, combination_id=item.combination_id)
        for item in items
    ]


def _lock_product(db: Session, product_id: int) -> Product | None:
    return (
        db.query(Product)
        .filter(Product.id == product_id)
        .with_for_update()
        .populate_existing()
        .first()
    )


def _load_combinations(db: Session, product_id: int) -> list[ProductCombination]:
    return (
        db.query(ProductCombination)
        .filter(ProductCombination.product_id == product_id)
        .order_by(ProductCombination.position, ProductCombination.id)
        .populate_existing()
        .all()
    )


def _check_combination_sync(product: Product, combinations: list[ProductCombination]) -> None:
    total = sum(combination.stock for combination in combinations)
    if product.available_quantity != total:
        logger.warning(
            "Product %s available_quantity=%s drifted from variant total=%s, resyncing on write",
            product.id,
            product.available_quantity,
            total,
        )


def _apply_combination_total(product: Product, combinations: list[ProductCombination]) -> int:
    total = sum(combination.stock for combination in combinations)
    if any(combination.stock < 0 for combination in combinations):
        raise StockInvariantViolation(product.id, product.available_quantity, total)
    product.available_quantity = total
    product.in_stock = total > 0
    return total


def consume_stock(db: Session, lines: Iterable[StockLine]) -> None:
    """Decrement stock for every line or raise without touching any of them.

    Raises StockInsufficient when a variant (or the base product when no
    variant applies) holds less than the aggregated requested quantity, and
    ProductNotFound for unknown products. The caller must roll back on error.
    """
    for line in aggregate_lines(lines):
        product = _lock_product(db, line.product_id)
        if product is None:
            raise ProductNotFound(line.product_id)

        combinations = _load_combinations(db, product.id) if line.combination_id else []
        target = next((c for c in combinations if c.id == line.combination_id), None)

        if target is not None:
            _check_combination_sync(product, combinations)
            if target.stock < line.quantity:
                raise StockInsufficient(
                    product_id=product.id,
                    requested=line.quantity,
                    available=target.stock,
                    combination_id=target.id,
                    product_name=product.name,
                )
            target.stock -= line.quantity
            total = _apply_combination_total(product, combinations)
            logger.debug(
                "Consumed %s of product %s variant %s, product total now %s",
                line.quantity,
                product.id,
                target.id,
                total,
            )
        else:
            if line.combination_id:
                logger.warning(
                    "Variant %s not found on product %s, consuming base stock",
                    line.combination_id,
                    product.id,
                )
            current = product.available_quantity or 0
            if current < line.quantity:
                raise StockInsufficient(
                    product_id=product.id,
                    requested=line.quantity,
                    available=current,
                    product_name=product.name,
                )
            product.available_quantity = current - line.quantity
            product.in_stock = product.available_quantity > 0

        db.flush()


def restore_stock(db: Session, lines: Iterable[StockLine]) -> int:
    """Add stock back for every line. Returns the number of aggregated lines restored.

    Unconditionally additive: callers must check and clear
    Order.stock_consumed in the same transaction.
    """
    restored = 0
    for line in aggregate_lines(lines):
        product = _lock_product(db, line.product_id)
        if product is None:
            logger.warning("Cannot restore %s units: product %s no longer exists", line.quantity, line.product_id)
            continue

        combinations = _load_combinations(db, product.id) if line.combination_id else []
        target = next((c for c in combinations if c.id == line.combination_id), None)

        if target is not None:
            _check_combination_sync(product, combinations)
            target.stock += line.quantity
            _apply_combination_total(product, combinations)
        else:
            product.available_quantity = (product.available_quantity or 0) + line.quantity
            product.in_stock = product.available_quantity > 0

        db.flush()
        restored += 1
    return restored
