import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from app.models import Order, OrderItem, Product
from app.models.order import OrderStatus, PaymentStatus
from app.services.stock_ledger import StockLine, consume_stock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderLine:
    product_id: int
    quantity: int
    combination_id: str | None = None


@dataclass(frozen=True)
class CustomerContact:
    name: str
    email: str
    phone: str | None = None
    address: str | None = None


def place_order(
    db: Session,
    lines: list[OrderLine],
    contact: CustomerContact,
    user_id: int | None = None,
) -> Order:
    """Reserve stock and persist a pending_payment order in one transaction.

    Unit prices are snapshotted from the product rows locked by the ledger.
    Raises StockInsufficient/ProductNotFound with nothing persisted.
    """
    if not lines:
        raise ValueError("An order needs at least one item")

    try:
        consume_stock(
            db,
            [StockLine(line.product_id, line.quantity, line.combination_id) for line in lines],
        )

        product_ids = {line.product_id for line in lines}
        prices = {
            product.id: Decimal(str(product.price))
            for product in db.query(Product).filter(Product.id.in_(product_ids)).all()
        }

        order = Order(
            user_id=user_id,
            name=contact.name,
            email=contact.email,
            phone=contact.phone,
            address=contact.address,
            total=Decimal("0"),
            payment_status=PaymentStatus.PENDING_PAYMENT,
            status=OrderStatus.PENDING_PAYMENT,
            stock_consumed=True,
        )
        total = Decimal("0")
        for line in lines:
            unit_price = prices[line.product_id]
            order.items.append(
                OrderItem(
                    product_id=line.product_id,
                    quantity=line.quantity,
                    price=unit_price,
                    combination_id=line.combination_id,
                )
            )
            total += unit_price * line.quantity
        order.total = total

        db.add(order)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info("Order %s placed with %s item(s), stock reserved", order.id, len(lines))
    return order
