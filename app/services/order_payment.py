"""Payment state transitions for orders.

Every writer (webhook, client verify, customer cancel, reconciliation sweep)
goes through these functions. Each one locks the order row, re-checks that the
order is still in a state it may leave, releases stock when the order still
holds it, and commits, all in one transaction. Whichever path gets the lock
first wins; the others observe a terminal state and do nothing.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from app.models import Order
from app.models.order import OrderStatus, PaymentStatus
from app.services.errors import (
    OrderAlreadyPaid,
    OrderNotCancellable,
    OrderNotFound,
    OrderNotPayable,
)
from app.services.paymee_service import PaymeeGateway, PaymentSession
from app.services.stock_ledger import lines_from_order_items, restore_stock

logger = logging.getLogger(__name__)

PAYMEE_PAYMENT_METHOD = "paymee_card"
EXPIRED_CANCEL_REASON = "Payment expired - timeout exceeded"


@dataclass(frozen=True)
class TransitionResult:
    order_id: int
    payment_status: str
    changed: bool
    stock_restored: int = 0


@dataclass(frozen=True)
class VerifyResult:
    status: str  # success | failed
    message: str
    newly_paid: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def lock_order(db: Session, order_id: int) -> Order | None:
    return (
        db.query(Order)
        .filter(Order.id == order_id)
        .with_for_update()
        .populate_existing()
        .first()
    )


def release_order_stock(db: Session, order: Order) -> int:
    """Restore the order's stock if it still holds it, clearing the flag in the same transaction."""
    if not order.stock_consumed:
        return 0
    restored = restore_stock(db, lines_from_order_items(order.items))
    order.stock_consumed = False
    return restored


def mark_order_paid(db: Session, order_id: int, now: datetime | None = None) -> TransitionResult:
    """pending_payment -> paid. Stock stays reserved for fulfillment."""
    try:
        order = lock_order(db, order_id)
        if order is None:
            raise OrderNotFound(order_id=order_id)
        if order.is_payment_terminal:
            current_status = order.payment_status
            logger.info("Order %s already %s, paid transition skipped", order_id, order.payment_status)
            db.rollback()
            return TransitionResult(order_id, current_status, changed=False)

        order.payment_status = PaymentStatus.PAID
        order.status = OrderStatus.PENDING
        order.paid_at = now or _utcnow()
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Order %s marked as paid", order_id)
    return TransitionResult(order_id, PaymentStatus.PAID, changed=True)


def mark_order_failed(db: Session, order_id: int) -> TransitionResult:
    """pending_payment -> failed, restoring stock if the order still holds it."""
    try:
        order = lock_order(db, order_id)
        if order is None:
            raise OrderNotFound(order_id=order_id)
        if order.is_payment_terminal:
            current_status = order.payment_status
            logger.info("Order %s already %s, failed transition skipped", order_id, order.payment_status)
            db.rollback()
            return TransitionResult(order_id, current_status, changed=False)

        restored = release_order_stock(db, order)
        order.payment_status = PaymentStatus.FAILED
        order.status = OrderStatus.CANCELLED
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Order %s payment failed, %s stock line(s) restored", order_id, restored)
    return TransitionResult(order_id, PaymentStatus.FAILED, changed=True, stock_restored=restored)


def cancel_order(
    db: Session,
    order_id: int,
    reason: str | None = None,
    canceled_by: str = "customer",
    now: datetime | None = None,
) -> TransitionResult:
    """Customer cancel of an unpaid order. Only valid while payment is pending."""
    try:
        order = lock_order(db, order_id)
        if order is None:
            raise OrderNotFound(order_id=order_id)
        if order.payment_status != PaymentStatus.PENDING_PAYMENT:
            raise OrderNotCancellable(order_id, order.payment_status)

        restored = release_order_stock(db, order)
        order.payment_status = PaymentStatus.CANCELLED
        order.status = OrderStatus.CANCELLED
        order.canceled_at = now or _utcnow()
        order.canceled_by = canceled_by
        order.cancel_reason = reason
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Order %s cancelled by %s, %s stock line(s) restored", order_id, canceled_by, restored)
    return TransitionResult(order_id, PaymentStatus.CANCELLED, changed=True, stock_restored=restored)


def expire_order(db: Session, order_id: int, cutoff: datetime, now: datetime | None = None) -> TransitionResult:
    """Expire an abandoned payment if the order is still untouched and older than cutoff."""
    try:
        order = lock_order(db, order_id)
        if order is None:
            raise OrderNotFound(order_id=order_id)
        still_abandoned = (
            order.payment_status == PaymentStatus.PENDING_PAYMENT
            and order.status == OrderStatus.PENDING_PAYMENT
            and order.created_at is not None
            and _as_utc(order.created_at) < cutoff
        )
        if not still_abandoned:
            current_status = order.payment_status
            logger.info("Order %s moved on before expiry (payment_status=%s)", order_id, order.payment_status)
            db.rollback()
            return TransitionResult(order_id, current_status, changed=False)

        restored = release_order_stock(db, order)
        order.payment_status = PaymentStatus.EXPIRED
        order.status = OrderStatus.CANCELLED
        order.cancel_reason = EXPIRED_CANCEL_REASON
        order.canceled_at = now or _utcnow()
        order.canceled_by = "system"
        db.commit()
    except Exception:
        db.rollback()
        raise

    return TransitionResult(order_id, PaymentStatus.EXPIRED, changed=True, stock_restored=restored)


def init_order_payment(db: Session, order_id: int, gateway: PaymeeGateway) -> PaymentSession:
    """Start a provider payment session for an unpaid order and remember its token.

    The provider call happens outside the row lock; the order state is
    re-checked under the lock before the token is stored.
    """
    order = db.query(Order).filter(Order.id == order_id).first()
    if order is None:
        raise OrderNotFound(order_id=order_id)
    if order.payment_status == PaymentStatus.PAID:
        raise OrderAlreadyPaid(order_id)
    if order.is_payment_terminal:
        raise OrderNotPayable(order_id, order.payment_status)

    session = gateway.init_payment(order)

    try:
        order = lock_order(db, order_id)
        if order is None:
            raise OrderNotFound(order_id=order_id)
        if order.payment_status == PaymentStatus.PAID:
            raise OrderAlreadyPaid(order_id)
        if order.is_payment_terminal:
            raise OrderNotPayable(order_id, order.payment_status)

        order.payment_method = PAYMEE_PAYMENT_METHOD
        order.provider_payment_id = session.token
        order.payment_status = PaymentStatus.PENDING_PAYMENT
        order.status = OrderStatus.PENDING_PAYMENT
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Order %s awaiting Paymee payment", order_id)
    return session


def verify_order_payment(db: Session, order_id: int, transaction_id: str | None) -> VerifyResult:
    """Client-polled fallback to the webhook.

    A transaction id equal to the stored provider token counts as provider
    confirmation; anything else fails the payment.
    """
    order = db.query(Order).filter(Order.id == order_id).first()
    if order is None:
        raise OrderNotFound(order_id=order_id)

    if order.payment_status == PaymentStatus.PAID:
        return VerifyResult(status="success", message="Payment already confirmed")
    if order.is_payment_terminal:
        return VerifyResult(status="failed", message=f"Payment already {order.payment_status}")

    token = order.provider_payment_id
    if transaction_id and token and str(transaction_id) == str(token):
        result = mark_order_paid(db, order_id)
        if result.payment_status == PaymentStatus.PAID:
            return VerifyResult(status="success", message="Payment confirmed", newly_paid=result.changed)
        return VerifyResult(status="failed", message=f"Payment already {result.payment_status}")

    logger.warning("Order %s verify with mismatched transaction id", order_id)
    result = mark_order_failed(db, order_id)
    if result.payment_status == PaymentStatus.PAID:
        return VerifyResult(status="success", message="Payment already confirmed")
    return VerifyResult(status="failed", message="Payment not verified or failed")
