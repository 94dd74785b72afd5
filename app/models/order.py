from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.models.database import Base


class PaymentStatus:
    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


TERMINAL_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.PAID, PaymentStatus.FAILED, PaymentStatus.CANCELLED, PaymentStatus.EXPIRED}
)


class OrderStatus:
    PENDING_PAYMENT = "pending_payment"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(64), nullable=True)
    address = Column(String(512), nullable=True)
    total = Column(Numeric(12, 3), nullable=False)
    payment_method = Column(String(50), nullable=True)  # paymee_card
    payment_status = Column(String(32), nullable=False, default=PaymentStatus.PENDING_PAYMENT, index=True)
    status = Column(String(32), nullable=False, default=OrderStatus.PENDING_PAYMENT, index=True)
    stock_consumed = Column(Boolean, nullable=False, default=False)
    provider_payment_id = Column(String(255), nullable=True, index=True)
    cancel_reason = Column(String(255), nullable=True)
    canceled_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    canceled_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "OrderItem",
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
        back_populates="order",
    )

    @property
    def is_payment_terminal(self) -> bool:
        return self.payment_status in TERMINAL_PAYMENT_STATUSES


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(12, 3), nullable=False)  # unit price at order time
    combination_id = Column(String(64), nullable=True)

    order = relationship("Order", back_populates="items")
