from app.schemas.orders import OrderCreateRequest, OrderItemRequest, OrderItemResponse, OrderResponse
from app.schemas.payments import (
    PaymentCancelResponse,
    PaymentInitRequest,
    PaymentInitResponse,
    PaymentStatusFull,
    PaymentStatusMinimal,
    PaymentVerifyResponse,
)

__all__ = [
    "OrderCreateRequest",
    "OrderItemRequest",
    "OrderItemResponse",
    "OrderResponse",
    "PaymentCancelResponse",
    "PaymentInitRequest",
    "PaymentInitResponse",
    "PaymentStatusFull",
    "PaymentStatusMinimal",
    "PaymentVerifyResponse",
]
