"""Domain exceptions for the payment and inventory core.

Services raise these; the HTTP layer maps them onto status codes.
"""


class PaymentCoreError(Exception):
    """Base exception for payment and stock errors."""

    pass


class StockInsufficient(PaymentCoreError):
    """Raised when a consume would drive a stock counter negative."""

    def __init__(
        self,
        product_id: int,
        requested: int,
        available: int,
        combination_id: str | None = None,
        product_name: str | None = None,
    ):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        self.combination_id = combination_id
        self.product_name = product_name
        label = product_name or f"product #{product_id}"
        if combination_id:
            label = f"{label} (variant {combination_id})"
        super().__init__(
            f"Insufficient stock for {label}: requested {requested}, only {available} available"
        )


class ProductNotFound(PaymentCoreError):
    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class StockInvariantViolation(PaymentCoreError):
    """Raised when a write would leave available_quantity out of sync with its variants."""

    def __init__(self, product_id: int, available_quantity: int, combination_total: int):
        self.product_id = product_id
        self.available_quantity = available_quantity
        self.combination_total = combination_total
        super().__init__(
            f"Product {product_id} available_quantity={available_quantity} "
            f"does not match variant stock total={combination_total}"
        )


class GatewayConfigMissing(PaymentCoreError):
    """Raised when the payment provider is not configured well enough to init a payment."""

    pass


class GatewayResponseInvalid(PaymentCoreError):
    """Raised when the provider answers without a usable token or payment URL."""

    pass


class OrderTotalInvalid(PaymentCoreError):
    """Raised before contacting the provider when the order total is not a positive amount."""

    def __init__(self, order_id: int, total):
        self.order_id = order_id
        self.total = total
        super().__init__(f"Order {order_id} total must be a positive amount, got {total!r}")


class GatewayUnavailable(PaymentCoreError):
    """Raised on transport errors or non-2xx responses from the provider."""

    pass


class MalformedWebhook(PaymentCoreError):
    pass


class ChecksumInvalid(PaymentCoreError):
    pass


class OrderNotFound(PaymentCoreError):
    def __init__(self, order_id: int | None = None, token: str | None = None):
        self.order_id = order_id
        self.token = token
        if order_id is not None:
            msg = f"Order not found: {order_id}"
        else:
            msg = "Order not found for payment token"
        super().__init__(msg)


class OrderNotCancellable(PaymentCoreError):
    """Raised when a cancel arrives after the order left pending_payment."""

    def __init__(self, order_id: int, current_status: str):
        self.order_id = order_id
        self.current_status = current_status
        super().__init__(f"Order {order_id} cannot be cancelled (payment status: {current_status})")


class OrderNotPayable(PaymentCoreError):
    """Raised when a payment is initialized for an order that already reached a terminal state."""

    def __init__(self, order_id: int, current_status: str):
        self.order_id = order_id
        self.current_status = current_status
        super().__init__(f"Order {order_id} cannot be paid (payment status: {current_status})")


class OrderAlreadyPaid(OrderNotPayable):
    def __init__(self, order_id: int):
        super().__init__(order_id, "paid")
