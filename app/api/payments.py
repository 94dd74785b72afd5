import logging
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session, sessionmaker

from app.config import settings
from app.dependencies import get_current_user_optional, get_payment_gateway, get_session_factory
from app.models import Order, User, get_db
from app.schemas.payments import (
    PaymentCancelResponse,
    PaymentInitRequest,
    PaymentInitResponse,
    PaymentStatusFull,
    PaymentStatusMinimal,
    PaymentVerifyResponse,
)
from app.services.errors import (
    GatewayConfigMissing,
    GatewayResponseInvalid,
    GatewayUnavailable,
    OrderAlreadyPaid,
    OrderNotCancellable,
    OrderNotFound,
    OrderNotPayable,
    OrderTotalInvalid,
)
from app.services.order_notifications import notify_order_paid
from app.services.order_payment import (
    cancel_order,
    init_order_payment,
    mark_order_failed,
    mark_order_paid,
    verify_order_payment,
)
from app.services.paymee_service import PaymeeGateway
from app.services.url_utils import build_frontend_url

router = APIRouter()
dev_router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/init",
    response_model=PaymentInitResponse,
    summary="Start a Paymee payment for an order",
)
def init_payment(
    body: PaymentInitRequest,
    db: Annotated[Session, Depends(get_db)],
    gateway: Annotated[PaymeeGateway, Depends(get_payment_gateway)],
):
    """Returns the Paymee token and the URL to redirect the customer to."""
    try:
        session = init_order_payment(db, body.order_id, gateway)
    except OrderNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    except OrderAlreadyPaid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Order already paid")
    except OrderNotPayable as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except OrderTotalInvalid as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except GatewayConfigMissing as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except GatewayResponseInvalid as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except GatewayUnavailable as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return PaymentInitResponse(token=session.token, payment_url=session.payment_url)


@router.get(
    "/verify",
    response_model=PaymentVerifyResponse,
    summary="Verify a payment after the Paymee redirect",
)
def verify_payment(
    background_tasks: BackgroundTasks,
    db: Annotated[Session, Depends(get_db)],
    session_factory: Annotated[sessionmaker, Depends(get_session_factory)],
    order_id: Annotated[int, Query(alias="orderId", gt=0)],
    transaction_id: Annotated[str | None, Query(alias="transactionId")] = None,
):
    """
    Polled by the browser after the provider redirect, as a fallback to the webhook.
    Already-paid orders answer success without changes. Stock was reserved at
    order time; a failed verification gives it back.
    """
    try:
        result = verify_order_payment(db, order_id, transaction_id)
    except OrderNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")

    if result.newly_paid:
        background_tasks.add_task(notify_order_paid, session_factory, order_id)

    return PaymentVerifyResponse(status=result.status, message=result.message)


@router.post(
    "/cancel/{order_id}",
    response_model=PaymentCancelResponse,
    summary="Cancel an unpaid order",
)
def cancel_payment(
    order_id: int,
    db: Annotated[Session, Depends(get_db)],
):
    """Called when the customer closes the payment page. Restores reserved stock."""
    try:
        cancel_order(db, order_id, reason="Cancelled by customer before payment")
    except OrderNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    except OrderNotCancellable as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": "Order can no longer be cancelled", "current_status": e.current_status},
        )

    return PaymentCancelResponse(ok=True, message="Order cancelled")


def _is_order_owner(order: Order, user: User | None) -> bool:
    if user is None or not user.email or not order.email:
        return False
    return user.email.strip().lower() == order.email.strip().lower()


@router.get(
    "/status/{order_id}",
    response_model=None,
    summary="Get payment status",
)
def payment_status(
    order_id: int,
    db: Annotated[Session, Depends(get_db)],
    current_user: Annotated[User | None, Depends(get_current_user_optional)],
) -> PaymentStatusFull | PaymentStatusMinimal:
    """Full status for the order owner, only id and statuses for anyone else."""
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")

    if _is_order_owner(order, current_user):
        return PaymentStatusFull(
            id=order.id,
            payment_status=order.payment_status,
            status=order.status,
            provider_payment_id=order.provider_payment_id,
            payment_method=order.payment_method,
            paid_at=order.paid_at,
            canceled_at=order.canceled_at,
            cancel_reason=order.cancel_reason,
            stock_consumed=order.stock_consumed,
        )
    return PaymentStatusMinimal(id=order.id, payment_status=order.payment_status, status=order.status)


@router.get("/redirect/success", include_in_schema=False)
def redirect_success(request: Request):
    """Paymee requires public return URLs; forward the customer to the frontend callback page."""
    url = build_frontend_url(settings.FRONTEND_URL, "/payment/paymee/callback", dict(request.query_params))
    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


@router.get("/redirect/cancel", include_in_schema=False)
def redirect_cancel():
    return RedirectResponse(url=build_frontend_url(settings.FRONTEND_URL, "/cart"), status_code=status.HTTP_302_FOUND)


# Manual payment outcomes for local testing. Only mounted outside production.


@dev_router.post("/test/confirm/{order_id}", summary="[dev] Mark order paid")
def dev_confirm_payment(
    order_id: int,
    background_tasks: BackgroundTasks,
    db: Annotated[Session, Depends(get_db)],
    session_factory: Annotated[sessionmaker, Depends(get_session_factory)],
):
    try:
        result = mark_order_paid(db, order_id)
    except OrderNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    logger.warning("Order %s paid through the development confirm endpoint", order_id)
    if result.changed:
        background_tasks.add_task(notify_order_paid, session_factory, order_id)
    return {"success": True, "payment_status": result.payment_status, "changed": result.changed}


@dev_router.post("/test/fail/{order_id}", summary="[dev] Mark order failed")
def dev_fail_payment(
    order_id: int,
    db: Annotated[Session, Depends(get_db)],
):
    try:
        result = mark_order_failed(db, order_id)
    except OrderNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    logger.warning("Order %s failed through the development fail endpoint", order_id)
    return {"success": True, "payment_status": result.payment_status, "changed": result.changed}
