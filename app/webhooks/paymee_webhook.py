import json
import logging
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session, sessionmaker

from app.config import settings
from app.dependencies import get_session_factory
from app.models import Order, get_db
from app.models.order import PaymentStatus
from app.services.errors import ChecksumInvalid, MalformedWebhook, OrderNotFound
from app.services.order_notifications import notify_order_paid
from app.services.order_payment import mark_order_failed, mark_order_paid
from app.services.paymee_service import PaymentOutcome, normalize_payment_status, verify_checksum

router = APIRouter()
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookResult:
    order_id: int
    status: str  # paid | failed | unknown | already_paid | already_processed
    newly_paid: bool = False


def process_paymee_webhook(
    db: Session,
    payload: dict[str, Any],
    api_key: str,
    strict: bool,
) -> WebhookResult:
    """Apply one Paymee notification to its order.

    strict=True (production) rejects notifications without a checksum;
    otherwise they are accepted with a warning so sandbox flows can be
    exercised by hand.
    """
    token = payload.get("token")
    if not token:
        raise MalformedWebhook("token is required")
    token = str(token)

    check_sum = payload.get("check_sum")
    if not check_sum:
        if strict:
            logger.error("Paymee webhook rejected: missing check_sum (token=%s)", token)
            raise MalformedWebhook("check_sum is required")
        logger.warning("Paymee webhook without check_sum accepted outside production (token=%s)", token)
    elif not verify_checksum(payload, api_key):
        logger.warning("Paymee webhook invalid checksum (token=%s, payload=%s)", token, payload)
        raise ChecksumInvalid("Invalid checksum")

    order = db.query(Order).filter(Order.provider_payment_id == token).first()
    if order is None:
        logger.warning("Paymee webhook: no order for token %s", token)
        raise OrderNotFound(token=token)
    order_id = order.id

    if order.payment_status == PaymentStatus.PAID:
        logger.info("Paymee webhook: order %s already paid, ignoring duplicate", order_id)
        return WebhookResult(order_id, "already_paid")
    if order.is_payment_terminal:
        logger.info("Paymee webhook: order %s already %s, ignoring", order_id, order.payment_status)
        return WebhookResult(order_id, "already_processed")

    payment_status = payload.get("payment_status")
    outcome = normalize_payment_status(payment_status)
    logger.info("Paymee webhook processing order %s (payment_status=%r)", order_id, payment_status)

    if outcome is PaymentOutcome.PAID:
        result = mark_order_paid(db, order_id)
        if not result.changed:
            return WebhookResult(order_id, _already_status(result.payment_status))
        return WebhookResult(order_id, "paid", newly_paid=True)

    if outcome is PaymentOutcome.FAILED:
        result = mark_order_failed(db, order_id)
        if not result.changed:
            return WebhookResult(order_id, _already_status(result.payment_status))
        return WebhookResult(order_id, "failed")

    logger.warning("Paymee webhook: unknown payment_status %r for order %s", payment_status, order_id)
    return WebhookResult(order_id, "unknown")


def _already_status(payment_status: str) -> str:
    return "already_paid" if payment_status == PaymentStatus.PAID else "already_processed"


@router.post(
    "/paymee",
    summary="Paymee webhook",
)
async def paymee_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    """
    Paymee calls this with token, payment_status and check_sum.
    Public endpoint secured by the checksum. Idempotent: notifications for an
    order that already reached a terminal payment status change nothing.
    """
    raw_body = await request.body()
    try:
        body = json.loads(raw_body)
    except Exception as e:
        logger.error(f"Invalid JSON in Paymee webhook: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")
    if not isinstance(body, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="JSON object expected")

    try:
        result = process_paymee_webhook(
            db,
            body,
            api_key=settings.PAYMEE_API_KEY,
            strict=settings.IS_PRODUCTION,
        )
    except (MalformedWebhook, ChecksumInvalid) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except OrderNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        logger.error(f"Error processing Paymee webhook: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook processing error")

    if result.newly_paid:
        background_tasks.add_task(notify_order_paid, session_factory, result.order_id)

    return {"ok": True, "status": result.status}
