import logging

from sqlalchemy.orm import Session, sessionmaker

from app.models import Order
from app.services import email_service, tracking_service

logger = logging.getLogger(__name__)


def notify_order_paid(session_factory: sessionmaker, order_id: int) -> None:
    """Send purchase tracking and the confirmation email after a paid transition.

    Runs as a background task after the response is sent. Failures are logged
    and never propagate: the payment status is already committed.
    """
    db: Session = session_factory()
    try:
        order = db.query(Order).filter(Order.id == order_id).first()
        if order is None:
            logger.warning("Order %s vanished before post-payment notifications", order_id)
            return

        try:
            tracking_service.track_purchase(order)
        except Exception as exc:
            logger.error("Purchase tracking failed for order %s: %s", order_id, exc, exc_info=True)

        if order.email:
            try:
                email_service.send_order_confirmation_email(order)
                logger.info("Confirmation email sent for order %s", order_id)
            except Exception as exc:
                logger.error("Confirmation email failed for order %s: %s", order_id, exc, exc_info=True)
    except Exception as exc:
        logger.error("Post-payment notifications failed for order %s: %s", order_id, exc, exc_info=True)
    finally:
        db.close()
