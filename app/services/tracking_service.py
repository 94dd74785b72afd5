import hashlib
import logging
import time
from decimal import Decimal

import httpx

from app.config import settings
from app.models import Order

logger = logging.getLogger(__name__)

GRAPH_API_URL = "https://graph.facebook.com/v19.0"


def _hash_identifier(value: str | None) -> str | None:
    if not value:
        return None
    return hashlib.sha256(value.strip().lower().encode("utf-8")).hexdigest()


def build_purchase_event(order: Order, event_time: int | None = None) -> dict:
    user_data = {}
    hashed_email = _hash_identifier(order.email)
    if hashed_email:
        user_data["em"] = [hashed_email]
    hashed_phone = _hash_identifier(order.phone)
    if hashed_phone:
        user_data["ph"] = [hashed_phone]

    return {
        "event_name": "Purchase",
        "event_time": event_time or int(time.time()),
        "event_id": f"order_{order.id}",
        "action_source": "website",
        "user_data": user_data,
        "custom_data": {
            "currency": "TND",
            "value": float(Decimal(str(order.total))),
            "contents": [
                {"id": str(item.product_id), "quantity": item.quantity, "item_price": float(item.price)}
                for item in order.items
            ],
        },
    }


def track_purchase(order: Order, client: httpx.Client | None = None) -> bool:
    """Send a server-side Purchase event. Returns False when tracking is not configured."""
    if not settings.META_PIXEL_ID or not settings.META_ACCESS_TOKEN:
        logger.debug("Purchase tracking disabled, skipping order %s", order.id)
        return False

    url = f"{GRAPH_API_URL}/{settings.META_PIXEL_ID}/events"
    payload = {"data": [build_purchase_event(order)], "access_token": settings.META_ACCESS_TOKEN}
    if client is not None:
        response = client.post(url, json=payload)
    else:
        with httpx.Client(timeout=10) as http_client:
            response = http_client.post(url, json=payload)
    response.raise_for_status()
    logger.info("Purchase event sent for order %s", order.id)
    return True
