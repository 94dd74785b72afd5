import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import urlsplit

import httpx

from app.config import settings
from app.models import Order
from app.services.errors import GatewayConfigMissing, GatewayResponseInvalid, GatewayUnavailable, OrderTotalInvalid
from app.services.url_utils import append_query_param

logger = logging.getLogger(__name__)

LIVE_BASE_URL = "https://app.paymee.tn/api/v2"
SANDBOX_BASE_URL = "https://sandbox.paymee.tn/api/v2"

MODE_DYNAMIC = "dynamic"
MODE_PAYLINK = "paylink"

LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "::1", "0.0.0.0"}
LOCAL_APP_ENVS = {"development", "local", "test"}

_PAID_VALUES = {"true", "1", "paid", "completed"}
_FAILED_VALUES = {"false", "0", "failed", "cancelled"}


class PaymentOutcome(str, Enum):
    PAID = "paid"
    FAILED = "failed"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class PaymentSession:
    token: str
    payment_url: str
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


def normalize_paid_flag(value: Any) -> bool:
    """Collapse the provider's boolean/numeric/string status into the checksum bit."""
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"true", "1"}


def normalize_payment_status(value: Any) -> PaymentOutcome:
    if value is True:
        return PaymentOutcome.PAID
    if value is False:
        return PaymentOutcome.FAILED
    if value is None:
        return PaymentOutcome.UNKNOWN
    normalized = str(value).strip().lower()
    if normalized in _PAID_VALUES:
        return PaymentOutcome.PAID
    if normalized in _FAILED_VALUES:
        return PaymentOutcome.FAILED
    return PaymentOutcome.UNKNOWN


def compute_checksum(token: str, paid: bool, api_key: str) -> str:
    """Paymee checksum: md5(token + "1"|"0" + api_key) as lowercase hex."""
    digest_input = f"{token}{'1' if paid else '0'}{api_key}"
    return hashlib.md5(digest_input.encode("utf-8")).hexdigest()


def verify_checksum(payload: dict[str, Any], api_key: str) -> bool:
    token = payload.get("token")
    provided = payload.get("check_sum")
    if not token or provided is None:
        return False
    expected = compute_checksum(str(token), normalize_paid_flag(payload.get("payment_status")), api_key)
    return hmac.compare_digest(str(provided).lower(), expected)


def is_loopback_url(url: str) -> bool:
    host = urlsplit(url).hostname or ""
    return host.lower() in LOOPBACK_HOSTS


def _split_name(full_name: str | None) -> tuple[str, str]:
    parts = (full_name or "").strip().split()
    if not parts:
        return "Client", "Client"
    first_name = parts[0]
    last_name = " ".join(parts[1:]) or first_name
    return first_name, last_name


def _extract_session(data: Any) -> tuple[str | None, str | None]:
    if not isinstance(data, dict):
        return None, None
    nested = data.get("data") if isinstance(data.get("data"), dict) else {}
    token = nested.get("token") or data.get("token")
    payment_url = (
        nested.get("payment_url")
        or nested.get("paymentUrl")
        or data.get("payment_url")
        or data.get("paymentUrl")
    )
    return token, payment_url


class PaymeeGateway:
    """Client for the Paymee card payment API.

    One instance is built per request from settings (see
    ``app.dependencies.get_payment_gateway``) so tests can override it.
    """

    def __init__(
        self,
        api_key: str,
        webhook_url: str = "",
        return_url: str = "",
        cancel_url: str = "",
        mode: str = MODE_DYNAMIC,
        environment: str = "sandbox",
        app_env: str = "development",
        timeout_seconds: float = 15,
        http_client: httpx.Client | None = None,
    ):
        self.api_key = api_key
        self.webhook_url = webhook_url
        self.return_url = return_url
        self.cancel_url = cancel_url
        self.mode = mode
        self.environment = environment
        self.app_env = app_env
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client

    @classmethod
    def from_settings(cls) -> "PaymeeGateway":
        return cls(
            api_key=settings.PAYMEE_API_KEY,
            webhook_url=settings.PAYMEE_WEBHOOK_URL,
            return_url=settings.PAYMEE_RETURN_URL,
            cancel_url=settings.PAYMEE_CANCEL_URL,
            mode=settings.PAYMEE_MODE,
            environment=settings.PAYMEE_ENV,
            app_env=settings.APP_ENV,
            timeout_seconds=settings.PAYMEE_TIMEOUT_SECONDS,
        )

    @property
    def base_url(self) -> str:
        if self.environment in {"live", "production"}:
            return LIVE_BASE_URL
        return SANDBOX_BASE_URL

    def validate_configuration(self) -> None:
        if not self.api_key:
            raise GatewayConfigMissing("PAYMEE_API_KEY is missing. Configure it in the environment.")

        if self.mode != MODE_DYNAMIC:
            return

        if not self.webhook_url:
            raise GatewayConfigMissing(
                "PAYMEE_WEBHOOK_URL is required when PAYMEE_MODE=dynamic. "
                "Use a public tunnel or switch to PAYMEE_MODE=paylink for development."
            )
        if is_loopback_url(self.webhook_url) and self.app_env not in LOCAL_APP_ENVS:
            raise GatewayConfigMissing(
                "PAYMEE_WEBHOOK_URL points to localhost; Paymee servers cannot reach it. "
                "Use a public URL or switch to PAYMEE_MODE=paylink."
            )

    def build_payment_request(self, order: Order) -> dict[str, Any]:
        first_name, last_name = _split_name(order.name)
        body: dict[str, Any] = {
            "amount": float(order.total),
            "note": f"Order #{order.id}",
            "first_name": first_name,
            "last_name": last_name,
            "order_id": str(order.id),
        }
        if order.email:
            body["email"] = order.email
        if order.phone:
            body["phone"] = order.phone
        if self.mode == MODE_DYNAMIC and self.webhook_url:
            body["webhook_url"] = self.webhook_url
        if self.return_url:
            body["return_url"] = append_query_param(self.return_url, "orderId", order.id)
        if self.cancel_url:
            body["cancel_url"] = append_query_param(self.cancel_url, "orderId", order.id)
        return body

    def _post(self, path: str, body: dict[str, Any]) -> httpx.Response:
        headers = {"Authorization": f"Token {self.api_key}"}
        url = f"{self.base_url}{path}"
        if self._http_client is not None:
            return self._http_client.post(url, json=body, headers=headers)
        with httpx.Client(timeout=self.timeout_seconds) as client:
            return client.post(url, json=body, headers=headers)

    def init_payment(self, order: Order) -> PaymentSession:
        """Create a Paymee payment for the order and return its token and redirect URL."""
        self.validate_configuration()

        try:
            amount = float(order.total)
        except (TypeError, ValueError):
            raise OrderTotalInvalid(order.id, order.total)
        if amount <= 0:
            raise OrderTotalInvalid(order.id, order.total)

        body = self.build_payment_request(order)
        try:
            response = self._post("/payments/create", body)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Paymee init failed for order %s: HTTP %s %s",
                order.id,
                exc.response.status_code,
                exc.response.text[:500],
            )
            raise GatewayUnavailable(f"Paymee returned HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            logger.error("Paymee init transport error for order %s: %s", order.id, exc)
            raise GatewayUnavailable(f"Paymee is unreachable: {exc}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise GatewayResponseInvalid("Paymee response is not valid JSON") from exc

        token, payment_url = _extract_session(data)
        if not token or not payment_url:
            logger.error("Paymee response for order %s has no token or payment_url: %s", order.id, data)
            raise GatewayResponseInvalid("Invalid Paymee response (token or payment_url missing)")

        logger.info("Paymee payment initialized for order %s", order.id)
        return PaymentSession(token=str(token), payment_url=str(payment_url), raw=data)
