import smtplib
from decimal import Decimal
from email.message import EmailMessage
from html import escape

from app.config import settings
from app.models import Order
from app.services.url_utils import build_frontend_url


def _send_email(to_email: str, subject: str, text_body: str, html_body: str | None = None) -> None:
    if not settings.SMTP_HOST or not settings.SMTP_FROM_EMAIL:
        raise RuntimeError("SMTP is not configured (SMTP_HOST and SMTP_FROM_EMAIL are required).")

    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = f"{settings.SMTP_FROM_NAME} <{settings.SMTP_FROM_EMAIL}>"
    message["To"] = to_email
    message.set_content(text_body)
    if html_body:
        message.add_alternative(html_body, subtype="html")

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT) as smtp:
        smtp.ehlo()
        if settings.SMTP_USE_TLS:
            smtp.starttls()
            smtp.ehlo()
        if settings.SMTP_USER:
            smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
        smtp.send_message(message)


def _format_amount(value) -> str:
    return f"{Decimal(str(value)):.3f}"


def send_order_confirmation_email(order: Order) -> None:
    if not order.email:
        raise ValueError(f"Order {order.id} has no email address")

    link = build_frontend_url(settings.FRONTEND_URL, "/orders", {"orderId": str(order.id)})
    name = order.name or "there"
    lines = [f"- {item.quantity} x product #{item.product_id} @ {_format_amount(item.price)}" for item in order.items]
    text = (
        f"Hi {name},\n\n"
        f"We received your payment for order #{order.id}.\n\n"
        + "\n".join(lines)
        + f"\n\nTotal: {_format_amount(order.total)}\n\n"
        f"Track your order here: {link}\n"
    )
    items_html = "".join(
        f"<li>{item.quantity} x product #{item.product_id} @ {_format_amount(item.price)}</li>" for item in order.items
    )
    html = (
        f"<p>Hi {escape(name)},</p>"
        f"<p>We received your payment for order #{order.id}.</p>"
        f"<ul>{items_html}</ul>"
        f"<p>Total: {_format_amount(order.total)}</p>"
        f"<p><a href=\"{escape(link)}\">Track your order</a></p>"
    )
    _send_email(to_email=order.email, subject=f"Order #{order.id} confirmed", text_body=text, html_body=html)
