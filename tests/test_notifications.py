import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from app.services import email_service, tracking_service
from app.services.order_notifications import notify_order_paid


def test_build_purchase_event_hashes_identifiers(pending_order):
    event = tracking_service.build_purchase_event(pending_order, event_time=1700000000)

    assert event["event_name"] == "Purchase"
    assert event["event_id"] == f"order_{pending_order.id}"
    assert event["event_time"] == 1700000000
    assert event["user_data"]["em"] == [tracking_service._hash_identifier("test@example.com")]
    assert "test@example.com" not in json.dumps(event)
    assert event["custom_data"]["currency"] == "TND"
    assert event["custom_data"]["value"] == 51.0
    assert event["custom_data"]["contents"][0]["quantity"] == 2


def test_track_purchase_disabled_without_credentials(pending_order, monkeypatch):
    monkeypatch.delenv("META_PIXEL_ID", raising=False)
    monkeypatch.delenv("META_ACCESS_TOKEN", raising=False)

    assert tracking_service.track_purchase(pending_order) is False


def test_track_purchase_posts_event(pending_order, monkeypatch):
    monkeypatch.setenv("META_PIXEL_ID", "123456")
    monkeypatch.setenv("META_ACCESS_TOKEN", "meta-token")
    captured = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"events_received": 1})

    client = httpx.Client(transport=httpx.MockTransport(handler))

    assert tracking_service.track_purchase(pending_order, client=client) is True
    assert str(captured[0].url) == "https://graph.facebook.com/v19.0/123456/events"
    body = json.loads(captured[0].content)
    assert body["access_token"] == "meta-token"
    assert body["data"][0]["event_id"] == f"order_{pending_order.id}"


def test_send_order_confirmation_email(pending_order):
    with patch("app.services.email_service._send_email") as mock_send:
        email_service.send_order_confirmation_email(pending_order)

    kwargs = mock_send.call_args.kwargs
    assert kwargs["to_email"] == "test@example.com"
    assert kwargs["subject"] == f"Order #{pending_order.id} confirmed"
    assert "51.000" in kwargs["text_body"]
    assert f"orderId={pending_order.id}" in kwargs["text_body"]


def test_send_email_requires_smtp_configuration(monkeypatch):
    monkeypatch.delenv("SMTP_HOST", raising=False)

    with pytest.raises(RuntimeError, match="SMTP is not configured"):
        email_service._send_email("a@example.com", "Subject", "Body")


def test_notify_order_paid_runs_tracking_and_email(pending_order, session_factory):
    with patch("app.services.order_notifications.tracking_service.track_purchase") as mock_track, patch(
        "app.services.order_notifications.email_service.send_order_confirmation_email"
    ) as mock_email:
        notify_order_paid(session_factory, pending_order.id)

    assert mock_track.call_args[0][0].id == pending_order.id
    assert mock_email.call_args[0][0].id == pending_order.id


def test_notify_order_paid_swallows_side_effect_errors(pending_order, session_factory):
    with patch(
        "app.services.order_notifications.tracking_service.track_purchase",
        side_effect=httpx.ConnectError("meta down"),
    ), patch(
        "app.services.order_notifications.email_service.send_order_confirmation_email",
        side_effect=RuntimeError("smtp down"),
    ) as mock_email:
        notify_order_paid(session_factory, pending_order.id)

    # Email is still attempted after a tracking failure.
    mock_email.assert_called_once()


def test_notify_order_paid_missing_order(db, session_factory):
    with patch("app.services.order_notifications.tracking_service.track_purchase") as mock_track:
        notify_order_paid(session_factory, 424242)

    mock_track.assert_not_called()


def test_notify_order_paid_swallows_database_errors():
    broken_session = MagicMock()
    broken_session.query.side_effect = RuntimeError("connection lost")
    factory = MagicMock(return_value=broken_session)

    notify_order_paid(factory, 1)

    broken_session.close.assert_called_once()
