from __future__ import annotations

import json

import pytest
from sqlalchemy import select

from app.config import settings
from app.models.subscription import BillingEvent, Subscription
from tests.helpers.stripe_fakes import (
    SEAT_PRICE,
    line_item,
    sign_payload,
    signed_request,
    stripe_event,
    subscription_payload,
)

WEBHOOK_URL = "/api/billing/stripe/webhook"
SECRET = "whsec_test_secret"  # noqa: S105 - test fixture value


@pytest.fixture(autouse=True)
def webhook_settings(monkeypatch):
    monkeypatch.setattr(settings, "stripe_webhook_secret", SECRET)
    monkeypatch.setattr(settings, "staff_seat_price_ids", [SEAT_PRICE])


def _rows(session_factory, model):
    with session_factory() as session:
        return list(session.execute(select(model)).scalars().all())


def test_subscription_created_persists_merchant_row(client, override_db) -> None:
    sub = subscription_payload(
        metadata={"merchant_id": "abc"},
        items={"data": [line_item(SEAT_PRICE, 2)]},
    )
    event = stripe_event("customer.subscription.created", sub)
    body, headers = signed_request(SECRET, event)

    response = client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == 200
    assert response.json() == {
        "received": True,
        "type": "customer.subscription.created",
        "outcome": "applied",
    }
    rows = _rows(override_db, Subscription)
    assert len(rows) == 1
    assert rows[0].merchant_id == "abc"
    assert rows[0].status == "active"
    assert rows[0].billing_provider == "stripe"
    assert rows[0].provider_customer_id == "cus_123"
    assert rows[0].seats_count == 2
    events = _rows(override_db, BillingEvent)
    assert len(events) == 1
    assert events[0].provider_event_id == "evt_123"
    assert events[0].payload == event


def test_subscription_deleted_marks_row_canceled(client, override_db) -> None:
    created = stripe_event(
        "customer.subscription.created",
        subscription_payload(metadata={"merchant_id": "abc"}),
        event_id="evt_1",
    )
    deleted = stripe_event(
        "customer.subscription.deleted",
        subscription_payload(
            metadata={"merchant_id": "abc"}, status="canceled", canceled_at=1_701_000_000
        ),
        event_id="evt_2",
    )
    for event in (created, deleted):
        body, headers = signed_request(SECRET, event)
        assert client.post(WEBHOOK_URL, content=body, headers=headers).status_code == 200

    rows = _rows(override_db, Subscription)
    assert len(rows) == 1
    assert rows[0].status == "canceled"
    assert rows[0].canceled_at is not None
    assert len(_rows(override_db, BillingEvent)) == 2


def test_invalid_signature_rejected_without_writes(client, override_db) -> None:
    event = stripe_event("customer.subscription.created", subscription_payload(metadata={"merchant_id": "abc"}))
    body = json.dumps(event)
    headers = {"Stripe-Signature": sign_payload("whsec_wrong", body)}

    response = client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid signature"
    assert _rows(override_db, Subscription) == []
    assert _rows(override_db, BillingEvent) == []


def test_stale_signature_rejected(client, override_db) -> None:
    body = json.dumps(stripe_event("customer.subscription.updated", subscription_payload()))
    headers = {"Stripe-Signature": sign_payload(SECRET, body, timestamp=1_000_000)}

    response = client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == 400


def test_missing_signature_header_rejected(client, override_db) -> None:
    body = json.dumps(stripe_event("customer.subscription.updated", subscription_payload()))

    response = client.post(WEBHOOK_URL, content=body)

    assert response.status_code == 400
    assert response.json()["detail"] == "Missing Stripe-Signature header"


def test_unconfigured_secret_rejected(client, override_db, monkeypatch) -> None:
    monkeypatch.setattr(settings, "stripe_webhook_secret", None)
    body, headers = signed_request(SECRET, stripe_event("customer.subscription.updated", {}))

    response = client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == 400
    assert response.json()["detail"] == "Webhook secret not configured"


def test_signed_garbage_body_rejected(client, override_db) -> None:
    body = "not json"
    headers = {"Stripe-Signature": sign_payload(SECRET, body)}

    response = client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid payload"


def test_unrecognized_event_acknowledged(client, override_db) -> None:
    body, headers = signed_request(SECRET, stripe_event("invoice.paid", {"id": "in_1"}))

    response = client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == 200
    assert response.json() == {"received": True, "type": "invoice.paid", "outcome": "ignored"}
    assert _rows(override_db, BillingEvent) == []


def test_malformed_subscription_object_acknowledged_without_writes(client, override_db) -> None:
    payload = subscription_payload(metadata={"merchant_id": "m_1"})
    del payload["status"]
    body, headers = signed_request(SECRET, stripe_event("customer.subscription.updated", payload))

    response = client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == 200
    assert response.json() == {
        "received": True,
        "type": "customer.subscription.updated",
        "outcome": "ignored",
    }
    assert _rows(override_db, Subscription) == []
    assert _rows(override_db, BillingEvent) == []


def test_unresolved_merchant_still_acknowledged(client, override_db) -> None:
    body, headers = signed_request(
        SECRET, stripe_event("customer.subscription.updated", subscription_payload("sub_unknown"))
    )

    response = client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == 200
    assert response.json()["outcome"] == "unresolved"
    assert _rows(override_db, Subscription) == []


def test_missing_database_returns_503(client) -> None:
    body, headers = signed_request(
        SECRET, stripe_event("customer.subscription.updated", subscription_payload())
    )

    response = client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == 503
