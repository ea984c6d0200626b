from __future__ import annotations

import hmac
import json
import time
from hashlib import sha256
from typing import Any

from app.models.vendor_payloads import StripeSubscription

SEAT_PRICE = "price_staff_seat"
BASE_PRICE = "price_base_plan"


def subscription_payload(sub_id: str = "sub_123", **overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": sub_id,
        "object": "subscription",
        "customer": "cus_123",
        "status": "active",
        "metadata": {},
        "pause_collection": None,
        "cancel_at_period_end": False,
        "cancel_at": None,
        "current_period_start": 1_700_000_000,
        "current_period_end": 1_702_592_000,
        "trial_start": None,
        "trial_end": None,
        "canceled_at": None,
        "created": 1_699_990_000,
        "items": {"object": "list", "data": []},
    }
    payload.update(overrides)
    return payload


def stripe_subscription(sub_id: str = "sub_123", **overrides: Any) -> StripeSubscription:
    return StripeSubscription.model_validate(subscription_payload(sub_id, **overrides))


def line_item(price_id: str, quantity: int | None) -> dict[str, Any]:
    return {"id": f"si_{price_id}", "price": {"id": price_id}, "quantity": quantity}


def stripe_event(event_type: str, obj: dict[str, Any], event_id: str = "evt_123") -> dict[str, Any]:
    return {"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}


def sign_payload(secret: str, payload: str, timestamp: int | None = None) -> str:
    stamp = str(timestamp if timestamp is not None else int(time.time()))
    signature = hmac.new(
        secret.encode(),
        msg=f"{stamp}.{payload}".encode(),
        digestmod=sha256,
    ).hexdigest()
    return f"t={stamp},v1={signature}"


def signed_request(secret: str, event: dict[str, Any]) -> tuple[str, dict[str, str]]:
    body = json.dumps(event)
    return body, {"Stripe-Signature": sign_payload(secret, body), "Content-Type": "application/json"}


class FakeStripeGateway:
    """In-memory stand-in for StripeGateway with per-call failure injection."""

    def __init__(
        self,
        *,
        by_merchant: dict[str, list[StripeSubscription]] | None = None,
        by_customer: dict[str, list[StripeSubscription]] | None = None,
        by_id: dict[str, StripeSubscription] | None = None,
        errors: dict[str, Exception] | None = None,
    ) -> None:
        self.by_merchant = by_merchant or {}
        self.by_customer = by_customer or {}
        self.by_id = by_id or {}
        self.errors = errors or {}
        self.calls: list[tuple[str, str]] = []
        self.metadata_updates: list[tuple[str, dict[str, str]]] = []

    def _maybe_fail(self, operation: str, key: str) -> None:
        self.calls.append((operation, key))
        if operation in self.errors:
            raise self.errors[operation]

    def search_subscriptions_for_merchant(self, merchant_id: str) -> list[StripeSubscription]:
        self._maybe_fail("search", merchant_id)
        return list(self.by_merchant.get(merchant_id, []))

    def list_subscriptions_for_customer(self, customer_id: str) -> list[StripeSubscription]:
        self._maybe_fail("list", customer_id)
        return list(self.by_customer.get(customer_id, []))

    def retrieve_subscription(self, subscription_id: str) -> StripeSubscription:
        self._maybe_fail("retrieve", subscription_id)
        return self.by_id[subscription_id]

    def update_metadata(self, subscription_id: str, metadata: dict[str, str]) -> None:
        self._maybe_fail("update_metadata", subscription_id)
        self.metadata_updates.append((subscription_id, metadata))
