"""Thin wrapper over the Stripe SDK returning validated subscription objects."""

from __future__ import annotations

import logging
from typing import Any

import stripe

from app.models.vendor_payloads import StripeSubscription

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 50


def verify_stripe_signature(
    payload: bytes, signature_header: str, secret: str, *, tolerance: int = 300
) -> None:
    """Verify Stripe's v1 HMAC signature; raises stripe.SignatureVerificationError."""
    stripe.WebhookSignature.verify_header(
        payload.decode("utf-8"), signature_header, secret, tolerance
    )


def _as_dict(obj: Any) -> dict[str, Any]:
    if type(obj) is dict:
        return obj
    if hasattr(obj, "to_dict_recursive"):
        return obj.to_dict_recursive()
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


class StripeGateway:
    """Subscription queries against Stripe, authenticated per call."""

    def __init__(self, api_key: str) -> None:
        if not api_key:
            raise ValueError("STRIPE_SECRET_KEY is required to create a StripeGateway.")
        self._api_key = api_key

    def search_subscriptions_for_merchant(self, merchant_id: str) -> list[StripeSubscription]:
        """Server-side search on the merchant_id metadata key."""
        query = f"metadata['merchant_id']:'{merchant_id}'"
        result = stripe.Subscription.search(query=query, limit=SEARCH_LIMIT, api_key=self._api_key)
        return [StripeSubscription.model_validate(_as_dict(item)) for item in result.data or []]

    def list_subscriptions_for_customer(self, customer_id: str) -> list[StripeSubscription]:
        result = stripe.Subscription.list(
            customer=customer_id, status="all", limit=SEARCH_LIMIT, api_key=self._api_key
        )
        return [StripeSubscription.model_validate(_as_dict(item)) for item in result.data or []]

    def retrieve_subscription(self, subscription_id: str) -> StripeSubscription:
        subscription = stripe.Subscription.retrieve(subscription_id, api_key=self._api_key)
        return StripeSubscription.model_validate(_as_dict(subscription))

    def update_metadata(self, subscription_id: str, metadata: dict[str, str]) -> None:
        stripe.Subscription.modify(subscription_id, metadata=metadata, api_key=self._api_key)
        logger.info(
            "stripe.subscription.metadata_updated",
            extra={"subscription_id": subscription_id, "keys": sorted(metadata)},
        )
