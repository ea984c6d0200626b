"""Seat derivation and live-subscription ranking for Stripe subscriptions."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from app.models.vendor_payloads import StripeSubscription
from app.services.billing.mapping import parse_metadata_seat_count

_STATUS_PRIORITY = {
    "active": 4,
    "trialing": 4,
    "past_due": 3,
    "paused": 3,
    "incomplete": 2,
    "unpaid": 2,
    "canceled": 1,
}


def derive_seats_count(
    subscription: StripeSubscription, staff_seat_price_ids: Iterable[str]
) -> int:
    """Return the billable seat count implied by a subscription's line items."""
    seat_prices = set(staff_seat_price_ids)
    items = subscription.items.data
    seat_item = next((item for item in items if item.price_id in seat_prices), None)
    if seat_item is not None and seat_item.quantity and seat_item.quantity > 0:
        return seat_item.quantity
    metadata_count = parse_metadata_seat_count(subscription.metadata)
    if metadata_count:
        return metadata_count
    quantities = [
        item.quantity if item.quantity is not None else 1
        for item in items
    ]
    quantities = [qty for qty in quantities if qty > 0]
    if not quantities:
        return 1
    return max(quantities)


def status_priority(status: str) -> int:
    return _STATUS_PRIORITY.get(status, 0)


def _recency(subscription: StripeSubscription) -> int:
    if subscription.current_period_start is not None:
        return subscription.current_period_start
    return subscription.created or 0


def pick_best_subscription(
    subscriptions: Sequence[StripeSubscription],
) -> StripeSubscription | None:
    """Pick the most authoritative subscription: best status, then most recent."""
    if not subscriptions:
        return None
    return max(subscriptions, key=lambda sub: (status_priority(sub.status), _recency(sub)))
