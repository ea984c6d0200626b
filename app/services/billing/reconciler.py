"""Apply Stripe subscription webhooks to merchant rows and the billing audit log."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from app.models.subscription import BillingEvent
from app.models.vendor_payloads import StripeEvent, StripeSubscription
from app.observability.metrics import metrics
from app.services.billing.errors import SubscriptionPersistenceError
from app.services.billing.mapping import (
    BillingProvider,
    build_subscription_updates,
    parse_metadata_seat_count,
)
from app.services.billing.repository import SubscriptionRepository
from app.services.billing.resolver import resolve_merchant
from app.services.billing.seats import derive_seats_count

logger = logging.getLogger(__name__)

SUBSCRIPTION_EVENT_TYPES = frozenset(
    {
        "customer.subscription.created",
        "customer.subscription.updated",
        "customer.subscription.deleted",
    }
)


class OutcomeStatus(str, Enum):
    APPLIED = "applied"
    IGNORED = "ignored"
    UNRESOLVED = "unresolved"
    PERSIST_FAILED = "persist_failed"


@dataclass(frozen=True)
class ReconcileOutcome:
    status: OutcomeStatus
    merchant_id: str | None = None
    subscription_row_id: str | None = None
    event_recorded: bool = False
    error: str | None = None


async def record_billing_event(
    repository: SubscriptionRepository,
    *,
    event_type: str,
    provider: str,
    provider_event_id: str | None,
    payload: dict[str, Any],
    merchant_id: str | None,
    subscription_id: str | None,
    error: str | None = None,
) -> bool:
    """Append a processed audit row; a store failure is logged and reported as False.

    ``error`` carries the text of a logged upsert failure for the same event.
    """
    event = BillingEvent(
        event_type=event_type,
        provider=provider,
        provider_event_id=provider_event_id,
        merchant_id=merchant_id,
        subscription_id=subscription_id,
        payload=payload,
        processed=True,
        error=error,
    )
    try:
        await repository.record_event(event)
    except SubscriptionPersistenceError as exc:
        logger.error(
            "billing.event.record_failed",
            extra={"event_type": event_type, "provider_event_id": provider_event_id, "error": str(exc)},
        )
        metrics.increment("billing.event.record_failed", tags={"provider": provider})
        return False
    return True


class StripeSubscriptionReconciler:
    """Resolve, upsert, and audit one Stripe subscription event at a time."""

    def __init__(
        self,
        repository: SubscriptionRepository,
        *,
        staff_seat_price_ids: Iterable[str] = (),
    ) -> None:
        self._repository = repository
        self._staff_seat_price_ids = frozenset(staff_seat_price_ids)

    async def apply(
        self,
        event: StripeEvent,
        subscription: StripeSubscription,
        *,
        raw_payload: dict[str, Any] | None = None,
    ) -> ReconcileOutcome:
        """Process one subscription event; store failures come back in the outcome."""
        resolution = await resolve_merchant(subscription, self._repository)
        if not resolution.resolved:
            logger.warning(
                "stripe.webhook.merchant_unresolved",
                extra={"event_id": event.id, "subscription_id": subscription.id},
            )
            metrics.increment("stripe.webhook.merchant_unresolved", tags={"type": event.type})
            return ReconcileOutcome(status=OutcomeStatus.UNRESOLVED)

        merchant_id = resolution.merchant_id
        seats_count = parse_metadata_seat_count(subscription.metadata) or derive_seats_count(
            subscription, self._staff_seat_price_ids
        )
        updates = build_subscription_updates(subscription, seats_count=seats_count)
        updates["provider_customer_id"] = resolution.customer_id

        subscription_row_id = resolution.subscription_row_id
        error: str | None = None
        try:
            row = await self._repository.upsert_by_merchant(merchant_id, updates)
            subscription_row_id = row.id
        except SubscriptionPersistenceError as exc:
            # Reported in the outcome; the route still answers 200.
            error = str(exc)
            logger.error(
                "stripe.webhook.persist_failed",
                extra={"event_id": event.id, "merchant_id": merchant_id, "error": error},
            )
            metrics.increment("stripe.webhook.persist_failed", tags={"type": event.type})
        else:
            logger.info(
                "stripe.webhook.persisted",
                extra={
                    "event_id": event.id,
                    "type": event.type,
                    "merchant_id": merchant_id,
                    "subscription_id": subscription.id,
                    "status": updates["status"],
                    "seats_count": seats_count,
                },
            )
            metrics.increment("stripe.webhook.persisted", tags={"type": event.type})

        recorded = await record_billing_event(
            self._repository,
            event_type=event.type,
            provider=BillingProvider.STRIPE.value,
            provider_event_id=event.id,
            payload=raw_payload if raw_payload is not None else event.model_dump(mode="json"),
            merchant_id=merchant_id,
            subscription_id=subscription_row_id,
            error=error,
        )
        return ReconcileOutcome(
            status=OutcomeStatus.APPLIED if error is None else OutcomeStatus.PERSIST_FAILED,
            merchant_id=merchant_id,
            subscription_row_id=subscription_row_id,
            event_recorded=recorded,
            error=error,
        )
