"""Batch reconciliation of stored seat counts against live Stripe subscriptions.

Merchants are processed strictly one at a time. Every vendor or store
failure is contained to the merchant it happened on; the loop always moves
on to the next row and the final :class:`BackfillReport` carries the tally.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

import stripe
from pydantic import ValidationError

from app.models.vendor_payloads import StripeSubscription
from app.observability.metrics import metrics
from app.services.billing.errors import SubscriptionPersistenceError
from app.services.billing.mapping import build_subscription_updates, parse_metadata_seat_count
from app.services.billing.repository import SubscriptionRepository, SubscriptionSnapshot
from app.services.billing.seats import derive_seats_count, pick_best_subscription

logger = logging.getLogger(__name__)

_VENDOR_ERRORS = (stripe.StripeError, ValidationError)


class SubscriptionSource(Protocol):
    """The slice of the Stripe gateway the backfill depends on."""

    def search_subscriptions_for_merchant(self, merchant_id: str) -> list[StripeSubscription]:
        ...

    def list_subscriptions_for_customer(self, customer_id: str) -> list[StripeSubscription]:
        ...

    def retrieve_subscription(self, subscription_id: str) -> StripeSubscription:
        ...

    def update_metadata(self, subscription_id: str, metadata: dict[str, str]) -> None:
        ...


class BackfillOutcome(str, Enum):
    UPDATED = "updated"
    DRY_RUN = "dry_run"
    MISSING = "missing"
    FAILED = "failed"


@dataclass(frozen=True)
class MerchantBackfillResult:
    merchant_id: str
    outcome: BackfillOutcome
    seats_count: int | None = None
    subscription_id: str | None = None
    metadata_synced: bool = False
    error: str | None = None


@dataclass
class BackfillReport:
    results: list[MerchantBackfillResult] = field(default_factory=list)

    def count(self, *outcomes: BackfillOutcome) -> int:
        return sum(1 for result in self.results if result.outcome in outcomes)

    @property
    def updated(self) -> int:
        return self.count(BackfillOutcome.UPDATED)

    @property
    def skipped(self) -> int:
        return self.count(BackfillOutcome.DRY_RUN, BackfillOutcome.FAILED)

    @property
    def missing(self) -> int:
        return self.count(BackfillOutcome.MISSING)

    def summary(self) -> str:
        return f"Backfill complete. Updated={self.updated}, DryRun={self.skipped}, Missing={self.missing}"


class SeatBackfillJob:
    """Re-derive seat counts and billing fields for every stored merchant row."""

    def __init__(
        self,
        repository: SubscriptionRepository,
        gateway: SubscriptionSource,
        *,
        staff_seat_price_ids: Iterable[str],
        dry_run: bool = False,
    ) -> None:
        self._repository = repository
        self._gateway = gateway
        self._staff_seat_price_ids = frozenset(staff_seat_price_ids)
        self._dry_run = dry_run

    async def run(self) -> BackfillReport:
        rows = await self._repository.list_subscriptions()
        logger.info(
            "billing.backfill.started",
            extra={"merchants": len(rows), "dry_run": self._dry_run},
        )
        report = BackfillReport()
        for row in rows:
            report.results.append(await self.backfill_merchant(row))
        logger.info(report.summary())
        metrics.gauge("billing.backfill.updated", report.updated)
        metrics.gauge("billing.backfill.skipped", report.skipped)
        metrics.gauge("billing.backfill.missing", report.missing)
        failed = report.count(BackfillOutcome.FAILED)
        if failed:
            metrics.alert(
                "billing.backfill.failed", value=failed, threshold=0.0, severity="warning"
            )
        return report

    async def backfill_merchant(self, row: SubscriptionSnapshot) -> MerchantBackfillResult:
        merchant_id = row.merchant_id
        subscription = self.resolve_vendor_subscription(
            merchant_id,
            subscription_id=row.provider_subscription_id,
            customer_id=row.provider_customer_id,
        )
        if subscription is None:
            logger.warning("No Stripe subscription found for merchant %s", merchant_id)
            return MerchantBackfillResult(merchant_id=merchant_id, outcome=BackfillOutcome.MISSING)

        seats_count = derive_seats_count(subscription, self._staff_seat_price_ids)
        updates = build_subscription_updates(subscription, seats_count=seats_count)

        if self._dry_run:
            logger.info(
                "[dry-run] %s: seats=%s (stored=%s), subscription=%s, status=%s",
                merchant_id,
                seats_count,
                row.seats_count,
                subscription.id,
                updates["status"],
            )
            return MerchantBackfillResult(
                merchant_id=merchant_id,
                outcome=BackfillOutcome.DRY_RUN,
                seats_count=seats_count,
                subscription_id=subscription.id,
            )

        try:
            updated = await self._repository.update_by_merchant(merchant_id, updates)
        except SubscriptionPersistenceError as exc:
            logger.error("Failed to update merchant %s: %s", merchant_id, exc)
            return MerchantBackfillResult(
                merchant_id=merchant_id,
                outcome=BackfillOutcome.FAILED,
                seats_count=seats_count,
                subscription_id=subscription.id,
                error=str(exc),
            )
        if updated is None:
            logger.error("Subscription row for merchant %s disappeared during backfill", merchant_id)
            return MerchantBackfillResult(
                merchant_id=merchant_id,
                outcome=BackfillOutcome.FAILED,
                seats_count=seats_count,
                subscription_id=subscription.id,
                error="subscription row not found",
            )

        synced = self.sync_seat_metadata(subscription, seats_count)
        logger.info(
            "Updated merchant %s: seats=%s, subscription=%s", merchant_id, seats_count, subscription.id
        )
        return MerchantBackfillResult(
            merchant_id=merchant_id,
            outcome=BackfillOutcome.UPDATED,
            seats_count=seats_count,
            subscription_id=subscription.id,
            metadata_synced=synced,
        )

    def resolve_vendor_subscription(
        self,
        merchant_id: str,
        *,
        subscription_id: str | None = None,
        customer_id: str | None = None,
    ) -> StripeSubscription | None:
        """Find the merchant's live subscription: search, then customer list, then retrieve."""
        try:
            best = pick_best_subscription(self._gateway.search_subscriptions_for_merchant(merchant_id))
        except _VENDOR_ERRORS as exc:
            logger.warning("Stripe subscription search failed for %s: %s", merchant_id, exc)
            best = None
        if best is not None:
            return best

        if customer_id:
            try:
                best = pick_best_subscription(
                    self._gateway.list_subscriptions_for_customer(customer_id)
                )
            except _VENDOR_ERRORS as exc:
                logger.warning("Stripe subscription list failed for %s: %s", customer_id, exc)
                best = None
            if best is not None:
                return best

        if subscription_id:
            try:
                return self._gateway.retrieve_subscription(subscription_id)
            except _VENDOR_ERRORS as exc:
                logger.warning("Stripe subscription retrieve failed for %s: %s", subscription_id, exc)
        return None

    def sync_seat_metadata(self, subscription: StripeSubscription, seats_count: int) -> bool:
        """Push the derived seat count into Stripe metadata when it drifted."""
        if parse_metadata_seat_count(subscription.metadata) == seats_count:
            return False
        metadata = {**subscription.metadata, "seats_count": str(seats_count)}
        try:
            self._gateway.update_metadata(subscription.id, metadata)
        except stripe.StripeError as exc:
            logger.warning("Failed to sync Stripe seats_count metadata for %s: %s", subscription.id, exc)
            return False
        return True
