"""Map a Stripe subscription back to the merchant that owns it."""

from __future__ import annotations

from dataclasses import dataclass

from app.models.vendor_payloads import StripeSubscription
from app.services.billing.repository import SubscriptionRepository


@dataclass(frozen=True)
class MerchantResolution:
    merchant_id: str | None
    subscription_row_id: str | None
    customer_id: str | None

    @property
    def resolved(self) -> bool:
        return self.merchant_id is not None


async def resolve_merchant(
    subscription: StripeSubscription, repository: SubscriptionRepository
) -> MerchantResolution:
    """Resolve by metadata, then stored subscription id, then stored customer id."""
    customer_id = subscription.customer
    if subscription.merchant_id:
        return MerchantResolution(
            merchant_id=subscription.merchant_id,
            subscription_row_id=None,
            customer_id=customer_id,
        )

    row = await repository.find_by_provider_subscription_id(subscription.id)
    if row is None and customer_id:
        row = await repository.find_by_provider_customer_id(customer_id)
    if row is None:
        return MerchantResolution(merchant_id=None, subscription_row_id=None, customer_id=customer_id)
    return MerchantResolution(
        merchant_id=row.merchant_id,
        subscription_row_id=row.id,
        customer_id=customer_id,
    )
