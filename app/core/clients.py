from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.core.database import get_database
from app.services.billing.paypal import PayPalClient
from app.services.billing.repository import SqlSubscriptionRepository
from app.services.billing.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)


@dataclass
class BillingClients:
    """Vendor clients shared by every request for the life of the process."""

    stripe: StripeGateway | None = None
    paypal: PayPalClient | None = None

    @classmethod
    def from_settings(cls, config: Settings) -> BillingClients:
        stripe_gateway = StripeGateway(config.stripe_secret_key) if config.stripe_configured else None
        paypal_client = None
        if config.paypal_configured:
            paypal_client = PayPalClient(
                config.paypal_client_id,
                config.paypal_client_secret,
                base_url=config.paypal_api_base,
                webhook_id=config.paypal_webhook_id,
                timeout=config.paypal_timeout_seconds,
            )
        logger.info(
            "billing.clients.initialized",
            extra={"stripe": stripe_gateway is not None, "paypal": paypal_client is not None},
        )
        return cls(stripe=stripe_gateway, paypal=paypal_client)

    async def aclose(self) -> None:
        if self.paypal is not None:
            await self.paypal.aclose()


def get_billing_clients(request: Request) -> BillingClients:
    """Return the lifespan-built clients, or an empty container before startup."""
    clients = getattr(request.app.state, "billing_clients", None)
    return clients if clients is not None else BillingClients()


async def get_subscription_repository(
    db: AsyncSession | None = Depends(get_database),
) -> SqlSubscriptionRepository | None:
    if db is None:
        return None
    return SqlSubscriptionRepository(db)
