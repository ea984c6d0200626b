"""PayPal REST client and subscription webhook handling."""
# ruff: noqa: UP017

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from typing import Any

import httpx

from app.models.vendor_payloads import PayPalResource, PayPalWebhookEvent
from app.observability.metrics import metrics
from app.services.billing.errors import (
    PayPalError,
    PayPalVerificationError,
    SubscriptionPersistenceError,
)
from app.services.billing.mapping import BillingProvider, SubscriptionStatus, utcnow
from app.services.billing.reconciler import OutcomeStatus, ReconcileOutcome, record_billing_event
from app.services.billing.repository import SubscriptionRepository

logger = logging.getLogger(__name__)

TOKEN_PATH = "/v1/oauth2/token"  # noqa: S105 - provider path, not a credential
VERIFY_PATH = "/v1/notifications/verify-webhook-signature"
TRANSMISSION_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}
DEFAULT_BILLING_PERIOD = timedelta(days=30)

SUBSCRIPTION_ACTIVATED = "BILLING.SUBSCRIPTION.ACTIVATED"
SUBSCRIPTION_CANCELLED = "BILLING.SUBSCRIPTION.CANCELLED"
SUBSCRIPTION_SUSPENDED = "BILLING.SUBSCRIPTION.SUSPENDED"
SUBSCRIPTION_PAYMENT_FAILED = "BILLING.SUBSCRIPTION.PAYMENT.FAILED"
SALE_COMPLETED = "PAYMENT.SALE.COMPLETED"


class PayPalClient:
    """Minimal PayPal REST client for webhook verification."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        base_url: str,
        webhook_id: str | None = None,
        timeout: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not client_id or not client_secret:
            raise ValueError("PAYPAL_CLIENT_ID and PAYPAL_CLIENT_SECRET are required.")
        self._client_id = client_id
        self._client_secret = client_secret
        self._webhook_id = webhook_id
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)

    @property
    def webhook_id(self) -> str | None:
        return self._webhook_id

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    async def get_access_token(self) -> str:
        try:
            response = await self._http.post(
                TOKEN_PATH,
                auth=(self._client_id, self._client_secret),
                data={"grant_type": "client_credentials"},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise PayPalError(f"Failed to get PayPal access token: {exc}", code="PAYPAL_AUTH") from exc
        token = response.json().get("access_token")
        if not token:
            raise PayPalError("PayPal token response missing access_token", code="PAYPAL_AUTH")
        return token

    async def verify_webhook(self, headers: Mapping[str, str], event: dict[str, Any]) -> None:
        """Ask PayPal to verify the transmission; raises PayPalVerificationError on rejection."""
        if not self._webhook_id:
            raise PayPalVerificationError("PayPal webhook id is not configured")
        transmission = {key: headers.get(header) for key, header in TRANSMISSION_HEADERS.items()}
        missing = [header for key, header in TRANSMISSION_HEADERS.items() if not transmission[key]]
        if missing:
            raise PayPalVerificationError(f"Missing PayPal headers: {', '.join(missing)}")

        access_token = await self.get_access_token()
        try:
            response = await self._http.post(
                VERIFY_PATH,
                headers={"Authorization": f"Bearer {access_token}"},
                json={**transmission, "webhook_id": self._webhook_id, "webhook_event": event},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise PayPalVerificationError(f"PayPal verification request failed: {exc}") from exc
        status = response.json().get("verification_status")
        if status != "SUCCESS":
            raise PayPalVerificationError(f"PayPal verification status {status!r}")


def _activated(resource: PayPalResource, now: datetime) -> dict[str, Any]:
    next_billing = resource.billing_info.next_billing_time if resource.billing_info else None
    return {
        "billing_provider": BillingProvider.PAYPAL.value,
        "status": SubscriptionStatus.ACTIVE.value,
        "provider_customer_id": resource.payer_id,
        "provider_subscription_id": resource.id,
        "current_period_start": resource.start_time or now,
        "current_period_end": next_billing or now + DEFAULT_BILLING_PERIOD,
        "updated_at": now,
    }


def _cancelled(resource: PayPalResource, now: datetime) -> dict[str, Any]:
    return {"status": SubscriptionStatus.CANCELED.value, "canceled_at": now, "updated_at": now}


def _suspended(resource: PayPalResource, now: datetime) -> dict[str, Any]:
    return {"status": SubscriptionStatus.PAUSED.value, "paused_at": now, "updated_at": now}


def _payment_failed(resource: PayPalResource, now: datetime) -> dict[str, Any]:
    return {"status": SubscriptionStatus.PAST_DUE.value, "updated_at": now}


def _sale_completed(resource: PayPalResource, now: datetime) -> dict[str, Any]:
    return {"status": SubscriptionStatus.ACTIVE.value, "updated_at": now}


_UPDATE_BUILDERS: dict[str, Callable[[PayPalResource, datetime], dict[str, Any]]] = {
    SUBSCRIPTION_ACTIVATED: _activated,
    SUBSCRIPTION_CANCELLED: _cancelled,
    SUBSCRIPTION_SUSPENDED: _suspended,
    SUBSCRIPTION_PAYMENT_FAILED: _payment_failed,
    SALE_COMPLETED: _sale_completed,
}


class PayPalWebhookHandler:
    """Apply verified PayPal subscription events to merchant rows."""

    def __init__(self, repository: SubscriptionRepository) -> None:
        self._repository = repository

    async def handle(
        self, event: PayPalWebhookEvent, *, raw_payload: dict[str, Any] | None = None
    ) -> ReconcileOutcome:
        payload = raw_payload if raw_payload is not None else event.model_dump(mode="json")
        builder = _UPDATE_BUILDERS.get(event.event_type)
        if builder is None:
            logger.info(
                "paypal.webhook.unhandled_event",
                extra={"event_id": event.id, "type": event.event_type},
            )
            recorded = await self._record(event, payload, merchant_id=event.resource.custom_id)
            return ReconcileOutcome(status=OutcomeStatus.IGNORED, event_recorded=recorded)

        merchant_id = await self._resolve_merchant(event)
        if merchant_id is None:
            logger.warning(
                "paypal.webhook.merchant_unresolved",
                extra={"event_id": event.id, "type": event.event_type, "resource_id": event.resource.id},
            )
            metrics.increment("paypal.webhook.merchant_unresolved", tags={"type": event.event_type})
            recorded = await self._record(event, payload, merchant_id=None)
            return ReconcileOutcome(status=OutcomeStatus.UNRESOLVED, event_recorded=recorded)

        updates = builder(event.resource, utcnow())
        error: str | None = None
        row_id: str | None = None
        try:
            row = await self._repository.update_by_merchant(merchant_id, updates)
        except SubscriptionPersistenceError as exc:
            error = str(exc)
            logger.error(
                "paypal.webhook.persist_failed",
                extra={"event_id": event.id, "merchant_id": merchant_id, "error": error},
            )
            metrics.increment("paypal.webhook.persist_failed", tags={"type": event.event_type})
        else:
            if row is None:
                logger.warning(
                    "paypal.webhook.subscription_missing",
                    extra={"event_id": event.id, "merchant_id": merchant_id},
                )
            else:
                row_id = row.id
                logger.info(
                    "paypal.webhook.persisted",
                    extra={
                        "event_id": event.id,
                        "type": event.event_type,
                        "merchant_id": merchant_id,
                        "status": updates["status"],
                    },
                )
                metrics.increment("paypal.webhook.persisted", tags={"type": event.event_type})

        recorded = await self._record(
            event,
            payload,
            merchant_id=merchant_id,
            subscription_id=row_id,
            error=error,
        )
        return ReconcileOutcome(
            status=OutcomeStatus.APPLIED if error is None else OutcomeStatus.PERSIST_FAILED,
            merchant_id=merchant_id,
            subscription_row_id=row_id,
            event_recorded=recorded,
            error=error,
        )

    async def _resolve_merchant(self, event: PayPalWebhookEvent) -> str | None:
        resource = event.resource
        if resource.custom_id:
            return resource.custom_id
        # Sale events carry the merchant only through custom_id.
        if event.event_type == SALE_COMPLETED or not resource.payer_id:
            return None
        row = await self._repository.find_by_provider_customer_id(
            resource.payer_id, provider=BillingProvider.PAYPAL.value
        )
        return row.merchant_id if row else None

    async def _record(
        self,
        event: PayPalWebhookEvent,
        payload: dict[str, Any],
        *,
        merchant_id: str | None,
        subscription_id: str | None = None,
        error: str | None = None,
    ) -> bool:
        return await record_billing_event(
            self._repository,
            event_type=event.event_type,
            provider=BillingProvider.PAYPAL.value,
            provider_event_id=event.id,
            payload=payload,
            merchant_id=merchant_id,
            subscription_id=subscription_id,
            error=error,
        )
