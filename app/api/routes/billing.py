"""Vendor webhooks, on-demand reconciliation, and subscription read endpoints."""
# ruff: noqa: UP017

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel, Field, ValidationError

from app.config import settings
from app.core.clients import BillingClients, get_billing_clients, get_subscription_repository
from app.models.subscription import Plan, Subscription
from app.models.vendor_payloads import PayPalWebhookEvent, StripeEvent, StripeSubscription
from app.observability.metrics import metrics
from app.services.billing.errors import PayPalError, SubscriptionPersistenceError
from app.services.billing.mapping import (
    BillingProvider,
    SubscriptionStatus,
    build_subscription_updates,
    utcnow,
)
from app.services.billing.paypal import PayPalWebhookHandler
from app.services.billing.reconciler import SUBSCRIPTION_EVENT_TYPES, StripeSubscriptionReconciler
from app.services.billing.repository import SqlSubscriptionRepository
from app.services.billing.stripe_gateway import verify_stripe_signature

logger = logging.getLogger(__name__)
router = APIRouter()


class WebhookResponse(BaseModel):
    received: bool
    type: str | None = None
    outcome: str | None = None


class ReconcileRequest(BaseModel):
    merchant_id: str = Field(min_length=1)


class SubscriptionStateResponse(BaseModel):
    merchant_id: str
    billing_provider: str
    status: str
    plan_id: str | None = None
    provider_customer_id: str | None = None
    provider_subscription_id: str | None = None
    cancel_at_period_end: bool
    seats_count: int
    current_period_start: str | None = None
    current_period_end: str | None = None
    trial_start: str | None = None
    trial_end: str | None = None
    canceled_at: str | None = None
    paused_at: str | None = None
    pause_resumes_at: str | None = None
    updated_at: str


class PlanResponse(BaseModel):
    id: str
    name: str
    stripe_price_id: str | None = None
    stripe_annual_price_id: str | None = None
    paypal_plan_id: str | None = None
    display_order: int


def _to_iso(dt: datetime | None) -> str | None:
    if not dt:
        return None
    if dt.tzinfo:
        return dt.isoformat()
    return dt.replace(tzinfo=timezone.utc).isoformat()


def _serialize_subscription(record: Subscription) -> SubscriptionStateResponse:
    return SubscriptionStateResponse(
        merchant_id=record.merchant_id,
        billing_provider=record.billing_provider,
        status=record.status,
        plan_id=record.plan_id,
        provider_customer_id=record.provider_customer_id,
        provider_subscription_id=record.provider_subscription_id,
        cancel_at_period_end=bool(record.cancel_at_period_end),
        seats_count=record.seats_count,
        current_period_start=_to_iso(record.current_period_start),
        current_period_end=_to_iso(record.current_period_end),
        trial_start=_to_iso(record.trial_start),
        trial_end=_to_iso(record.trial_end),
        canceled_at=_to_iso(record.canceled_at),
        paused_at=_to_iso(record.paused_at),
        pause_resumes_at=_to_iso(record.pause_resumes_at),
        updated_at=_to_iso(record.updated_at) or datetime.now(timezone.utc).isoformat(),
    )


def _reject(event: str, detail: str, *, status_code: int = 400, **tags: Any) -> HTTPException:
    logger.warning(event, extra=tags or None)
    metrics.increment(event, tags=tags or None)
    return HTTPException(status_code=status_code, detail=detail)


def _require_repository(
    repository: SqlSubscriptionRepository | None, event: str
) -> SqlSubscriptionRepository:
    if repository is None:
        logger.warning(event)
        metrics.alert(event, value=1.0, threshold=0.0, severity="critical")
        raise HTTPException(status_code=503, detail="Database not configured")
    return repository


@router.post("/stripe/webhook", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    repository: SqlSubscriptionRepository | None = Depends(get_subscription_repository),
) -> WebhookResponse:
    """Verify a Stripe delivery and reconcile subscription lifecycle events."""
    body = await request.body()
    secret = settings.stripe_webhook_secret
    if not secret:
        logger.error("stripe.webhook.secret_missing")
        raise HTTPException(status_code=400, detail="Webhook secret not configured")
    if not stripe_signature:
        raise _reject("stripe.webhook.signature_missing", "Missing Stripe-Signature header")
    try:
        verify_stripe_signature(
            body,
            stripe_signature,
            secret,
            tolerance=settings.stripe_webhook_tolerance_seconds,
        )
    except (stripe.SignatureVerificationError, ValueError):
        raise _reject("stripe.webhook.signature_invalid", "Invalid signature") from None

    try:
        raw_event = json.loads(body)
        event = StripeEvent.model_validate(raw_event)
    except (json.JSONDecodeError, ValidationError):
        raise _reject("stripe.webhook.invalid_payload", "Invalid payload") from None

    repository = _require_repository(repository, "stripe.webhook.db_missing")
    logger.info("stripe.webhook.received", extra={"event_id": event.id, "type": event.type})
    metrics.increment("stripe.webhook.received", tags={"type": event.type})

    if event.type not in SUBSCRIPTION_EVENT_TYPES:
        logger.info("stripe.webhook.skipped_event", extra={"event_id": event.id, "type": event.type})
        return WebhookResponse(received=True, type=event.type, outcome="ignored")

    try:
        subscription = StripeSubscription.model_validate(event.data_object())
    except ValidationError as exc:
        logger.warning(
            "stripe.webhook.invalid_subscription",
            extra={"event_id": event.id, "type": event.type, "error": str(exc)},
        )
        metrics.increment("stripe.webhook.invalid_subscription", tags={"type": event.type})
        return WebhookResponse(received=True, type=event.type, outcome="ignored")

    reconciler = StripeSubscriptionReconciler(
        repository, staff_seat_price_ids=settings.staff_seat_price_ids
    )
    try:
        outcome = await reconciler.apply(event, subscription, raw_payload=raw_event)
    except Exception:
        logger.exception(
            "stripe.webhook.processing_failed", extra={"event_id": event.id, "type": event.type}
        )
        raise HTTPException(status_code=500, detail="Webhook processing failed") from None
    return WebhookResponse(received=True, type=event.type, outcome=outcome.status.value)


@router.post("/paypal/webhook", response_model=WebhookResponse)
async def paypal_webhook(
    request: Request,
    clients: BillingClients = Depends(get_billing_clients),
    repository: SqlSubscriptionRepository | None = Depends(get_subscription_repository),
) -> WebhookResponse:
    """Verify a PayPal delivery with PayPal itself, then apply the subscription change."""
    if clients.paypal is None:
        logger.error("paypal.webhook.not_configured")
        raise HTTPException(status_code=400, detail="PayPal not configured")
    try:
        raw_event = json.loads(await request.body())
    except ValueError:
        raise _reject("paypal.webhook.invalid_payload", "Invalid payload") from None
    if not isinstance(raw_event, dict):
        raise _reject("paypal.webhook.invalid_payload", "Invalid payload")

    try:
        await clients.paypal.verify_webhook(request.headers, raw_event)
    except PayPalError as exc:
        logger.warning("paypal.webhook.verification_failed", extra={"error": str(exc)})
        metrics.increment("paypal.webhook.signature_invalid")
        raise HTTPException(status_code=400, detail="Invalid signature") from None

    try:
        event = PayPalWebhookEvent.model_validate(raw_event)
    except ValidationError:
        raise _reject("paypal.webhook.invalid_payload", "Invalid payload") from None

    repository = _require_repository(repository, "paypal.webhook.db_missing")
    logger.info(
        "paypal.webhook.received", extra={"event_id": event.id, "type": event.event_type}
    )
    metrics.increment("paypal.webhook.received", tags={"type": event.event_type})
    try:
        outcome = await PayPalWebhookHandler(repository).handle(event, raw_payload=raw_event)
    except Exception:
        logger.exception(
            "paypal.webhook.processing_failed",
            extra={"event_id": event.id, "type": event.event_type},
        )
        raise HTTPException(status_code=500, detail="Webhook processing failed") from None
    return WebhookResponse(received=True, type=event.event_type, outcome=outcome.status.value)


@router.post("/reconcile-subscription", response_model=SubscriptionStateResponse)
async def reconcile_subscription(
    payload: ReconcileRequest,
    clients: BillingClients = Depends(get_billing_clients),
    repository: SqlSubscriptionRepository | None = Depends(get_subscription_repository),
) -> SubscriptionStateResponse:
    """Pull the merchant's Stripe subscription and overwrite the stored row with it."""
    repository = _require_repository(repository, "billing.reconcile.db_missing")
    merchant_id = payload.merchant_id
    record = await repository.get_by_merchant(merchant_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Subscription not found")
    if (
        record.billing_provider != BillingProvider.STRIPE.value
        or not record.provider_subscription_id
    ):
        logger.info(
            "billing.reconcile.skipped",
            extra={"merchant_id": merchant_id, "provider": record.billing_provider},
        )
        return _serialize_subscription(record)
    if clients.stripe is None:
        raise HTTPException(status_code=503, detail="Stripe not configured")

    subscription_id = record.provider_subscription_id
    try:
        subscription = clients.stripe.retrieve_subscription(subscription_id)
    except stripe.InvalidRequestError as exc:
        if exc.code != "resource_missing":
            raise _reject(
                "billing.reconcile.vendor_error", "Stripe request failed", status_code=502
            ) from None
        logger.warning(
            "billing.reconcile.subscription_missing",
            extra={"merchant_id": merchant_id, "subscription_id": subscription_id},
        )
        now = utcnow()
        updates: dict[str, Any] = {
            "status": SubscriptionStatus.CANCELED.value,
            "provider_subscription_id": None,
            "canceled_at": now,
            "updated_at": now,
        }
    except (stripe.StripeError, ValidationError):
        raise _reject(
            "billing.reconcile.vendor_error", "Stripe request failed", status_code=502
        ) from None
    else:
        updates = build_subscription_updates(subscription)

    try:
        updated = await repository.update_by_merchant(merchant_id, updates)
    except SubscriptionPersistenceError:
        raise HTTPException(status_code=500, detail="Failed to update subscription") from None
    if updated is None:
        raise HTTPException(status_code=404, detail="Subscription not found")
    logger.info(
        "billing.reconcile.updated",
        extra={"merchant_id": merchant_id, "status": updated.status},
    )
    return _serialize_subscription(updated)


@router.get("/subscription/{merchant_id}", response_model=SubscriptionStateResponse)
async def get_subscription_state(
    merchant_id: str,
    repository: SqlSubscriptionRepository | None = Depends(get_subscription_repository),
) -> SubscriptionStateResponse:
    repository = _require_repository(repository, "billing.subscription_state.db_missing")
    record = await repository.get_by_merchant(merchant_id)
    if record is None:
        logger.info("billing.subscription_state.missing", extra={"merchant_id": merchant_id})
        raise HTTPException(status_code=404, detail="Subscription not found")
    return _serialize_subscription(record)


@router.get("/plans", response_model=list[PlanResponse])
async def list_plans(
    repository: SqlSubscriptionRepository | None = Depends(get_subscription_repository),
) -> list[PlanResponse]:
    repository = _require_repository(repository, "billing.plans.db_missing")
    plans: list[Plan] = await repository.list_active_plans()
    return [
        PlanResponse(
            id=plan.id,
            name=plan.name,
            stripe_price_id=plan.stripe_price_id,
            stripe_annual_price_id=plan.stripe_annual_price_id,
            paypal_plan_id=plan.paypal_plan_id,
            display_order=plan.display_order,
        )
        for plan in plans
    ]
