"""Validated shapes for Stripe and PayPal webhook payloads."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_EPOCH_FIELDS = (
    "current_period_start",
    "current_period_end",
    "trial_start",
    "trial_end",
    "canceled_at",
    "cancel_at",
    "created",
)


def coerce_epoch(value: Any) -> int | None:
    """Return whole epoch seconds, or None for missing/non-numeric/non-finite input."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    return None


class _VendorModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class PauseCollection(_VendorModel):
    behavior: str | None = None
    resumes_at: int | None = None

    @field_validator("resumes_at", mode="before")
    @classmethod
    def _epoch(cls, value: Any) -> int | None:
        return coerce_epoch(value)


class SubscriptionPrice(_VendorModel):
    id: str | None = None


class SubscriptionItem(_VendorModel):
    id: str | None = None
    price: SubscriptionPrice | None = None
    quantity: int | None = None
    current_period_start: int | None = None
    current_period_end: int | None = None

    @field_validator("current_period_start", "current_period_end", mode="before")
    @classmethod
    def _epoch(cls, value: Any) -> int | None:
        return coerce_epoch(value)

    @field_validator("price", mode="before")
    @classmethod
    def _price_id(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"id": value}
        return value

    @property
    def price_id(self) -> str | None:
        return self.price.id if self.price else None


class SubscriptionItems(_VendorModel):
    data: list[SubscriptionItem] = Field(default_factory=list)


class StripeSubscription(_VendorModel):
    """A Stripe subscription object with optional fields already defused."""

    id: str
    customer: str | None = None
    status: str
    metadata: dict[str, str] = Field(default_factory=dict)
    pause_collection: PauseCollection | None = None
    cancel_at_period_end: bool = False
    cancel_at: int | None = None
    current_period_start: int | None = None
    current_period_end: int | None = None
    trial_start: int | None = None
    trial_end: int | None = None
    canceled_at: int | None = None
    created: int | None = None
    items: SubscriptionItems = Field(default_factory=SubscriptionItems)

    @field_validator(*_EPOCH_FIELDS, mode="before")
    @classmethod
    def _epoch(cls, value: Any) -> int | None:
        return coerce_epoch(value)

    @field_validator("customer", mode="before")
    @classmethod
    def _customer_id(cls, value: Any) -> str | None:
        if isinstance(value, dict):
            return value.get("id")
        return value

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata(cls, value: Any) -> dict[str, str]:
        if not isinstance(value, dict):
            return {}
        return {str(key): str(item) for key, item in value.items() if item is not None}

    @field_validator("cancel_at_period_end", mode="before")
    @classmethod
    def _flag(cls, value: Any) -> bool:
        return bool(value)

    @field_validator("items", mode="before")
    @classmethod
    def _items(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, list):
            return {"data": value}
        return value

    @model_validator(mode="after")
    def _item_period_fallback(self) -> "StripeSubscription":
        # Newer API versions carry the billing period on the items only.
        first = self.items.data[0] if self.items.data else None
        if first is not None:
            if self.current_period_start is None:
                self.current_period_start = first.current_period_start
            if self.current_period_end is None:
                self.current_period_end = first.current_period_end
        return self

    @property
    def merchant_id(self) -> str | None:
        return self.metadata.get("merchant_id") or None

    @property
    def plan_id(self) -> str | None:
        return self.metadata.get("plan_id") or None


class StripeEvent(_VendorModel):
    id: str
    type: str
    data: dict[str, Any] = Field(default_factory=dict)

    def data_object(self) -> dict[str, Any]:
        obj = self.data.get("object") if self.data else None
        return obj if isinstance(obj, dict) else {}


class PayPalSubscriber(_VendorModel):
    payer_id: str | None = None
    email_address: str | None = None


class PayPalBillingInfo(_VendorModel):
    next_billing_time: datetime | None = None


class PayPalResource(_VendorModel):
    id: str
    status: str | None = None
    custom_id: str | None = None
    subscriber: PayPalSubscriber | None = None
    billing_info: PayPalBillingInfo | None = None
    start_time: datetime | None = None

    @property
    def payer_id(self) -> str | None:
        return self.subscriber.payer_id if self.subscriber else None


class PayPalWebhookEvent(_VendorModel):
    id: str
    event_type: str
    resource_type: str | None = None
    resource: PayPalResource
    create_time: datetime | None = None
    summary: str | None = None
