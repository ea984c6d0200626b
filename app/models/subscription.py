"""SQLModel mappings for merchant subscriptions, plans, and billing events."""
# ruff: noqa: UP017

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import sqlalchemy as sa
from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class Plan(SQLModel, table=True):
    """Catalog entry a subscription's plan_id points at."""

    __tablename__ = "plans"

    id: str = Field(sa_column=Column(String(length=64), primary_key=True, nullable=False))
    name: str = Field(sa_column=Column(String(length=255), nullable=False))
    stripe_price_id: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )
    stripe_annual_price_id: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )
    stripe_product_id: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )
    paypal_plan_id: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )
    is_active: bool = Field(
        default=True, sa_column=Column(Boolean, nullable=False, server_default=sa.true())
    )
    display_order: int = Field(
        default=0, sa_column=Column(Integer, nullable=False, server_default="0")
    )


class Subscription(SQLModel, table=True):
    """Billing state for a merchant; exactly one row per merchant."""

    __tablename__ = "subscriptions"
    __table_args__ = (
        sa.UniqueConstraint("merchant_id", name="uq_subscriptions_merchant_id"),
        sa.Index("ix_subscriptions_provider_subscription_id", "provider_subscription_id"),
        sa.Index("ix_subscriptions_provider_customer_id", "provider_customer_id"),
    )

    id: str = Field(
        default_factory=_new_id,
        sa_column=Column(String(length=36), primary_key=True, nullable=False),
    )
    merchant_id: str = Field(sa_column=Column(String(length=255), nullable=False))
    billing_provider: str = Field(sa_column=Column(String(length=32), nullable=False))
    provider_customer_id: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )
    provider_subscription_id: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )
    plan_id: str | None = Field(
        default=None,
        sa_column=Column(
            String(length=64), sa.ForeignKey("plans.id", ondelete="SET NULL"), nullable=True
        ),
    )
    status: str = Field(sa_column=Column(String(length=64), nullable=False))
    cancel_at_period_end: bool = Field(
        default=False, sa_column=Column(Boolean, nullable=False, server_default=sa.false())
    )
    current_period_start: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    current_period_end: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    trial_start: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    trial_end: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    canceled_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    paused_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    pause_resumes_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    seats_count: int = Field(
        default=1, sa_column=Column(Integer, nullable=False, server_default="1")
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
        ),
    )


class BillingEvent(SQLModel, table=True):
    """Append-only audit record of a handled vendor webhook event."""

    __tablename__ = "billing_events"
    __table_args__ = (
        sa.Index("ix_billing_events_merchant_id", "merchant_id"),
        sa.Index("ix_billing_events_provider_event_id", "provider_event_id"),
    )

    id: str = Field(
        default_factory=_new_id,
        sa_column=Column(String(length=36), primary_key=True, nullable=False),
    )
    event_type: str = Field(sa_column=Column(String(length=255), nullable=False))
    provider: str = Field(sa_column=Column(String(length=32), nullable=False))
    provider_event_id: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )
    merchant_id: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )
    subscription_id: str | None = Field(
        default=None,
        sa_column=Column(
            String(length=36),
            sa.ForeignKey("subscriptions.id", ondelete="SET NULL"),
            nullable=True,
        ),
    )
    payload: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON, nullable=False)
    )
    processed: bool = Field(
        default=False, sa_column=Column(Boolean, nullable=False, server_default=sa.false())
    )
    error: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
