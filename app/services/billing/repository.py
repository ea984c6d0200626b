"""Persistence for merchant subscriptions and billing events."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.subscription import BillingEvent, Plan, Subscription
from app.services.billing.errors import SubscriptionPersistenceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """Detached copy of the row fields a batch job reads between writes."""

    merchant_id: str
    provider_subscription_id: str | None = None
    provider_customer_id: str | None = None
    seats_count: int | None = None


class SubscriptionRepository(Protocol):
    """Persistence contract the reconciliation services rely on."""

    async def get_by_merchant(self, merchant_id: str) -> Subscription | None:
        ...

    async def find_by_provider_subscription_id(
        self, provider_subscription_id: str, *, provider: str | None = None
    ) -> Subscription | None:
        ...

    async def find_by_provider_customer_id(
        self, provider_customer_id: str, *, provider: str | None = None
    ) -> Subscription | None:
        ...

    async def upsert_by_merchant(self, merchant_id: str, updates: dict[str, Any]) -> Subscription:
        ...

    async def update_by_merchant(
        self, merchant_id: str, updates: dict[str, Any]
    ) -> Subscription | None:
        ...

    async def list_subscriptions(self) -> list[SubscriptionSnapshot]:
        ...

    async def record_event(self, event: BillingEvent) -> BillingEvent:
        ...

    async def list_active_plans(self) -> list[Plan]:
        ...


class SqlSubscriptionRepository(SubscriptionRepository):
    """SQLModel-backed repository bound to a single request/job session."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_merchant(self, merchant_id: str) -> Subscription | None:
        stmt = select(Subscription).where(Subscription.merchant_id == merchant_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_provider_subscription_id(
        self, provider_subscription_id: str, *, provider: str | None = None
    ) -> Subscription | None:
        stmt = select(Subscription).where(
            Subscription.provider_subscription_id == provider_subscription_id
        )
        if provider:
            stmt = stmt.where(Subscription.billing_provider == provider)
        return await self._first(stmt)

    async def find_by_provider_customer_id(
        self, provider_customer_id: str, *, provider: str | None = None
    ) -> Subscription | None:
        stmt = select(Subscription).where(
            Subscription.provider_customer_id == provider_customer_id
        )
        if provider:
            stmt = stmt.where(Subscription.billing_provider == provider)
        return await self._first(stmt)

    async def upsert_by_merchant(self, merchant_id: str, updates: dict[str, Any]) -> Subscription:
        """Insert or overwrite the merchant's row; last writer wins."""
        try:
            existing = await self.get_by_merchant(merchant_id)
            if existing is None:
                record = Subscription(merchant_id=merchant_id, **_without_key(updates))
                self._session.add(record)
            else:
                record = _apply(existing, updates)
            await self._session.commit()
        except SQLAlchemyError as exc:
            await self._session.rollback()
            logger.exception("billing.subscription.upsert_failed", extra={"merchant_id": merchant_id})
            raise SubscriptionPersistenceError(f"Failed to upsert subscription: {exc}") from exc
        return record

    async def update_by_merchant(
        self, merchant_id: str, updates: dict[str, Any]
    ) -> Subscription | None:
        """Overwrite fields on an existing row; returns None when the merchant has none."""
        try:
            existing = await self.get_by_merchant(merchant_id)
            if existing is None:
                return None
            record = _apply(existing, updates)
            await self._session.commit()
        except SQLAlchemyError as exc:
            await self._session.rollback()
            logger.exception("billing.subscription.update_failed", extra={"merchant_id": merchant_id})
            raise SubscriptionPersistenceError(f"Failed to update subscription: {exc}") from exc
        return record

    async def list_subscriptions(self) -> list[SubscriptionSnapshot]:
        stmt = select(
            Subscription.merchant_id,
            Subscription.provider_subscription_id,
            Subscription.provider_customer_id,
            Subscription.seats_count,
        ).order_by(Subscription.merchant_id)
        result = await self._session.execute(stmt)
        return [SubscriptionSnapshot(*row) for row in result.all()]

    async def record_event(self, event: BillingEvent) -> BillingEvent:
        self._session.add(event)
        try:
            await self._session.commit()
        except SQLAlchemyError as exc:
            await self._session.rollback()
            logger.exception(
                "billing.event.persist_failed",
                extra={"event_type": event.event_type, "provider_event_id": event.provider_event_id},
            )
            raise SubscriptionPersistenceError(f"Failed to record billing event: {exc}") from exc
        return event

    async def list_active_plans(self) -> list[Plan]:
        stmt = select(Plan).where(Plan.is_active.is_(True)).order_by(Plan.display_order)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def _first(self, stmt) -> Subscription | None:
        result = await self._session.execute(
            stmt.order_by(Subscription.updated_at.desc()).limit(1)
        )
        return result.scalars().first()


def _without_key(updates: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in updates.items() if key != "merchant_id"}


def _apply(record: Subscription, updates: dict[str, Any]) -> Subscription:
    for field, value in _without_key(updates).items():
        setattr(record, field, value)
    return record
