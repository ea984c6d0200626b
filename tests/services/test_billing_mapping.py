# ruff: noqa: UP017
from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from app.models.vendor_payloads import StripeSubscription
from app.services.billing.mapping import (
    build_subscription_updates,
    epoch_to_datetime,
    map_stripe_status,
    parse_metadata_seat_count,
)
from tests.helpers.stripe_fakes import stripe_subscription, subscription_payload


@pytest.mark.parametrize(
    ("vendor_status", "expected"),
    [
        ("trialing", "trialing"),
        ("active", "active"),
        ("past_due", "past_due"),
        ("canceled", "canceled"),
        ("incomplete", "incomplete"),
        ("unpaid", "past_due"),
        ("incomplete_expired", "canceled"),
        ("some_future_status", "some_future_status"),
    ],
)
def test_map_stripe_status(vendor_status: str, expected: str) -> None:
    assert map_stripe_status(stripe_subscription(status=vendor_status)) == expected


def test_pause_overrides_vendor_status() -> None:
    sub = stripe_subscription(status="active", pause_collection={"behavior": "void"})

    assert map_stripe_status(sub) == "paused"


def test_epoch_to_datetime_round_trips_whole_seconds() -> None:
    converted = epoch_to_datetime(1_700_000_000)

    assert converted == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
    assert int(converted.timestamp()) == 1_700_000_000


@pytest.mark.parametrize("value", [None, "1700000000", float("nan"), float("inf"), True, 10**20])
def test_epoch_to_datetime_rejects_invalid_input(value) -> None:
    assert epoch_to_datetime(value) is None


@pytest.mark.parametrize(
    ("metadata", "expected"),
    [
        ({"seats_count": "3"}, 3),
        ({"seats_count": "2.7"}, 2),
        ({"seats_count": "0"}, None),
        ({"seats_count": "0.5"}, None),
        ({"seats_count": "-4"}, None),
        ({"seats_count": "many"}, None),
        ({"seats_count": "nan"}, None),
        ({}, None),
        (None, None),
    ],
)
def test_parse_metadata_seat_count(metadata, expected) -> None:
    assert parse_metadata_seat_count(metadata) == expected


def test_build_updates_maps_fields_and_metadata_plan() -> None:
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    sub = stripe_subscription(
        status="trialing",
        customer="cus_abc",
        trial_start=1_700_000_000,
        trial_end=1_701_000_000,
        metadata={"merchant_id": "m_1", "plan_id": "pro"},
    )

    updates = build_subscription_updates(sub, seats_count=4, now=now)

    assert updates["billing_provider"] == "stripe"
    assert updates["provider_customer_id"] == "cus_abc"
    assert updates["provider_subscription_id"] == "sub_123"
    assert updates["status"] == "trialing"
    assert updates["plan_id"] == "pro"
    assert updates["seats_count"] == 4
    assert updates["trial_start"] == epoch_to_datetime(1_700_000_000)
    assert updates["trial_end"] == epoch_to_datetime(1_701_000_000)
    assert updates["paused_at"] is None
    assert updates["pause_resumes_at"] is None
    assert updates["updated_at"] == now


def test_build_updates_leaves_seats_and_plan_out_when_unknown() -> None:
    updates = build_subscription_updates(stripe_subscription())

    assert "seats_count" not in updates
    assert "plan_id" not in updates


def test_scheduled_cancellation_sets_cancel_at_period_end() -> None:
    sub = stripe_subscription(cancel_at_period_end=False, cancel_at=1_705_000_000)

    assert build_subscription_updates(sub)["cancel_at_period_end"] is True


def test_pause_records_pause_window() -> None:
    now = datetime(2024, 2, 1, tzinfo=timezone.utc)
    sub = stripe_subscription(
        pause_collection={"behavior": "keep_as_draft", "resumes_at": 1_710_000_000}
    )

    updates = build_subscription_updates(sub, now=now)

    assert updates["status"] == "paused"
    assert updates["paused_at"] == now
    assert updates["pause_resumes_at"] == epoch_to_datetime(1_710_000_000)


def test_pause_without_resume_date_keeps_resume_empty() -> None:
    sub = stripe_subscription(pause_collection={"behavior": "void", "resumes_at": None})

    updates = build_subscription_updates(sub)

    assert updates["paused_at"] is not None
    assert updates["pause_resumes_at"] is None


def test_item_period_used_when_top_level_period_missing() -> None:
    sub = stripe_subscription(
        current_period_start=None,
        current_period_end=None,
        items={
            "data": [
                {
                    "id": "si_1",
                    "price": {"id": "price_x"},
                    "quantity": 1,
                    "current_period_start": 1_700_000_000,
                    "current_period_end": 1_702_592_000,
                }
            ]
        },
    )

    updates = build_subscription_updates(sub)

    assert updates["current_period_start"] == epoch_to_datetime(1_700_000_000)
    assert updates["current_period_end"] == epoch_to_datetime(1_702_592_000)


def test_vendor_payload_defuses_loose_types() -> None:
    sub = stripe_subscription(
        customer={"id": "cus_expanded", "object": "customer"},
        metadata={"merchant_id": "m_9", "seats_count": 5, "empty": None},
        current_period_start=1_700_000_000.9,
        trial_end="soon",
    )

    assert sub.customer == "cus_expanded"
    assert sub.metadata == {"merchant_id": "m_9", "seats_count": "5"}
    assert sub.merchant_id == "m_9"
    assert sub.current_period_start == 1_700_000_000
    assert sub.trial_end is None


def test_vendor_subscription_without_status_is_rejected() -> None:
    payload = subscription_payload()
    del payload["status"]

    with pytest.raises(ValidationError):
        StripeSubscription.model_validate(payload)
