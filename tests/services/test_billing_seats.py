from __future__ import annotations

from app.services.billing.seats import derive_seats_count, pick_best_subscription, status_priority
from tests.helpers.stripe_fakes import BASE_PRICE, SEAT_PRICE, line_item, stripe_subscription

SEAT_PRICES = {SEAT_PRICE}


def _with_items(*items, **overrides):
    return stripe_subscription(items={"data": list(items)}, **overrides)


def test_seat_price_item_wins_over_metadata() -> None:
    sub = _with_items(
        line_item(BASE_PRICE, 1),
        line_item(SEAT_PRICE, 4),
        metadata={"seats_count": "9"},
    )

    assert derive_seats_count(sub, SEAT_PRICES) == 4


def test_metadata_used_when_seat_item_absent() -> None:
    sub = _with_items(line_item(BASE_PRICE, 1), metadata={"seats_count": "3"})

    assert derive_seats_count(sub, SEAT_PRICES) == 3


def test_zero_quantity_seat_item_falls_through_to_metadata() -> None:
    sub = _with_items(line_item(SEAT_PRICE, 0), metadata={"seats_count": "2"})

    assert derive_seats_count(sub, SEAT_PRICES) == 2


def test_max_item_quantity_when_no_seat_item_or_metadata() -> None:
    sub = _with_items(line_item(BASE_PRICE, 2), line_item("price_addon", 5))

    assert derive_seats_count(sub, SEAT_PRICES) == 5


def test_missing_quantity_counts_as_one() -> None:
    sub = _with_items(line_item(BASE_PRICE, None))

    assert derive_seats_count(sub, SEAT_PRICES) == 1


def test_defaults_to_one_seat() -> None:
    assert derive_seats_count(stripe_subscription(), SEAT_PRICES) == 1
    assert derive_seats_count(_with_items(line_item(BASE_PRICE, 0)), SEAT_PRICES) == 1


def test_status_priority_ranking() -> None:
    assert status_priority("active") == status_priority("trialing") == 4
    assert status_priority("past_due") == status_priority("paused") == 3
    assert status_priority("incomplete") == status_priority("unpaid") == 2
    assert status_priority("canceled") == 1
    assert status_priority("incomplete_expired") == 0


def test_pick_best_prefers_status_then_recency() -> None:
    canceled_recent = stripe_subscription("sub_old", status="canceled", current_period_start=2_000)
    active_older = stripe_subscription("sub_a", status="active", current_period_start=1_000)
    active_newer = stripe_subscription("sub_b", status="trialing", current_period_start=1_500)

    best = pick_best_subscription([canceled_recent, active_older, active_newer])

    assert best.id == "sub_b"


def test_pick_best_falls_back_to_created_for_recency() -> None:
    first = stripe_subscription("sub_1", current_period_start=None, created=100)
    second = stripe_subscription("sub_2", current_period_start=None, created=200)

    assert pick_best_subscription([first, second]).id == "sub_2"
    assert pick_best_subscription([]) is None
