"""Re-derive merchant seat counts from live Stripe subscriptions.

Usage: python -m scripts.backfill_stripe_seats [--dry-run] [--database-url URL]
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import ArgumentError

from app.config import Settings
from app.core.database import build_engine, build_session_factory
from app.services.billing.backfill import BackfillReport, SeatBackfillJob
from app.services.billing.repository import SqlSubscriptionRepository
from app.services.billing.stripe_gateway import StripeGateway

logger = logging.getLogger("scripts.backfill_stripe_seats")


def _render_database_url(url: str) -> str:
    try:
        return make_url(url).render_as_string(hide_password=True)
    except ArgumentError:
        return "<invalid DATABASE_URL>"


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Backfill merchant seat counts from Stripe.")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log the would-be updates without writing to the database or Stripe.",
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="Override DATABASE_URL (falls back to .env).",
    )
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> BackfillReport:
    args = _parse_args(argv)
    local_settings = Settings()
    database_url = args.database_url or local_settings.database_url
    if not database_url:
        raise RuntimeError("DATABASE_URL is required to backfill seats.")
    if not local_settings.stripe_secret_key:
        raise RuntimeError("STRIPE_SECRET_KEY is required to backfill seats.")
    logger.info("Using DATABASE_URL=%s", _render_database_url(database_url))

    engine = build_engine(database_url)
    session_factory = build_session_factory(engine)
    try:
        async with session_factory() as session:
            job = SeatBackfillJob(
                SqlSubscriptionRepository(session),
                StripeGateway(local_settings.stripe_secret_key),
                staff_seat_price_ids=local_settings.staff_seat_price_ids,
                dry_run=args.dry_run,
            )
            report = await job.run()
    finally:
        await engine.dispose()
    return report


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
