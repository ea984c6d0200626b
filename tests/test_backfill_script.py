from __future__ import annotations

import asyncio

import pytest

from app.config import Settings
from scripts import backfill_stripe_seats


def test_parse_args_defaults() -> None:
    args = backfill_stripe_seats._parse_args([])

    assert args.dry_run is False
    assert args.database_url is None


def test_parse_args_flags() -> None:
    args = backfill_stripe_seats._parse_args(
        ["--dry-run", "--database-url", "postgresql+asyncpg://u:p@db/openalert"]
    )

    assert args.dry_run is True
    assert args.database_url == "postgresql+asyncpg://u:p@db/openalert"


def test_render_database_url_hides_password() -> None:
    rendered = backfill_stripe_seats._render_database_url("postgresql+asyncpg://u:secret@db/app")

    assert "secret" not in rendered
    assert rendered.startswith("postgresql+asyncpg://u:")


def test_main_requires_database_url(monkeypatch) -> None:
    monkeypatch.setattr(backfill_stripe_seats, "Settings", lambda: Settings.model_construct())

    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        asyncio.run(backfill_stripe_seats.main([]))
