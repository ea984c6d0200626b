"""Alembic environment for the billing tables (plans, subscriptions, billing_events)."""

from __future__ import annotations

import asyncio
import logging
import os
import ssl
from logging.config import fileConfig
from typing import Any

import certifi
from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import async_engine_from_config
from sqlmodel import SQLModel

from app.config import settings
from app.models import subscription  # noqa: F401 - registers billing tables on SQLModel.metadata

SUPABASE_POOLER_PORT = 6543
TRUTHY = {"1", "true", "yes", "on"}

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("openalert.alembic")
logger.setLevel(logging.INFO)
target_metadata = SQLModel.metadata


def _announce(message: str, *args: Any) -> None:
    logger.info(message, *args)
    config.print_stdout("[Alembic] " + (message % args if args else message))


def _supabase_ssl_context() -> ssl.SSLContext:
    ctx = ssl.create_default_context(
        cafile=os.environ.get("ALEMBIC_SUPABASE_CA_FILE") or certifi.where()
    )
    if os.environ.get("ALEMBIC_SUPABASE_TLS_INSECURE", "").strip().lower() in TRUTHY:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        _announce("WARNING Supabase TLS verification DISABLED.")
    return ctx


def _normalize(url: URL) -> tuple[URL, dict[str, Any]]:
    """Route Supabase hosts through the pooled port with TLS; other hosts pass through."""
    connect_args: dict[str, Any] = {}
    if "supabase.co" in (url.host or "").lower():
        query = {k: v for k, v in url.query.items() if k not in {"ssl", "sslmode"}}
        url = url.set(port=SUPABASE_POOLER_PORT, query=query)
        connect_args["ssl"] = _supabase_ssl_context()
        _announce("Normalized Supabase DATABASE_URL to pooled port + TLS.")
    elif os.environ.get("PGSSLMODE", "").lower() == "require":
        connect_args["ssl"] = ssl.create_default_context()
    return url, connect_args


def _resolve_database_config() -> tuple[str, dict[str, Any]]:
    runtime = config.get_section("alembic:runtime") or {}
    candidates = [
        ("environment variable", os.environ.get("DATABASE_URL")),
        ("alembic.ini", config.get_main_option("sqlalchemy.url") or runtime.get("sqlalchemy.url")),
        ("app settings", settings.database_url),
    ]
    for source, value in candidates:
        if not value:
            continue
        try:
            url, connect_args = _normalize(make_url(value))
        except ArgumentError:
            logger.warning("Unable to parse DATABASE_URL from %s; using value as-is.", source)
            return value, {}
        _announce(
            "DATABASE_URL source=%s: %s", source, url.render_as_string(hide_password=True)
        )
        return url.render_as_string(hide_password=False), connect_args
    raise RuntimeError("DATABASE_URL must be set to run migrations.")


def run_migrations_offline() -> None:
    url, _ = _resolve_database_config()
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    url, connect_args = _resolve_database_config()
    configuration = config.get_section(config.config_ini_section) or {}
    configuration["sqlalchemy.url"] = url
    connectable = async_engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
        connect_args=connect_args,
    )
    try:
        async with connectable.connect() as connection:
            await connection.run_sync(do_run_migrations)
    finally:
        await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
