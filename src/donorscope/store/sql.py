"""SQLAlchemy metadata and engine helpers for the analysis tables."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import sqlalchemy as sa
from sqlalchemy import Engine
from sqlalchemy.dialects import postgresql
from sqlalchemy.engine import URL
from sqlalchemy.orm import sessionmaker

from donorscope.settings import Settings, get_settings

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")
TIMESTAMP = sa.DateTime(timezone=True)
ENTITY_ID = sa.String(length=64)
MONEY = sa.Float()

METADATA = sa.MetaData()

members = sa.Table(
    "members",
    METADATA,
    sa.Column("entity_id", ENTITY_ID, primary_key=True),
    sa.Column("display_name", sa.Text(), nullable=False),
    sa.Column("chamber", sa.Text(), nullable=False),
    sa.Column("state", sa.Text(), nullable=False),
    sa.Column("party", sa.Text(), nullable=True),
    sa.Column("updated_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
)

processing_queue = sa.Table(
    "processing_queue",
    METADATA,
    sa.Column("entity_id", ENTITY_ID, primary_key=True),
    sa.Column("position", sa.Integer(), nullable=False),
    sa.Column("leased_until", TIMESTAMP, nullable=True),
    sa.Column("lease_token", sa.String(length=64), nullable=True),
    sa.Column("enqueued_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
)
sa.Index("idx_processing_queue_position", processing_queue.c.position)

analysis_checkpoints = sa.Table(
    "analysis_checkpoints",
    METADATA,
    sa.Column("entity_id", ENTITY_ID, primary_key=True),
    sa.Column("cycle", sa.Integer(), primary_key=True),
    sa.Column("payload", JSON_TYPE, nullable=False),
    sa.Column("created_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    sa.Column("updated_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
)

analysis_results = sa.Table(
    "analysis_results",
    METADATA,
    sa.Column("entity_id", ENTITY_ID, primary_key=True),
    sa.Column("cycle", sa.Integer(), primary_key=True),
    sa.Column("payload", JSON_TYPE, nullable=False),
    sa.Column("completed_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
)
sa.Index("idx_analysis_results_cycle", analysis_results.c.cycle)

itemized_transactions = sa.Table(
    "itemized_transactions",
    METADATA,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("entity_id", ENTITY_ID, nullable=False),
    sa.Column("source_id", sa.Text(), nullable=False),
    sa.Column("cycle", sa.Integer(), nullable=False),
    sa.Column("donor_key", sa.Text(), nullable=False),
    sa.Column("first_name", sa.Text(), nullable=True),
    sa.Column("last_name", sa.Text(), nullable=True),
    sa.Column("state", sa.Text(), nullable=True),
    sa.Column("zip_code", sa.Text(), nullable=True),
    sa.Column("employer", sa.Text(), nullable=True),
    sa.Column("occupation", sa.Text(), nullable=True),
    sa.Column("amount", MONEY, nullable=False),
    sa.Column("receipt_date", sa.Text(), nullable=True),
    sa.Column("created_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
)
sa.Index("idx_itemized_transactions_entity_cycle", itemized_transactions.c.entity_id, itemized_transactions.c.cycle)
sa.Index("idx_itemized_transactions_donor", itemized_transactions.c.donor_key)

donor_aggregates = sa.Table(
    "donor_aggregates",
    METADATA,
    sa.Column("entity_id", ENTITY_ID, primary_key=True),
    sa.Column("cycle", sa.Integer(), primary_key=True),
    sa.Column("donor_key", sa.Text(), primary_key=True),
    sa.Column("total_amount", MONEY, nullable=False),
    sa.Column("updated_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
)

collection_metadata = sa.Table(
    "collection_metadata",
    METADATA,
    sa.Column("entity_id", ENTITY_ID, primary_key=True),
    sa.Column("cycle", sa.Integer(), primary_key=True),
    sa.Column("source_id", sa.Text(), nullable=False),
    sa.Column("status", sa.Text(), nullable=False),
    sa.Column("transaction_count", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("donor_count", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("total_amount", MONEY, nullable=False, server_default="0"),
    sa.Column("reconciliation", JSON_TYPE, nullable=True),
    sa.Column("updated_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
)


def _resolve_database_url(settings: Settings | None = None) -> str:
    """Return the SQLAlchemy URL considering overrides and configured storage."""

    url_override = os.getenv("DONORSCOPE_DATABASE_URL") or os.getenv("ALEMBIC_DATABASE_URL")
    if url_override:
        return url_override

    resolved = settings or get_settings()
    sqlite_path = Path(resolved.storage.sqlite_path)
    return URL.create("sqlite", database=sqlite_path.as_posix()).render_as_string(hide_password=False)


def build_engine(*, echo: bool = False, settings: Settings | None = None) -> Engine:
    """Instantiate a SQLAlchemy engine aligned with project settings."""

    url = _resolve_database_url(settings)
    connect_args: dict[str, Any] = {}
    if url.startswith("sqlite:///"):
        connect_args["check_same_thread"] = False
        Path(url[len("sqlite:///") :]).parent.mkdir(parents=True, exist_ok=True)
    return sa.create_engine(url, echo=echo, future=True, pool_pre_ping=True, connect_args=connect_args)


def session_factory(*, settings: Settings | None = None) -> sessionmaker:
    """Return a configured sessionmaker bound to the active engine."""

    engine = build_engine(settings=settings)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def create_all(*, settings: Settings | None = None) -> None:
    """Create every analysis table on the configured engine."""

    engine = build_engine(settings=settings)
    try:
        METADATA.create_all(engine)
    finally:
        engine.dispose()
