"""Shared fixtures for donorscope unit tests."""

from __future__ import annotations

import pytest
import sqlalchemy as sa
from sqlalchemy.orm import sessionmaker

from donorscope.observability import reset_observability_cache
from donorscope.settings.config import EngineSettings, Settings, StorageSettings
from donorscope.store import sql as sql_schema


@pytest.fixture
def session_factory(tmp_path):
    engine = sa.create_engine(f"sqlite:///{tmp_path / 'donorscope.db'}", future=True)
    sql_schema.METADATA.create_all(engine)
    try:
        yield sessionmaker(bind=engine, future=True)
    finally:
        engine.dispose()


@pytest.fixture
def make_settings(tmp_path):
    """Return a factory building real Settings with test-friendly engine defaults."""

    def _factory(**engine_overrides) -> Settings:
        detail_enabled = engine_overrides.pop("detail_store_enabled", False)
        engine_values = {"page_budget": 5, "page_delay_seconds": 0.0, "cycle": 2026, **engine_overrides}
        return Settings(
            engine=EngineSettings(**engine_values),
            storage=StorageSettings(
                sqlite_path=tmp_path / "donorscope.db",
                detail_store_enabled=detail_enabled,
            ),
        )

    reset_observability_cache()
    return _factory
