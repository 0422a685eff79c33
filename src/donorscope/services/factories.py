"""Factory helpers that instantiate stores, clients and the engine from configuration.

These helpers centralize how :mod:`donorscope.settings` is honored so the job,
the API and the admin CLI all wire the same components.
"""

from __future__ import annotations

from sqlalchemy.orm import sessionmaker

from donorscope.analysis.engine import AnalysisEngine
from donorscope.observability import get_observability
from donorscope.settings import Settings, get_settings
from donorscope.sources.fec import FecClient
from donorscope.store.checkpoint_store import CheckpointStore
from donorscope.store.detail_store import DetailStore
from donorscope.store.member_directory import MemberDirectory
from donorscope.store.queue_store import QueueStore
from donorscope.store.result_store import ResultStore
from donorscope.store.sql import session_factory as build_sql_session_factory


def build_session_factory(*, settings: Settings | None = None) -> sessionmaker:
    """Return a sessionmaker bound to the configured database."""

    return build_sql_session_factory(settings=settings or get_settings())


def build_member_directory(*, settings: Settings | None = None) -> MemberDirectory:
    """Instantiate a :class:`MemberDirectory` backed by the configured SQL engine."""

    return MemberDirectory(session_factory=build_session_factory(settings=settings))


def build_fec_client(*, settings: Settings | None = None) -> FecClient:
    """Instantiate an OpenFEC client using the ``source`` settings section."""

    return FecClient.from_settings(settings or get_settings())


def build_analysis_engine(
    *,
    settings: Settings | None = None,
    session_factory: sessionmaker | None = None,
    source: FecClient | None = None,
) -> AnalysisEngine:
    """Wire every store plus the source client into an :class:`AnalysisEngine`.

    All stores share one session factory so they see a single database.
    """

    resolved = settings or get_settings()
    factory = session_factory or build_session_factory(settings=resolved)
    detail_store = DetailStore(session_factory=factory) if resolved.storage.detail_store_enabled else None
    return AnalysisEngine(
        settings=resolved,
        queue=QueueStore(session_factory=factory),
        checkpoints=CheckpointStore(session_factory=factory),
        results=ResultStore(session_factory=factory),
        members=MemberDirectory(session_factory=factory),
        source=source or build_fec_client(settings=resolved),
        observability=get_observability(component="engine", settings=resolved),
        detail_store=detail_store,
    )


__all__ = [
    "build_analysis_engine",
    "build_fec_client",
    "build_member_directory",
    "build_session_factory",
]
