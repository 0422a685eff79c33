"""Analysis engine API router: on-demand trigger, status and queue administration."""

from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import APIRouter, Depends, HTTPException, status

from donorscope.analysis.engine import AnalysisEngine, QueueBusyError, UnknownEntityError
from donorscope.analysis.models import ChunkResult, EntityStatus, QueueInitResult, QueueStatus
from donorscope.api.auth import require_admin_key
from donorscope.services.factories import build_analysis_engine

router = APIRouter(prefix="/analysis", tags=["analysis"])
LOGGER = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_analysis_engine() -> AnalysisEngine:
    """Dependency provider returning the shared AnalysisEngine instance."""

    return build_analysis_engine()


@router.post("/run", response_model=ChunkResult, dependencies=[Depends(require_admin_key)])
def run_chunk(engine: AnalysisEngine = Depends(get_analysis_engine)) -> ChunkResult:
    """Advance the queue head by one chunk, exactly as the scheduled job does."""

    result = engine.process_next_chunk()
    LOGGER.info("On-demand chunk status=%s entity_id=%s", result.status, result.entity_id)
    return result


@router.get("/status", response_model=QueueStatus)
def get_status(engine: AnalysisEngine = Depends(get_analysis_engine)) -> QueueStatus:
    return engine.status()


@router.get("/entities/{entity_id}", response_model=EntityStatus)
def get_entity_status(entity_id: str, engine: AnalysisEngine = Depends(get_analysis_engine)) -> EntityStatus:
    entity = engine.entity_status(entity_id)
    if entity is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown entity {entity_id}")
    return entity


@router.post("/queue/init", response_model=QueueInitResult, dependencies=[Depends(require_admin_key)])
def init_queue(engine: AnalysisEngine = Depends(get_analysis_engine)) -> QueueInitResult:
    try:
        return engine.initialize_queue()
    except QueueBusyError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc


@router.post(
    "/entities/{entity_id}/reprocess",
    response_model=EntityStatus,
    dependencies=[Depends(require_admin_key)],
)
def reprocess_entity(entity_id: str, engine: AnalysisEngine = Depends(get_analysis_engine)) -> EntityStatus:
    """Drop the final record and checkpoint so the entity is collected again."""

    try:
        return engine.reprocess(entity_id)
    except UnknownEntityError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except QueueBusyError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
