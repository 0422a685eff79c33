"""Scheduled job entrypoint that advances the analysis queue by one chunk."""

from __future__ import annotations

import logging
import os
import sys

from donorscope.services.factories import build_analysis_engine
from donorscope.settings import get_settings

LOGGER = logging.getLogger("donorscope.worker.jobs.analyze")
_BOOL_TRUE = {"1", "true", "yes", "on"}
_SUCCESS_STATUSES = {"idle", "busy", "in_progress", "complete", "partial"}


def _configure_logging() -> None:
    level_name = os.getenv("DONORSCOPE_RUNTIME__LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _BOOL_TRUE


def main() -> int:
    """Entry point executed by the scheduler on every tick."""

    _configure_logging()
    settings = get_settings()
    dry_run = _env_bool("DONORSCOPE_ANALYZE_JOB__DRY_RUN", False)

    try:
        engine = build_analysis_engine(settings=settings)
    except Exception:
        LOGGER.exception("Failed to initialise analysis engine")
        return 1

    try:
        if dry_run:
            head = engine.queue.head()
            LOGGER.info(
                "Dry run: would advance entity_id=%s (queue length %s)",
                head,
                engine.queue.length(),
            )
            return 0

        result = engine.process_next_chunk()
    except Exception:
        LOGGER.exception("Analysis chunk failed")
        return 1
    finally:
        engine.source.close()

    if result.status == "partial":
        LOGGER.error(
            "Partial chunk entity_id=%s pages=%s error=%s; will resume next run",
            result.entity_id,
            result.pages_fetched,
            result.error,
        )
    elif result.status == "failed":
        LOGGER.error("Chunk failed entity_id=%s error=%s", result.entity_id, result.error)
    else:
        LOGGER.info(
            "Chunk %s entity_id=%s pages=%s records=%s calls=%s",
            result.status,
            result.entity_id,
            result.pages_fetched,
            result.records_folded,
            result.source_calls,
        )
    return 0 if result.status in _SUCCESS_STATUSES else 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
