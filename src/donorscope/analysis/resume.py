"""Checkpoint bootstrap and resume, including upgrades of older checkpoint shapes."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from donorscope.analysis.models import CHECKPOINT_SCHEMA_VERSION, Checkpoint
from donorscope.analysis.resolver import EntityResolver
from donorscope.store.checkpoint_store import CheckpointStore

LOGGER = logging.getLogger(__name__)

# Field names written by the first generation of progress records.
_LEGACY_FIELDS = {
    "bioguideId": "entity_id",
    "committeeId": "source_id",
    "totalTransactions": "transaction_count",
    "totalAmount": "total_amount",
    "donorTotals": "donor_totals",
    "allAmounts": "amounts",
    "fecTotalCount": "source_reported_count",
    "runsCompleted": "runs_completed",
    "startedAt": "started_at",
    "lastUpdated": "updated_at",
}


def upgrade_checkpoint(payload: Mapping[str, Any]) -> Checkpoint:
    """Return a current-schema :class:`Checkpoint` from any stored payload.

    Missing or null fields are back-filled with empty defaults; nothing is rejected
    for being old.
    """

    data: Dict[str, Any] = {}
    for key, value in payload.items():
        data[_LEGACY_FIELDS.get(key, key)] = value

    if "cursor" not in data and data.get("lastIndex"):
        data["cursor"] = {
            "last_index": str(data["lastIndex"]),
            "last_date": data.get("lastContributionReceiptDate"),
        }
    for key in ("lastIndex", "lastContributionReceiptDate"):
        data.pop(key, None)

    for key in ("transaction_count", "total_amount", "donor_totals", "amounts", "runs_completed", "pages_fetched"):
        if data.get(key) is None:
            data.pop(key, None)
    for key in ("started_at", "updated_at"):
        if not data.get(key):
            data.pop(key, None)

    version = data.get("schema_version") or 1
    data["schema_version"] = CHECKPOINT_SCHEMA_VERSION
    checkpoint = Checkpoint.model_validate(data)
    if version < CHECKPOINT_SCHEMA_VERSION:
        LOGGER.info(
            "Upgraded checkpoint entity_id=%s from schema v%s to v%s",
            checkpoint.entity_id,
            version,
            CHECKPOINT_SCHEMA_VERSION,
        )
    return checkpoint


class ResumeController:
    """Load an entity's checkpoint, or resolve the entity and start a fresh one."""

    def __init__(self, *, checkpoints: CheckpointStore, resolver: EntityResolver) -> None:
        self._checkpoints = checkpoints
        self._resolver = resolver

    def load(self, entity_id: str) -> Optional[Checkpoint]:
        payload = self._checkpoints.latest(entity_id)
        if payload is None:
            return None
        checkpoint = upgrade_checkpoint(payload)
        LOGGER.info(
            "Resuming entity_id=%s cycle=%s transactions=%s donors=%s",
            checkpoint.entity_id,
            checkpoint.cycle,
            checkpoint.transaction_count,
            len(checkpoint.donor_totals),
        )
        return checkpoint

    def bootstrap(self, entity_id: str, cycle: int) -> Checkpoint:
        """Resolve ``entity_id`` and return an empty checkpoint (not yet persisted).

        Raises :class:`~donorscope.analysis.resolver.EntityResolutionError` when no
        source id can be found.
        """

        source_id = self._resolver.resolve(entity_id, cycle)
        return Checkpoint(entity_id=entity_id, source_id=source_id, cycle=cycle)


__all__ = ["ResumeController", "upgrade_checkpoint"]
