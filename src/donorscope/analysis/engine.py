"""Control flow for one budgeted analysis invocation plus queue administration."""

from __future__ import annotations

import logging
import math
import time
from datetime import date
from typing import Callable, Optional

from donorscope.analysis.fetcher import PaginatedFetcher
from donorscope.analysis.metrics import compute_metrics
from donorscope.analysis.models import (
    AnalysisResult,
    Checkpoint,
    ChunkResult,
    EntityStatus,
    Page,
    QueueInitResult,
    QueueStatus,
)
from donorscope.analysis.reconciler import reconcile
from donorscope.analysis.resolver import EntityResolutionError, EntityResolver, reporting_cycle
from donorscope.analysis.resume import ResumeController, upgrade_checkpoint
from donorscope.observability import Observability
from donorscope.settings import Settings
from donorscope.sources.fec import FecClient, SourceError, TransientSourceError
from donorscope.store.checkpoint_store import CheckpointStore
from donorscope.store.detail_store import DetailStore
from donorscope.store.member_directory import MemberDirectory
from donorscope.store.queue_store import QueueStore
from donorscope.store.result_store import ResultStore

LOGGER = logging.getLogger(__name__)

# Rough invocation count per entity when nothing is known about its size yet.
DEFAULT_INVOCATIONS_PER_ENTITY = 60


class UnknownEntityError(RuntimeError):
    """Raised when an administrative request names an entity that is not in the roster."""


class QueueBusyError(RuntimeError):
    """Raised when an administrative request would disturb an entity another invocation is processing."""


class AnalysisEngine:
    """Advance at most one queued entity per call to :meth:`process_next_chunk`."""

    def __init__(
        self,
        *,
        settings: Settings,
        queue: QueueStore,
        checkpoints: CheckpointStore,
        results: ResultStore,
        members: MemberDirectory,
        source: FecClient,
        observability: Observability,
        detail_store: DetailStore | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.settings = settings
        self.queue = queue
        self.checkpoints = checkpoints
        self.results = results
        self.members = members
        self.source = source
        self.observability = observability
        self.detail_store = detail_store
        self._clock = clock
        self._sleep = sleep
        self._today = today
        self._resume = ResumeController(
            checkpoints=checkpoints,
            resolver=EntityResolver(members=members, search=source),
        )

    def current_cycle(self) -> int:
        return reporting_cycle(self._today(), override=self.settings.engine.cycle)

    # ------------------------------------------------------------------
    # Chunk processing
    # ------------------------------------------------------------------

    def process_next_chunk(self) -> ChunkResult:
        """Lease the queue head and advance it by up to one page budget."""

        lease = self.queue.acquire_head(lease_seconds=self.settings.engine.lease_seconds)
        if lease is None:
            head = self.queue.head()
            if head is None:
                LOGGER.info("Processing queue is empty; nothing to do")
                return ChunkResult(status="idle")
            return ChunkResult(status="busy", entity_id=head)

        started = self._clock()
        calls_before = self.source.calls
        try:
            result = self._advance(lease.entity_id)
        finally:
            self.queue.release(lease)
        result.source_calls = self.source.calls - calls_before
        elapsed_ms = (self._clock() - started) * 1000
        self.observability.record_timing("analysis.chunk_ms", elapsed_ms, tags={"status": result.status})
        return result

    def _advance(self, entity_id: str) -> ChunkResult:
        checkpoint = self._resume.load(entity_id)
        if checkpoint is None:
            cycle = self.current_cycle()
            if self.results.exists(entity_id, cycle):
                self.queue.remove(entity_id)
                LOGGER.info("entity_id=%s already has a final record for cycle %s", entity_id, cycle)
                return ChunkResult(status="complete", entity_id=entity_id, cycle=cycle)
            try:
                checkpoint = self._resume.bootstrap(entity_id, cycle)
            except EntityResolutionError as exc:
                self.observability.emit_event(
                    "entity_resolution_failed", level=logging.ERROR, entity_id=entity_id, cycle=cycle, error=str(exc)
                )
                return ChunkResult(status="failed", entity_id=entity_id, cycle=cycle, error=str(exc))
            except TransientSourceError as exc:
                self._record_transient(entity_id, cycle, 0, exc)
                return ChunkResult(status="partial", entity_id=entity_id, cycle=cycle, error=str(exc))
            except SourceError as exc:
                self.observability.emit_event(
                    "entity_resolution_failed", level=logging.ERROR, entity_id=entity_id, cycle=cycle, error=str(exc)
                )
                return ChunkResult(status="failed", entity_id=entity_id, cycle=cycle, error=str(exc))

        self.observability.emit_event(
            "chunk_started",
            entity_id=entity_id,
            source_id=checkpoint.source_id,
            cycle=checkpoint.cycle,
            transaction_count=checkpoint.transaction_count,
            runs_completed=checkpoint.runs_completed,
        )
        engine_settings = self.settings.engine
        fetcher = PaginatedFetcher(
            source=self.source,
            save=self.checkpoints.put,
            page_budget=engine_settings.page_budget,
            page_size=engine_settings.page_size,
            time_budget_seconds=engine_settings.time_budget_seconds,
            page_delay_seconds=engine_settings.page_delay_seconds,
            on_page=self._on_page,
            clock=self._clock,
            sleep=self._sleep,
        )
        outcome = fetcher.run(checkpoint)
        self.observability.increment("analysis.pages_fetched", value=outcome.pages)
        self.observability.increment("analysis.records_folded", value=outcome.records_folded)

        progressed = outcome.checkpoint.model_copy(update={"runs_completed": outcome.checkpoint.runs_completed + 1})
        if outcome.completed:
            final = self._finalize(progressed)
            return ChunkResult(
                status="complete",
                entity_id=entity_id,
                cycle=progressed.cycle,
                pages_fetched=outcome.pages,
                records_folded=outcome.records_folded,
                result=final,
            )

        self.checkpoints.put(progressed)
        if outcome.error:
            self._record_transient(entity_id, progressed.cycle, outcome.pages, outcome.error)
            status = "partial"
        else:
            status = "in_progress"
        LOGGER.info(
            "entity_id=%s %s: transactions=%s donors=%s runs=%s",
            entity_id,
            status,
            progressed.transaction_count,
            len(progressed.donor_totals),
            progressed.runs_completed,
        )
        return ChunkResult(
            status=status,
            entity_id=entity_id,
            cycle=progressed.cycle,
            pages_fetched=outcome.pages,
            records_folded=outcome.records_folded,
            error=outcome.error,
        )

    def _on_page(self, checkpoint: Checkpoint, page: Page) -> None:
        self.observability.emit_event(
            "page_folded",
            level=logging.DEBUG,
            entity_id=checkpoint.entity_id,
            records=len(page.records),
            transaction_count=checkpoint.transaction_count,
        )
        if self._detail_enabled:
            self.detail_store.write_transactions(
                entity_id=checkpoint.entity_id,
                source_id=checkpoint.source_id,
                cycle=checkpoint.cycle,
                records=page.records,
            )

    @property
    def _detail_enabled(self) -> bool:
        return self.detail_store is not None and self.settings.storage.detail_store_enabled

    def _record_transient(self, entity_id: str, cycle: int, pages: int, error: object) -> None:
        self.observability.increment("analysis.transient_failures")
        self.observability.emit_event(
            "chunk_partial_failure",
            level=logging.ERROR,
            entity_id=entity_id,
            cycle=cycle,
            pages=pages,
            error=str(error),
        )

    def _finalize(self, checkpoint: Checkpoint) -> AnalysisResult:
        """Compute metrics, reconcile, write the final record and retire the entity."""

        metrics = compute_metrics(checkpoint)
        reconciliation = reconcile(
            self.source,
            source_id=checkpoint.source_id,
            cycle=checkpoint.cycle,
            computed_total=checkpoint.total_amount,
            tolerance_percent=self.settings.reconciliation.tolerance_percent,
        )
        if reconciliation.flagged:
            self.observability.emit_event(
                "reconciliation_flagged",
                level=logging.WARNING,
                entity_id=checkpoint.entity_id,
                computed_total=reconciliation.computed_total,
                authoritative_total=reconciliation.authoritative_total,
                percent_difference=reconciliation.percent_difference,
            )

        reported = checkpoint.source_reported_count
        count_mismatch = reported is not None and reported != checkpoint.transaction_count
        if count_mismatch:
            self.observability.emit_event(
                "count_mismatch",
                level=logging.WARNING,
                entity_id=checkpoint.entity_id,
                reported=reported,
                collected=checkpoint.transaction_count,
            )

        result = AnalysisResult(
            entity_id=checkpoint.entity_id,
            source_id=checkpoint.source_id,
            cycle=checkpoint.cycle,
            metrics=metrics,
            reconciliation=reconciliation,
            source_reported_count=reported,
            count_mismatch=count_mismatch,
            runs_completed=checkpoint.runs_completed,
            pages_fetched=checkpoint.pages_fetched,
        )
        self.results.finalize(result)

        if self._detail_enabled:
            self.detail_store.write_donor_aggregates(
                entity_id=checkpoint.entity_id, cycle=checkpoint.cycle, donor_totals=checkpoint.donor_totals
            )
            self.detail_store.write_collection_metadata(
                entity_id=checkpoint.entity_id,
                source_id=checkpoint.source_id,
                cycle=checkpoint.cycle,
                status="complete",
                transaction_count=metrics.transaction_count,
                donor_count=metrics.unique_donors,
                total_amount=metrics.total_amount,
                reconciliation=reconciliation,
            )

        self.queue.remove(checkpoint.entity_id)
        self.results.prune(checkpoint.entity_id, keep=self.settings.storage.retain_cycles)
        self.observability.increment("analysis.entities_completed")
        self.observability.emit_event(
            "entity_completed",
            entity_id=checkpoint.entity_id,
            cycle=checkpoint.cycle,
            transaction_count=metrics.transaction_count,
            unique_donors=metrics.unique_donors,
            total_amount=metrics.total_amount,
            nakamoto_coefficient=metrics.nakamoto_coefficient,
            reconciliation=reconciliation.status,
        )
        return result

    # ------------------------------------------------------------------
    # Introspection and administration
    # ------------------------------------------------------------------

    def entity_status(self, entity_id: str) -> Optional[EntityStatus]:
        """Return the entity's phase, or ``None`` when nothing is known about it."""

        cycle = self.current_cycle()
        queued = entity_id in self.queue.list_ids()
        result = self.results.get(entity_id, cycle)
        if result is not None:
            return EntityStatus(
                entity_id=entity_id,
                cycle=cycle,
                phase="complete",
                queued=queued,
                transaction_count=result.metrics.transaction_count,
                unique_donors=result.metrics.unique_donors,
                total_amount=result.metrics.total_amount,
                runs_completed=result.runs_completed,
                source_reported_count=result.source_reported_count,
                metrics=result.metrics,
                reconciliation=result.reconciliation,
                completed_at=result.completed_at,
            )
        payload = self.checkpoints.latest(entity_id)
        if payload is not None:
            checkpoint = upgrade_checkpoint(payload)
            return EntityStatus(
                entity_id=entity_id,
                cycle=checkpoint.cycle,
                phase="in_progress",
                queued=queued,
                transaction_count=checkpoint.transaction_count,
                unique_donors=len(checkpoint.donor_totals),
                total_amount=checkpoint.total_amount,
                runs_completed=checkpoint.runs_completed,
                source_reported_count=checkpoint.source_reported_count,
            )
        if queued or self.members.get(entity_id) is not None:
            return EntityStatus(entity_id=entity_id, cycle=cycle, phase="not_started", queued=queued)
        return None

    def status(self) -> QueueStatus:
        cycle = self.current_cycle()
        queue_ids = self.queue.list_ids()
        completed = len(self.results.completed_ids(cycle))
        total = completed + len(queue_ids)
        current = self.entity_status(queue_ids[0]) if queue_ids else None
        return QueueStatus(
            cycle=cycle,
            queue_length=len(queue_ids),
            next_entity=queue_ids[0] if queue_ids else None,
            current=current,
            completed=completed,
            remaining=len(queue_ids),
            total=total,
            percent_complete=round(completed / total * 100, 1) if total else 0.0,
            estimated_invocations=self._estimate_invocations(queue_ids, current),
        )

    def _estimate_invocations(self, queue_ids: list[str], current: Optional[EntityStatus]) -> int:
        if not queue_ids:
            return 0
        estimate = (len(queue_ids) - 1) * DEFAULT_INVOCATIONS_PER_ENTITY
        if current is not None and current.source_reported_count:
            per_invocation = self.settings.engine.page_size * self.settings.engine.page_budget
            outstanding = max(current.source_reported_count - current.transaction_count, 0)
            return estimate + math.ceil(outstanding / per_invocation) + 1
        return estimate + DEFAULT_INVOCATIONS_PER_ENTITY

    def initialize_queue(self) -> QueueInitResult:
        """Rebuild the queue from the roster, skipping entities already final for this cycle."""

        if self.queue.is_leased():
            raise QueueBusyError("Queue head is being processed; retry after the current chunk")
        cycle = self.current_cycle()
        members = self.members.list_members()
        done = self.results.completed_ids(cycle)
        pending = [member.entity_id for member in members if member.entity_id not in done]
        queued = self.queue.replace(pending)
        LOGGER.info("Initialized queue cycle=%s queued=%s already_complete=%s", cycle, queued, len(done))
        return QueueInitResult(
            cycle=cycle,
            queued=queued,
            already_complete=len(members) - len(pending),
            total_members=len(members),
        )

    def reprocess(self, entity_id: str) -> EntityStatus:
        """Drop the entity's final record and checkpoint, then queue it at the tail."""

        if self.members.get(entity_id) is None:
            raise UnknownEntityError(f"Unknown entity: {entity_id}")
        if self.queue.is_leased(entity_id):
            raise QueueBusyError(f"Entity {entity_id} is being processed; retry after the current chunk")
        cycle = self.current_cycle()
        removed_results = self.results.delete(entity_id, cycle)
        removed_checkpoints = self.checkpoints.delete(entity_id)
        if self.detail_store is not None:
            self.detail_store.delete_entity(entity_id, cycle)
        self.queue.enqueue(entity_id)
        LOGGER.info(
            "Reprocess requested entity_id=%s cycle=%s results_removed=%s checkpoints_removed=%s",
            entity_id,
            cycle,
            removed_results,
            removed_checkpoints,
        )
        return EntityStatus(entity_id=entity_id, cycle=cycle, phase="not_started", queued=True)


__all__ = ["AnalysisEngine", "DEFAULT_INVOCATIONS_PER_ENTITY", "QueueBusyError", "UnknownEntityError"]
