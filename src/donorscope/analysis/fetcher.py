"""Budgeted cursor loop over the paginated transaction source."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from donorscope.analysis.aggregator import fold_page
from donorscope.analysis.models import Checkpoint, Cursor, Page
from donorscope.sources.fec import TransientSourceError

LOGGER = logging.getLogger(__name__)


class TransactionSource(Protocol):
    def fetch_contributions(
        self, source_id: str, cycle: int, *, page_size: int, cursor: Optional[Cursor] = None
    ) -> Page: ...


@dataclass(slots=True)
class FetchOutcome:
    """What one fetch loop achieved.

    ``completed`` is True only when the source returned an empty page. Running out
    of page or time budget leaves it False.
    """

    checkpoint: Checkpoint
    pages: int = 0
    records_folded: int = 0
    completed: bool = False
    error: Optional[str] = None
    stop_reason: str = "page_budget"


class PaginatedFetcher:
    """Fetch up to ``page_budget`` pages, folding and saving after every page."""

    def __init__(
        self,
        *,
        source: TransactionSource,
        save: Callable[[Checkpoint], None],
        page_budget: int,
        page_size: int,
        time_budget_seconds: float,
        page_delay_seconds: float = 0.0,
        on_page: Callable[[Checkpoint, Page], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._source = source
        self._save = save
        self._page_budget = page_budget
        self._page_size = page_size
        self._time_budget = time_budget_seconds
        self._page_delay = page_delay_seconds
        self._on_page = on_page
        self._clock = clock
        self._sleep = sleep

    def run(self, checkpoint: Checkpoint) -> FetchOutcome:
        outcome = FetchOutcome(checkpoint=checkpoint)
        started = self._clock()
        while outcome.pages < self._page_budget:
            if outcome.pages:
                if self._clock() - started >= self._time_budget:
                    outcome.stop_reason = "time_budget"
                    LOGGER.info("Stopping entity_id=%s: time budget reached", checkpoint.entity_id)
                    break
                if self._page_delay:
                    self._sleep(self._page_delay)

            current = outcome.checkpoint
            try:
                page = self._source.fetch_contributions(
                    current.source_id,
                    current.cycle,
                    page_size=self._page_size,
                    cursor=current.cursor,
                )
            except TransientSourceError as exc:
                outcome.error = str(exc)
                outcome.stop_reason = "transient_error"
                LOGGER.warning(
                    "Transient source failure entity_id=%s after %s pages: %s",
                    current.entity_id,
                    outcome.pages,
                    exc,
                )
                break
            outcome.pages += 1

            if not page.records:
                outcome.completed = True
                outcome.stop_reason = "exhausted"
                LOGGER.info("Source exhausted entity_id=%s (empty page)", current.entity_id)
                break

            updated, folded = fold_page(current, page)
            self._save(updated)
            outcome.checkpoint = updated
            outcome.records_folded += folded
            LOGGER.info(
                "Page %s entity_id=%s records=%s folded=%s",
                outcome.pages,
                current.entity_id,
                len(page.records),
                folded,
            )
            if self._on_page is not None:
                self._on_page(updated, page)
        return outcome


__all__ = ["FetchOutcome", "PaginatedFetcher", "TransactionSource"]
