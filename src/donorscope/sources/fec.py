"""HTTP client for the OpenFEC transaction, totals and candidate search endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from donorscope.analysis.models import Cursor, Page, TransactionRecord
from donorscope.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)


class SourceError(RuntimeError):
    """Raised when the source rejects a request or returns an unusable payload."""


class TransientSourceError(SourceError):
    """Raised for network failures, timeouts, rate limiting and server errors."""


class FecClient:
    """Thin wrapper over the OpenFEC REST API.

    ``calls`` counts outbound requests so callers can report per-invocation usage.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        user_agent: str = "DonorScope/1.0",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"User-Agent": user_agent, "Accept": "application/json"},
            transport=transport,
        )
        self.calls = 0

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **kwargs: Any) -> "FecClient":
        resolved = settings or get_settings()
        return cls(
            base_url=resolved.source.base_url,
            api_key=resolved.source.api_key,
            timeout=resolved.source.timeout_seconds,
            user_agent=resolved.source.user_agent,
            **kwargs,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "FecClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        query = {key: value for key, value in params.items() if value is not None}
        self.calls += 1
        LOGGER.debug("GET %s params=%s", path, query)
        try:
            response = self._client.get(path, params={**query, "api_key": self._api_key})
        except httpx.TimeoutException as exc:
            raise TransientSourceError(f"Timeout calling {path}") from exc
        except httpx.TransportError as exc:
            raise TransientSourceError(f"Network error calling {path}: {exc.__class__.__name__}") from exc

        status = response.status_code
        if status == 429 or status >= 500:
            raise TransientSourceError(f"{path} returned HTTP {status}")
        if status >= 400:
            raise SourceError(f"{path} returned HTTP {status}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise SourceError(f"{path} returned a non-JSON body") from exc
        if not isinstance(payload, dict):
            raise SourceError(f"{path} returned an unexpected payload type")
        return payload

    def fetch_contributions(
        self,
        source_id: str,
        cycle: int,
        *,
        page_size: int,
        cursor: Optional[Cursor] = None,
    ) -> Page:
        """Fetch one page of individual itemized receipts for committee ``source_id``."""

        params: Dict[str, Any] = {
            "committee_id": source_id,
            "contributor_type": "individual",
            "two_year_transaction_period": cycle,
            "per_page": page_size,
        }
        if cursor is not None:
            params["last_index"] = cursor.last_index
            params["last_contribution_receipt_date"] = cursor.last_date
        payload = self._get("/schedules/schedule_a/", params)

        results = payload.get("results") or []
        if not isinstance(results, list):
            raise SourceError("schedule_a results is not a list")
        pagination = payload.get("pagination") or {}
        last_indexes = pagination.get("last_indexes") or {}
        next_cursor = None
        if last_indexes.get("last_index") is not None:
            next_cursor = Cursor(
                last_index=str(last_indexes["last_index"]),
                last_date=last_indexes.get("last_contribution_receipt_date"),
            )
        reported = pagination.get("count")
        return Page(
            records=[TransactionRecord.model_validate(row) for row in results if isinstance(row, dict)],
            cursor=next_cursor,
            reported_count=int(reported) if isinstance(reported, (int, float)) else None,
        )

    def fetch_itemized_total(self, source_id: str, cycle: int) -> Optional[float]:
        """Return the authoritative itemized individual total, or ``None`` when unreported."""

        payload = self._get(f"/committee/{source_id}/totals/", {"cycle": cycle})
        results = payload.get("results") or []
        if not results:
            return None
        value = results[0].get("individual_itemized_contributions")
        try:
            return float(value) if value is not None else None
        except (TypeError, ValueError) as exc:
            raise SourceError("individual_itemized_contributions is not numeric") from exc

    def search_candidates(self, *, name: str, office: str, state: str) -> List[Dict[str, Any]]:
        payload = self._get("/candidates/search/", {"name": name, "office": office, "state": state})
        results = payload.get("results") or []
        return [row for row in results if isinstance(row, dict)]


__all__ = ["FecClient", "SourceError", "TransientSourceError"]
