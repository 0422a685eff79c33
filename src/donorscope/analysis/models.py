"""Pydantic models shared by the analysis engine, stores and API."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

CHECKPOINT_SCHEMA_VERSION = 2

ChunkStatus = Literal["idle", "busy", "in_progress", "complete", "partial", "failed"]
ReconciliationStatus = Literal["within_tolerance", "flagged", "no_reference", "unavailable"]
CaptureRisk = Literal["high", "moderate", "low"]
EntityPhase = Literal["not_started", "in_progress", "complete"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransactionRecord(BaseModel):
    """One itemized contribution as delivered by the transaction source.

    Source rows have a loose shape; every optional field is defaulted here so the
    aggregator never sees a missing key.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    first_name: str = Field(default="", validation_alias=AliasChoices("contributor_first_name", "first_name"))
    last_name: str = Field(default="", validation_alias=AliasChoices("contributor_last_name", "last_name"))
    state: str = Field(default="", validation_alias=AliasChoices("contributor_state", "state"))
    zip_code: str = Field(default="", validation_alias=AliasChoices("contributor_zip", "zip_code"))
    employer: Optional[str] = Field(default=None, validation_alias=AliasChoices("contributor_employer", "employer"))
    occupation: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("contributor_occupation", "occupation")
    )
    amount: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("contribution_receipt_amount", "amount")
    )
    receipt_date: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("contribution_receipt_date", "receipt_date")
    )
    memoed_subtotal: bool = False

    @field_validator("first_name", "last_name", "state", "zip_code", mode="before")
    @classmethod
    def _blank_if_missing(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value)

    @field_validator("employer", "occupation", "receipt_date", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        if value is None or isinstance(value, (dict, list)):
            return None
        return str(value)

    @field_validator("amount", mode="before")
    @classmethod
    def _parse_amount(cls, value: Any) -> Optional[float]:
        if value is None or value == "":
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    @field_validator("memoed_subtotal", mode="before")
    @classmethod
    def _parse_flag(cls, value: Any) -> bool:
        return value is True or (isinstance(value, str) and value.strip().lower() == "true")


class Cursor(BaseModel):
    """Opaque continuation token returned by the transaction source."""

    last_index: str
    last_date: Optional[str] = None


class Page(BaseModel):
    """One page of source records plus its pagination metadata."""

    records: list[TransactionRecord] = Field(default_factory=list)
    cursor: Optional[Cursor] = None
    reported_count: Optional[int] = None


class Checkpoint(BaseModel):
    """Durable partial progress for one entity and cycle.

    Holds aggregates and the resume cursor only, never raw records.
    """

    model_config = ConfigDict(extra="ignore")

    schema_version: int = CHECKPOINT_SCHEMA_VERSION
    entity_id: str
    source_id: str
    cycle: int
    transaction_count: int = 0
    total_amount: float = 0.0
    donor_totals: dict[str, float] = Field(default_factory=dict)
    amounts: list[float] = Field(default_factory=list)
    cursor: Optional[Cursor] = None
    source_reported_count: Optional[int] = None
    pages_fetched: int = 0
    runs_completed: int = 0
    started_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class TopDonor(BaseModel):
    name: str
    state: str
    zip_code: str
    amount: float


class Reconciliation(BaseModel):
    """Comparison of the computed total against the authoritative total."""

    status: ReconciliationStatus
    computed_total: float
    authoritative_total: Optional[float] = None
    difference: Optional[float] = None
    percent_difference: Optional[float] = None
    tolerance_percent: float
    flagged: bool = False
    error: Optional[str] = None


class ConcentrationMetrics(BaseModel):
    unique_donors: int
    transaction_count: int
    total_amount: float
    mean_amount: float
    median_amount: float
    min_amount: float
    max_amount: float
    top10_concentration: float
    whale_weight: float
    nakamoto_coefficient: int
    capture_risk: CaptureRisk
    top_donors: list[TopDonor] = Field(default_factory=list)


class AnalysisResult(BaseModel):
    """Compact, immutable final record for one entity and cycle."""

    entity_id: str
    source_id: str
    cycle: int
    metrics: ConcentrationMetrics
    reconciliation: Reconciliation
    source_reported_count: Optional[int] = None
    count_mismatch: bool = False
    runs_completed: int = 0
    pages_fetched: int = 0
    completed_at: datetime = Field(default_factory=_utcnow)


class ChunkResult(BaseModel):
    """Outcome of one "process next chunk" invocation."""

    status: ChunkStatus
    entity_id: Optional[str] = None
    cycle: Optional[int] = None
    pages_fetched: int = 0
    records_folded: int = 0
    source_calls: int = 0
    error: Optional[str] = None
    result: Optional[AnalysisResult] = None

    @property
    def completed(self) -> bool:
        return self.status == "complete"


class EntityStatus(BaseModel):
    """Per-entity phase without internal checkpoint structures."""

    entity_id: str
    cycle: int
    phase: EntityPhase
    queued: bool = False
    transaction_count: int = 0
    unique_donors: int = 0
    total_amount: float = 0.0
    runs_completed: int = 0
    source_reported_count: Optional[int] = None
    metrics: Optional[ConcentrationMetrics] = None
    reconciliation: Optional[Reconciliation] = None
    completed_at: Optional[datetime] = None


class QueueStatus(BaseModel):
    cycle: int
    queue_length: int
    next_entity: Optional[str] = None
    current: Optional[EntityStatus] = None
    completed: int
    remaining: int
    total: int
    percent_complete: float
    estimated_invocations: int


class QueueInitResult(BaseModel):
    cycle: int
    queued: int
    already_complete: int
    total_members: int


__all__ = [
    "AnalysisResult",
    "CHECKPOINT_SCHEMA_VERSION",
    "CaptureRisk",
    "Checkpoint",
    "ChunkResult",
    "ChunkStatus",
    "ConcentrationMetrics",
    "Cursor",
    "EntityPhase",
    "EntityStatus",
    "Page",
    "QueueInitResult",
    "QueueStatus",
    "Reconciliation",
    "ReconciliationStatus",
    "TopDonor",
    "TransactionRecord",
]
