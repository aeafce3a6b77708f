"""Core records shared by the batch scoring pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class JobStatus(str, Enum):
    SUBMITTED = "submitted"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.SUBMITTED


@dataclass(slots=True)
class Target:
    """A business that can be scored. Immutable once stored."""

    target_id: str
    name: str
    address: str
    city: Optional[str] = None
    postal_code: Optional[str] = None


@dataclass(slots=True)
class BatchJob:
    batch_id: str
    status: JobStatus = JobStatus.SUBMITTED
    target_ids: List[str] = field(default_factory=list)
    target_count: int = 0
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    output_file_id: Optional[str] = None
    success_count: int = 0
    error_count: int = 0
    total_tokens: int = 0
    cost_estimate: float = 0.0


@dataclass(slots=True)
class ScoreRecord:
    """Validated score fields for one target, using stored column names."""

    target_id: str
    decoration: int
    coffee: int
    study_suitable: int
    parking: str
    evidence: List[str] = field(default_factory=list)
    sources: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Provenance:
    model: str
    batch_id: str


@dataclass(frozen=True)
class BatchMetadata:
    """Aggregates written when a completed batch is finalized."""

    output_file_id: Optional[str]
    success_count: int
    error_count: int
    total_tokens: int
    cost_estimate: float
