from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .types import Platform, ReconcileStrategy


class SyncStatus(str, Enum):
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    ABORTED = "aborted"


class SyncFailure(BaseModel):
    """A single record that could not be synced."""

    identifier: str = Field(..., description="Remote identifier of the record")
    reason: str = Field(..., description="Why the record was skipped")


class SyncResult(BaseModel):
    """Result of a sync operation."""

    object_type: str
    platform: Platform
    strategy: Optional[ReconcileStrategy] = None
    status: SyncStatus
    succeeded_count: int = 0
    failures: List[SyncFailure] = Field(default_factory=list)
    deactivated_count: int = 0
    duration_seconds: float = 0.0
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status != SyncStatus.ABORTED


class MergeOutcome(BaseModel):
    """Row counts produced by one store write."""

    inserted: int = 0
    updated: int = 0
    deactivated: int = 0
    deleted: int = 0

    @property
    def written(self) -> int:
        return self.inserted + self.updated
