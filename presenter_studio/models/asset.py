"""Hosted asset model."""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class AssetKind(Enum):
    INPUT = "input"            # user-provided file, uploaded unmodified
    CANDIDATE = "candidate"    # produced by one attempt
    DERIVED = "derived"        # intermediate (e.g. prepared overlay)
    FALLBACK = "fallback"      # produced by a fallback strategy
    REFERENCE = "reference"    # hosted outside the job, never deleted


class AssetStatus(Enum):
    PENDING = "pending"
    PROMOTED = "promoted"
    DISCARDED = "discarded"


@dataclass
class CandidateAsset:
    """A registered, externally hosted file."""
    storage_id: str              # key in the asset store
    locator: str                 # URL reviewers/renderers can fetch
    width: int
    height: int
    stage: str
    attempt: int
    kind: AssetKind = AssetKind.CANDIDATE
    local_path: Path | None = None
    status: AssetStatus = AssetStatus.PENDING

    @property
    def is_pending(self) -> bool:
        return self.status == AssetStatus.PENDING
