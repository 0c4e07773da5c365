"""Stage, attempt and stage result models."""

from dataclasses import dataclass, field
from enum import Enum

from .asset import CandidateAsset
from .placement import Rect, Tweak
from .review import ReviewVerdict


class StageStatus(Enum):
    PENDING = "pending"
    GENERATING = "generating"
    REVIEWING = "reviewing"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXHAUSTED = "exhausted"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class StageSpec:
    """Identity and budget of a pipeline stage."""
    name: str                          # "wardrobe", "object", "composite"
    max_attempts: int
    terminal: bool = False             # failure here fails the job
    best_effort: bool = False          # keep last rejected candidate instead of falling back


@dataclass
class Attempt:
    """One generate -> register -> review cycle."""
    index: int
    seed: int
    candidate: CandidateAsset | None = None
    verdict: ReviewVerdict | None = None
    error: str | None = None
    similarity: float | None = None
    placement: Rect | None = None


@dataclass
class StageRun:
    """Mutable per-stage state. Only the orchestrator mutates it."""
    spec: StageSpec
    prompt: str = ""
    tweak: Tweak = field(default_factory=Tweak)
    status: StageStatus = StageStatus.PENDING
    attempt_index: int = 0
    attempts: list[Attempt] = field(default_factory=list)
    candidates: list[CandidateAsset] = field(default_factory=list)

    @property
    def last_attempt(self) -> Attempt | None:
        return self.attempts[-1] if self.attempts else None


@dataclass
class StageResult:
    """What a stage hands to the next one."""
    stage: str
    asset: CandidateAsset | None
    method: str                  # "generated", "best_effort", "fallback", "skipped", "failed"
    accepted: bool
    attempts: int = 0
    fallback: str | None = None  # strategy name when method == "fallback"
    placement: Rect | None = None

    @property
    def label(self) -> str:
        if self.method == "fallback":
            return f"{self.stage}:fallback({self.fallback})"
        if self.method in ("generated", "best_effort"):
            return f"{self.stage}:{self.method}@{self.attempts}"
        return f"{self.stage}:{self.method}"
