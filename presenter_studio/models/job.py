"""Job input/output models."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .placement import Rect
from .stage import StageResult


@dataclass
class Job:
    """One end-to-end request to produce a composed presenter image."""

    job_id: str
    subject_path: Path | str               # local file or http(s) URL
    object_path: Path | str | None = None  # optional for the placement_ref strategy
    title: str = ""
    topics: list[str] = field(default_factory=list)
    category: str = ""
    output_dir: Path = Path("output")

    def topic_line(self) -> str:
        """Free-form context used to seed prompts (title | topic / topic)."""
        topic_text = " / ".join(t for t in self.topics if t)
        raw = " | ".join(part for part in (self.title, topic_text) if part)
        return (raw or "the topic")[:220]


@dataclass
class JobResult:
    """Final artifact of a job."""

    job_id: str
    local_path: Path
    locator: str
    width: int
    height: int
    stages: list[StageResult] = field(default_factory=list)
    placement: Rect | None = None

    @property
    def method(self) -> str:
        """Which stage/fallback path produced the result. Observability only."""
        return "+".join(stage.label for stage in self.stages)

    def stage(self, name: str) -> StageResult | None:
        for result in self.stages:
            if result.stage == name:
                return result
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "local_path": str(self.local_path),
            "url": self.locator,
            "width": self.width,
            "height": self.height,
            "method": self.method,
            "placement": self.placement.to_dict() if self.placement else None,
            "stages": [
                {
                    "stage": s.stage,
                    "method": s.method,
                    "accepted": s.accepted,
                    "attempts": s.attempts,
                    "fallback": s.fallback,
                }
                for s in self.stages
            ],
        }
