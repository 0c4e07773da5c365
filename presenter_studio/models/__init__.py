"""Data models."""

from .asset import AssetKind, AssetStatus, CandidateAsset
from .generation import CompositeRequest, GenerationRequest, LayerEffect, ReferenceAsset
from .job import Job, JobResult
from .placement import Canvas, Rect, Region, Tweak
from .review import Correction, ReviewRequest, ReviewVerdict
from .stage import Attempt, StageResult, StageRun, StageSpec, StageStatus

__all__ = [
    "AssetKind",
    "AssetStatus",
    "Attempt",
    "CandidateAsset",
    "Canvas",
    "CompositeRequest",
    "Correction",
    "GenerationRequest",
    "Job",
    "JobResult",
    "LayerEffect",
    "Rect",
    "ReferenceAsset",
    "Region",
    "ReviewRequest",
    "ReviewVerdict",
    "StageResult",
    "StageRun",
    "StageSpec",
    "StageStatus",
    "Tweak",
]
