"""Stage orchestration engine."""

from .machine import Event, advance
from .orchestrator import StageOrchestrator
from .pipeline import Pipeline, build_pipeline
from .stages import CompositeDriver, ObjectDriver, StageDriver, WardrobeDriver
from .watchdog import Deadline, Watchdog

__all__ = [
    "CompositeDriver",
    "Deadline",
    "Event",
    "ObjectDriver",
    "Pipeline",
    "StageDriver",
    "StageOrchestrator",
    "Watchdog",
    "WardrobeDriver",
    "advance",
    "build_pipeline",
]
