"""Generation and composite request models."""

import hashlib
import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from .asset import CandidateAsset
from .placement import Canvas, Rect


@dataclass(frozen=True)
class ReferenceAsset:
    """Reference image handed to the generator under a prompt tag (e.g. "subject_ref")."""
    tag: str
    path: Path | None = None
    locator: str | None = None


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    references: list[ReferenceAsset] = field(default_factory=list)
    aspect_ratio: str = "16:9"
    seed: int | None = None


@dataclass(frozen=True)
class LayerEffect:
    """Visual effect applied to the overlay layer before placement."""
    name: str                     # "shadow" or "blur"
    strength: int = 0
    offset_x: int = 0
    offset_y: int = 0
    color: str = "black"


@dataclass(frozen=True)
class CompositeRequest:
    """Declarative description of one overlay-on-base render."""
    base: CandidateAsset
    overlay: CandidateAsset
    placement: Rect
    canvas: Canvas
    overlay_crop: Rect | None = None
    remove_background: bool = True
    effects: tuple[LayerEffect, ...] = ()
    output_format: str = "png"

    def overlay_key(self) -> str:
        """Identity of the prepared overlay (crop + background removal + effects)."""
        return _digest({
            "overlay": self.overlay.storage_id,
            "crop": self.overlay_crop.to_dict() if self.overlay_crop else None,
            "remove_background": self.remove_background,
            "effects": [asdict(e) for e in self.effects],
        })

    def cache_key(self) -> str:
        """Identity of the full render; the same request always maps to the same key."""
        return _digest({
            "base": self.base.storage_id,
            "overlay": self.overlay_key(),
            "placement": self.placement.to_dict(),
            "canvas": [self.canvas.width, self.canvas.height],
            "format": self.output_format,
        })


def _digest(payload: dict[str, Any]) -> str:
    raw = json.dumps(payload, sort_keys=True).encode("utf-8")
    return hashlib.sha1(raw).hexdigest()[:16]
