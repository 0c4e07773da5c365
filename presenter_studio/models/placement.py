"""Placement geometry models."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Canvas:
    """Pixel size of an image."""
    width: int
    height: int


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle in pixels (top-left origin)."""
    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def to_dict(self) -> dict[str, int]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class Tweak:
    """Accumulated placement correction carried across attempts.

    dx/dy are in reference-canvas pixels; scale multiplies the reference size.
    """
    dx: float = 0.0
    dy: float = 0.0
    scale: float = 1.0


@dataclass(frozen=True)
class Region:
    """Named rectangle expressed as fractions of the full image size."""
    name: str
    x: float
    y: float
    width: float
    height: float

    def to_box(self, width: int, height: int) -> tuple[int, int, int, int]:
        """Pixel box (left, top, right, bottom) clipped to the image."""
        left = max(0, min(width, round(self.x * width)))
        top = max(0, min(height, round(self.y * height)))
        right = max(left, min(width, round((self.x + self.width) * width)))
        bottom = max(top, min(height, round((self.y + self.height) * height)))
        return left, top, right, bottom
