"""Placement geometry: reference placement -> absolute, in-canvas rectangle."""

from ..config import PlacementLimits
from ..models.placement import Canvas, Rect, Tweak
from ..models.review import Correction
from ..utils import clamp, clamp_int


def scale_factor(reference_canvas: Canvas, target_canvas: Canvas) -> float:
    """Uniform scale that preserves the reference aspect instead of stretching per axis."""
    if reference_canvas.width <= 0 or reference_canvas.height <= 0:
        raise ValueError(f"Invalid reference canvas: {reference_canvas}")
    return min(
        target_canvas.width / reference_canvas.width,
        target_canvas.height / reference_canvas.height,
    )


def resolve(
    reference: Rect,
    reference_canvas: Canvas,
    target_canvas: Canvas,
    tweak: Tweak = Tweak(),
    min_edge: int = 16,
) -> Rect:
    """Absolute placement on the target canvas, always fully inside it.

    If the canvas is smaller than min_edge on an axis, containment wins over the floor.
    """
    if target_canvas.width <= 0 or target_canvas.height <= 0:
        raise ValueError(f"Invalid target canvas: {target_canvas}")

    sf = scale_factor(reference_canvas, target_canvas)

    width = clamp_int(reference.width * tweak.scale * sf, min_edge, max(min_edge, target_canvas.width))
    height = clamp_int(reference.height * tweak.scale * sf, min_edge, max(min_edge, target_canvas.height))
    width = min(width, target_canvas.width)
    height = min(height, target_canvas.height)

    x = clamp_int((reference.x + tweak.dx) * sf, 0, target_canvas.width - width)
    y = clamp_int((reference.y + tweak.dy) * sf, 0, target_canvas.height - height)

    return Rect(x=x, y=y, width=width, height=height)


def accumulate(tweak: Tweak, correction: Correction | None, limits: PlacementLimits) -> Tweak:
    """Fold one reviewer correction into the running tweak.

    Each step is clamped, then the accumulated tweak is clamped to the outer bound.
    """
    if correction is None:
        return tweak

    step_dx = clamp(correction.dx, -limits.max_step_delta, limits.max_step_delta)
    step_dy = clamp(correction.dy, -limits.max_step_delta, limits.max_step_delta)
    step_scale = clamp(correction.scale_multiplier, limits.min_step_scale, limits.max_step_scale)

    return Tweak(
        dx=clamp(tweak.dx + step_dx, -limits.max_offset, limits.max_offset),
        dy=clamp(tweak.dy + step_dy, -limits.max_offset, limits.max_offset),
        scale=clamp(tweak.scale * step_scale, limits.min_scale, limits.max_scale),
    )


def resolve_for(limits: PlacementLimits, target_canvas: Canvas, tweak: Tweak) -> Rect:
    """resolve() with the configured reference placement."""
    return resolve(
        limits.reference,
        limits.reference_canvas,
        target_canvas,
        tweak,
        min_edge=limits.min_edge,
    )
