import math
import re
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from .errors import MissingInputError


def to_slug(text: str) -> str:
    """Convert text to a storage-safe slug.

    Example: "Job 42/Retry" -> "job-42-retry"
    """
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def stable_seed(job_id: str, stage: str, attempt: int = 1) -> int:
    """Deterministic 32-bit seed (FNV-1a) for (job, stage, attempt)."""
    h = 2166136261
    for ch in f"{job_id}::{stage}::{attempt}":
        h ^= ord(ch)
        h = (h * 16777619) & 0xFFFFFFFF
    return h


def clamp(value: float, low: float, high: float) -> float:
    if math.isnan(value):
        value = low
    return max(low, min(high, value))


def clamp_int(value: float, low: int, high: int) -> int:
    """Round half up, then clamp."""
    if not math.isfinite(value):
        value = 0
    return int(max(low, min(high, math.floor(value + 0.5))))


def ensure_image_file(path: Path, min_bytes: int = 2000) -> Path:
    """Check the file exists, is large enough and decodes as an image."""
    path = Path(path)
    if not path.is_file():
        raise MissingInputError(f"image_missing: {path}")
    if path.stat().st_size < min_bytes:
        raise MissingInputError(f"image_too_small: {path}")
    try:
        with Image.open(path) as img:
            img.verify()
    except (UnidentifiedImageError, OSError) as e:
        raise MissingInputError(f"image_invalid: {path}: {e}") from e
    return path


def image_size(path: Path) -> tuple[int, int]:
    with Image.open(path) as img:
        return img.size
