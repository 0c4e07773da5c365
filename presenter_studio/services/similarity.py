"""Perceptual similarity gate.

Coarse difference-hash fingerprints per named region, used to reject generated
edits that drifted away from the reference subject (e.g. a changed face).
Local and deterministic: no external service is involved.
"""

import logging
from io import BytesIO
from pathlib import Path
from typing import Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from ..models.placement import Region

logger = logging.getLogger(__name__)

FINGERPRINT_BITS = 64
GRID_WIDTH = 9   # 9 columns so each of the 8 compared cells has a right neighbour
GRID_HEIGHT = 8

ImageSource = Union[Image.Image, Path, str, bytes]


def load_image(source: ImageSource) -> Image.Image | None:
    """Decode an image from a PIL image, path or bytes. None if undecodable."""
    if isinstance(source, Image.Image):
        return source
    try:
        if isinstance(source, bytes):
            img = Image.open(BytesIO(source))
        else:
            img = Image.open(Path(source))
        img.load()
        return img
    except (UnidentifiedImageError, OSError) as e:
        logger.warning(f"Could not decode image for similarity: {e}")
        return None


def fingerprint(img: Image.Image, region: Region) -> int | None:
    """64-bit fingerprint of a region; bit i set when cell i is brighter than its right neighbour."""
    box = region.to_box(*img.size)
    if box[2] - box[0] < 1 or box[3] - box[1] < 1:
        return None

    luma = img.crop(box).convert("L").resize((GRID_WIDTH, GRID_HEIGHT), Image.Resampling.LANCZOS)
    cells = np.asarray(luma, dtype=np.int16)
    bits = (cells[:, :-1] > cells[:, 1:]).flatten()

    value = 0
    for bit in bits:
        value = (value << 1) | int(bit)
    return value


def fingerprint_similarity(a: int, b: int) -> float:
    """1 - hamming / 64."""
    return 1.0 - bin(a ^ b).count("1") / FINGERPRINT_BITS


def similarity(image_a: ImageSource, image_b: ImageSource, regions: list[Region]) -> float | None:
    """Mean per-region similarity in [0, 1].

    Regions that fail on either side are ignored; None when nothing is comparable.
    """
    img_a = load_image(image_a)
    img_b = load_image(image_b)
    if img_a is None or img_b is None:
        return None

    scores = []
    for region in regions:
        fp_a = fingerprint(img_a, region)
        fp_b = fingerprint(img_b, region)
        if fp_a is None or fp_b is None:
            continue
        scores.append(fingerprint_similarity(fp_a, fp_b))

    if not scores:
        return None
    return sum(scores) / len(scores)


def passes_gate(score: float | None, minimum: float) -> bool:
    """A measured score below the minimum fails; an unmeasurable one does not."""
    if score is None:
        return True
    return score >= minimum
