"""Transform/composite service: prepare the overlay once, render it onto the base, fetch the result."""

import logging
import time
from io import BytesIO
from pathlib import Path

from PIL import Image, ImageFilter

from ..clients.placid import PlacidClient
from ..clients.removebg import RemoveBgClient
from ..clients.storage import download_url
from ..errors import StorageError
from ..models.asset import AssetKind, CandidateAsset
from ..models.generation import CompositeRequest, LayerEffect
from ..models.placement import Rect
from .assets import AssetLifecycleManager

logger = logging.getLogger(__name__)


def crop_image(img: Image.Image, crop: Rect) -> Image.Image:
    """Crop to the rect, clipped to the image bounds."""
    left = max(0, min(img.width - 1, crop.x))
    top = max(0, min(img.height - 1, crop.y))
    right = max(left + 1, min(img.width, crop.right))
    bottom = max(top + 1, min(img.height, crop.bottom))
    return img.crop((left, top, right, bottom))


def apply_shadow(img: Image.Image, effect: LayerEffect) -> Image.Image:
    """Soft drop shadow from the alpha channel; the canvas grows to fit the offset."""
    pad = max(abs(effect.offset_x), abs(effect.offset_y)) + 12
    canvas = Image.new("RGBA", (img.width + 2 * pad, img.height + 2 * pad), (0, 0, 0, 0))

    opacity = max(0, min(100, effect.strength)) / 100
    alpha = img.getchannel("A").point(lambda a: int(a * opacity))
    shadow = Image.new("RGBA", img.size, effect.color)
    shadow.putalpha(alpha)

    canvas.alpha_composite(shadow, (pad + effect.offset_x, pad + effect.offset_y))
    canvas = canvas.filter(ImageFilter.GaussianBlur(radius=6))
    canvas.alpha_composite(img, (pad, pad))
    return canvas.crop(canvas.getbbox() or (0, 0, canvas.width, canvas.height))


def apply_blur(img: Image.Image, effect: LayerEffect) -> Image.Image:
    """Slight softening so the overlay sits in the scene's focus."""
    return img.filter(ImageFilter.GaussianBlur(radius=max(0, effect.strength) / 20))


EFFECTS = {
    "shadow": apply_shadow,
    "blur": apply_blur,
}


class CompositeService:
    """Overlay-on-base rendering for one job.

    Prepared overlays and rendered results are cached by request key, so
    re-issuing a request reuses the same remote names.
    """

    def __init__(
        self,
        renderer: PlacidClient,
        assets: AssetLifecycleManager,
        work_dir: Path,
        removebg: RemoveBgClient | None = None,
        retry_statuses: tuple[int, ...] = (423, 429, 502, 503, 504),
        max_retries: int = 10,
        retry_sleep: float = 1.2,
    ):
        self.renderer = renderer
        self.assets = assets
        self.work_dir = Path(work_dir)
        self.removebg = removebg
        self.retry_statuses = retry_statuses
        self.max_retries = max_retries
        self.retry_sleep = retry_sleep
        self._overlays: dict[str, CandidateAsset] = {}
        self._renders: dict[str, str] = {}

    def prepare_overlay(self, request: CompositeRequest) -> CandidateAsset:
        """Crop, cut out and apply effects to the overlay; host it as a derived asset."""
        key = request.overlay_key()
        cached = self._overlays.get(key)
        if cached is not None and cached.is_pending:
            return cached

        source = request.overlay.local_path
        if source is None or not Path(source).exists():
            source = download_url(request.overlay.locator, self.work_dir / f"overlay-src-{key}.png")

        with Image.open(source) as opened:
            img = opened.convert("RGBA")
        if request.overlay_crop is not None:
            img = crop_image(img, request.overlay_crop)

        if request.remove_background:
            if self.removebg is None:
                logger.warning(f"[{self.assets.job_id}] no background remover configured, keeping overlay background")
            else:
                buffer = BytesIO()
                img.save(buffer, format="PNG")
                cutout = self.removebg.remove_background(buffer.getvalue())
                with Image.open(BytesIO(cutout)) as opened:
                    img = opened.convert("RGBA")

        for effect in request.effects:
            apply = EFFECTS.get(effect.name)
            if apply is None:
                logger.warning(f"Unknown layer effect {effect.name}, skipped")
                continue
            img = apply(img, effect)

        out_path = self.work_dir / f"overlay-{key}.png"
        img.save(out_path, format="PNG")
        asset = self.assets.register(
            out_path,
            "composite",
            kind=AssetKind.DERIVED,
            name=f"overlay-{key}",
        )
        self._overlays[key] = asset
        return asset

    def render(self, request: CompositeRequest, out_path: Path) -> Path:
        """Render the composite and download it to out_path."""
        key = request.cache_key()
        url = self._renders.get(key)
        if url is None:
            overlay = self.prepare_overlay(request)
            placement = request.placement
            layers = {
                "base": {"image": request.base.locator},
                "overlay": {
                    "image": overlay.locator,
                    "position_x": placement.x,
                    "position_y": placement.y,
                    "width": placement.width,
                    "height": placement.height,
                },
            }
            modifications = {
                "width": request.canvas.width,
                "height": request.canvas.height,
                "image_format": request.output_format,
            }
            image_id = self.renderer.submit_render(layers, modifications)
            logger.info(f"[{self.assets.job_id}] composite render {image_id} submitted at {placement.to_dict()}")
            url = self.renderer.wait_for_render(image_id)
            self._renders[key] = url

        return self.download(url, Path(out_path))

    def download(self, url: str, out_path: Path) -> Path:
        """Fetch a rendered asset, retrying while the backend reports it is not ready."""
        for attempt in range(1, self.max_retries + 1):
            try:
                return download_url(url, out_path)
            except StorageError as e:
                if e.status_code not in self.retry_statuses or attempt == self.max_retries:
                    raise
                logger.warning(
                    f"Render download returned {e.status_code} (attempt {attempt}/{self.max_retries}), "
                    f"retrying in {self.retry_sleep}s"
                )
                time.sleep(self.retry_sleep)
        raise StorageError(f"Render download failed: {url}")
