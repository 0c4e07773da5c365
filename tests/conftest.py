"""Shared fakes and image fixtures. No test touches the network."""

import shutil
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from presenter_studio.config import OverlayStrategy, PipelineConfig
from presenter_studio.engine.pipeline import Pipeline
from presenter_studio.errors import StorageError
from presenter_studio.models.review import ReviewVerdict
from presenter_studio.services.generation import GenerationService
from presenter_studio.services.prompts import PromptService


# -- Helpers ------------------------------------------------------------------


def make_image(path: Path, size=(320, 180), seed: int = 0) -> Path:
    """Random-noise PNG; large enough to pass the input size floors."""
    rng = np.random.default_rng(seed)
    pixels = rng.integers(0, 256, size=(size[1], size[0], 3), dtype=np.uint8)
    Image.fromarray(pixels, "RGB").save(path, format="PNG")
    return Path(path)


class FakeStore:
    """In-memory asset store recording every upload and delete."""

    def __init__(self, fail_delete: bool = False):
        self.uploaded: list[str] = []
        self.deleted: list[str] = []
        self.fail_delete = fail_delete

    def upload(self, local_path: Path, key: str) -> str:
        self.uploaded.append(key)
        return f"https://assets.test/{key}"

    def delete(self, key: str) -> None:
        if self.fail_delete:
            raise StorageError(f"delete refused: {key}")
        self.deleted.append(key)

    def keys(self, stage: str, kind: str) -> list[str]:
        return [k for k in self.uploaded if f"/{stage}/" in k and k.endswith(f"-{kind}.png")]


class FakeGenerator:
    """Copies the first reference (a faithful edit) or fails when told to."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.requests = []

    def generate(self, request, out_path: Path) -> Path:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        source = request.references[0].path if request.references else None
        if source is not None:
            shutil.copyfile(source, out_path)
        else:
            make_image(out_path, seed=len(self.requests))
        return Path(out_path)


class ScriptedReviewer:
    """Returns queued verdicts per stage, then accepts."""

    def __init__(self, wardrobe=(), object=(), placement=()):
        self.queues = {
            "wardrobe": list(wardrobe),
            "object": list(object),
            "placement": list(placement),
        }
        self.requests = {"wardrobe": [], "object": [], "placement": []}

    def _next(self, kind, request):
        self.requests[kind].append(request)
        queue = self.queues[kind]
        return queue.pop(0) if queue else ReviewVerdict(accept=True, reason="looks right")

    def review_wardrobe(self, request):
        return self._next("wardrobe", request)

    def review_object(self, request):
        return self._next("object", request)

    def review_placement(self, request):
        return self._next("placement", request)


class FakeRenderer:
    """Stands in for the Placid client; records every submitted layer set."""

    def __init__(self):
        self.submitted = []

    def submit_render(self, layers, modifications=None):
        self.submitted.append((layers, modifications))
        return len(self.submitted)

    def wait_for_render(self, image_id):
        return f"https://render.test/{image_id}.png"


# -- Fixtures -----------------------------------------------------------------


@pytest.fixture
def subject_image(tmp_path):
    return make_image(tmp_path / "subject.png", size=(320, 180), seed=1)


@pytest.fixture
def object_image(tmp_path):
    return make_image(tmp_path / "object.png", size=(64, 64), seed=2)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def render_downloads(monkeypatch):
    """Rendered composites 'download' as fresh noise images of the base size."""
    urls = []

    def fake_download(url, out_path, timeout=60):
        urls.append(url)
        return make_image(Path(out_path), size=(320, 180), seed=len(urls) + 100)

    monkeypatch.setattr("presenter_studio.services.composite.download_url", fake_download)
    return urls


@pytest.fixture
def base_config(tmp_path):
    return PipelineConfig(
        overlay_strategy=OverlayStrategy.GENERATED,
        work_root=tmp_path / "work",
        job_timeout=60.0,
    )


@pytest.fixture
def make_pipeline(store, base_config):
    """Build a pipeline around fakes: make_pipeline(reviewer=..., generator=..., **config_overrides)."""

    def build(reviewer=None, generator=None, **overrides):
        config = base_config.with_overrides(**overrides) if overrides else base_config
        return Pipeline(
            config=config,
            store=store,
            generation=GenerationService(generator or FakeGenerator()),
            reviewer=reviewer or ScriptedReviewer(),
            prompts=PromptService(None, object_label="candle"),
            renderer=FakeRenderer(),
        )

    return build
