"""Stage drivers: what each stage produces, how it is reviewed, and how corrections fold in."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable

from ..config import PlacementLimits
from ..models.asset import CandidateAsset
from ..models.generation import CompositeRequest, GenerationRequest, LayerEffect, ReferenceAsset
from ..models.placement import Canvas, Rect, Region
from ..models.review import ReviewRequest, ReviewVerdict
from ..models.stage import Attempt, StageRun, StageSpec
from ..services.assets import AssetLifecycleManager
from ..services.composite import CompositeService
from ..services.fallback import FallbackContext
from ..services.generation import GenerationService
from ..services.placement import accumulate, resolve_for
from ..services.prompts import OBJECT_TAG, SUBJECT_TAG
from ..services.review import ReviewService
from ..services.similarity import similarity


class StageDriver(ABC):
    """Stage-specific steps plugged into the orchestrator loop."""

    has_gate = False

    def __init__(self, spec: StageSpec, job_id: str, assets: AssetLifecycleManager, prompt: str = ""):
        self.spec = spec
        self.job_id = job_id
        self.assets = assets
        self.prompt = prompt

    def new_run(self) -> StageRun:
        return StageRun(spec=self.spec, prompt=self.prompt)

    @abstractmethod
    def produce(self, run: StageRun, attempt: Attempt, out_path: Path) -> Path:
        """Create the candidate file for this attempt."""
        pass

    @abstractmethod
    def review(self, run: StageRun, attempt: Attempt, candidate: CandidateAsset) -> ReviewVerdict:
        pass

    @abstractmethod
    def fallback_context(self, run: StageRun) -> FallbackContext:
        pass

    def gate(self, run: StageRun, candidate: CandidateAsset) -> float | None:
        return None

    def fold(self, run: StageRun, verdict: ReviewVerdict) -> None:
        """Default: take the reviewer's revised prompt, if any."""
        if verdict.correction is not None and verdict.correction.revised_prompt:
            run.prompt = verdict.correction.revised_prompt


class WardrobeDriver(StageDriver):
    """Restyle the presenter's outfit; identity regions are checked by the similarity gate."""

    has_gate = True

    def __init__(
        self,
        spec: StageSpec,
        job_id: str,
        assets: AssetLifecycleManager,
        prompt: str,
        generation: GenerationService,
        reviewer: ReviewService,
        subject: CandidateAsset,
        regions: tuple[Region, ...],
        aspect_ratio: str = "16:9",
    ):
        super().__init__(spec, job_id, assets, prompt)
        self.generation = generation
        self.reviewer = reviewer
        self.subject = subject
        self.regions = regions
        self.aspect_ratio = aspect_ratio

    def produce(self, run: StageRun, attempt: Attempt, out_path: Path) -> Path:
        request = GenerationRequest(
            prompt=run.prompt,
            references=[ReferenceAsset(SUBJECT_TAG, path=self.subject.local_path, locator=self.subject.locator)],
            aspect_ratio=self.aspect_ratio,
            seed=attempt.seed,
        )
        return self.generation.generate(request, out_path)

    def review(self, run: StageRun, attempt: Attempt, candidate: CandidateAsset) -> ReviewVerdict:
        return self.reviewer.review_wardrobe(ReviewRequest(
            candidate_locator=candidate.locator,
            reference_locators=[self.subject.locator],
            attempt=attempt.index,
            prompt_used=run.prompt,
        ))

    def gate(self, run: StageRun, candidate: CandidateAsset) -> float | None:
        return similarity(candidate.local_path, self.subject.local_path, list(self.regions))

    def fallback_context(self, run: StageRun) -> FallbackContext:
        return FallbackContext(
            job_id=self.job_id,
            stage=self.spec.name,
            assets=self.assets,
            input_asset=self.subject,
        )


class ObjectDriver(StageDriver):
    """Generate a clean product cutout from the user's object photo."""

    def __init__(
        self,
        spec: StageSpec,
        job_id: str,
        assets: AssetLifecycleManager,
        prompt: str,
        generation: GenerationService,
        reviewer: ReviewService,
        object_input: CandidateAsset,
        aspect_ratio: str = "1:1",
    ):
        super().__init__(spec, job_id, assets, prompt)
        self.generation = generation
        self.reviewer = reviewer
        self.object_input = object_input
        self.aspect_ratio = aspect_ratio

    def produce(self, run: StageRun, attempt: Attempt, out_path: Path) -> Path:
        request = GenerationRequest(
            prompt=run.prompt,
            references=[
                ReferenceAsset(OBJECT_TAG, path=self.object_input.local_path, locator=self.object_input.locator)
            ],
            aspect_ratio=self.aspect_ratio,
            seed=attempt.seed,
        )
        return self.generation.generate(request, out_path)

    def review(self, run: StageRun, attempt: Attempt, candidate: CandidateAsset) -> ReviewVerdict:
        return self.reviewer.review_object(ReviewRequest(
            candidate_locator=candidate.locator,
            reference_locators=[self.object_input.locator],
            attempt=attempt.index,
            prompt_used=run.prompt,
        ))

    def fallback_context(self, run: StageRun) -> FallbackContext:
        return FallbackContext(
            job_id=self.job_id,
            stage=self.spec.name,
            assets=self.assets,
            raw_path=self.object_input.local_path,
        )


class CompositeDriver(StageDriver):
    """Place the overlay on the base; reviewer deltas move and scale the placement."""

    def __init__(
        self,
        spec: StageSpec,
        job_id: str,
        assets: AssetLifecycleManager,
        compositor: CompositeService,
        reviewer: ReviewService,
        base: CandidateAsset,
        overlay: CandidateAsset,
        limits: PlacementLimits,
        overlay_crop: Rect | None = None,
        remove_background: bool = True,
        effects: tuple[LayerEffect, ...] = (),
        placement_reference_url: str = "",
        generate_fallback: Callable[[], CandidateAsset] | None = None,
        output_format: str = "png",
    ):
        super().__init__(spec, job_id, assets)
        self.compositor = compositor
        self.reviewer = reviewer
        self.base = base
        self.overlay = overlay
        self.limits = limits
        self.overlay_crop = overlay_crop
        self.remove_background = remove_background
        self.effects = effects
        self.placement_reference_url = placement_reference_url
        self.generate_fallback = generate_fallback
        self.output_format = output_format

    @property
    def canvas(self) -> Canvas:
        return Canvas(self.base.width, self.base.height)

    def request_for(self, run: StageRun) -> CompositeRequest:
        return CompositeRequest(
            base=self.base,
            overlay=self.overlay,
            placement=resolve_for(self.limits, self.canvas, run.tweak),
            canvas=self.canvas,
            overlay_crop=self.overlay_crop,
            remove_background=self.remove_background,
            effects=self.effects,
            output_format=self.output_format,
        )

    def produce(self, run: StageRun, attempt: Attempt, out_path: Path) -> Path:
        request = self.request_for(run)
        attempt.placement = request.placement
        return self.compositor.render(request, out_path)

    def review(self, run: StageRun, attempt: Attempt, candidate: CandidateAsset) -> ReviewVerdict:
        references = [self.placement_reference_url] if self.placement_reference_url else []
        return self.reviewer.review_placement(ReviewRequest(
            candidate_locator=candidate.locator,
            reference_locators=references,
            attempt=attempt.index,
        ))

    def fold(self, run: StageRun, verdict: ReviewVerdict) -> None:
        run.tweak = accumulate(run.tweak, verdict.correction, self.limits)

    def fallback_context(self, run: StageRun) -> FallbackContext:
        return FallbackContext(
            job_id=self.job_id,
            stage=self.spec.name,
            assets=self.assets,
            prior_asset=self.base,
            generate=self.generate_fallback,
        )
