"""Job pipeline: wardrobe -> object -> composite, one job at a time."""

import logging
import shutil
import tempfile
import threading
from pathlib import Path

from ..clients.llm import LLMClient
from ..clients.placid import PlacidClient
from ..clients.removebg import RemoveBgClient
from ..clients.storage import S3AssetStore, download_url
from ..config import Credentials, OverlayStrategy, PipelineConfig
from ..errors import (
    ConfigurationError,
    DeadlineExceeded,
    FallbackUnavailable,
    JobCancelled,
    MissingInputError,
    StorageError,
)
from ..models.asset import AssetKind, CandidateAsset
from ..models.generation import GenerationRequest, ReferenceAsset
from ..models.job import Job, JobResult
from ..models.stage import StageResult, StageSpec
from ..services.assets import AssetLifecycleManager, AssetStore
from ..services.composite import CompositeService
from ..services.fallback import FallbackChainResolver
from ..services.generation import GenerationService, create_generation_client
from ..services.prompts import OBJECT_TAG, SUBJECT_TAG, PromptService, PromptSet
from ..services.review import ReviewService
from ..utils import ensure_image_file, stable_seed, to_slug
from .orchestrator import StageOrchestrator
from .stages import CompositeDriver, ObjectDriver, WardrobeDriver
from .watchdog import Deadline, Watchdog

logger = logging.getLogger(__name__)


def is_url(source) -> bool:
    return isinstance(source, str) and source.startswith(("http://", "https://"))


class Pipeline:
    """Turn a presenter photo and an object into one composed image."""

    def __init__(
        self,
        config: PipelineConfig,
        store: AssetStore,
        generation: GenerationService,
        reviewer: ReviewService,
        prompts: PromptService,
        renderer: PlacidClient,
        removebg: RemoveBgClient | None = None,
    ):
        self.config = config
        self.store = store
        self.generation = generation
        self.reviewer = reviewer
        self.prompts = prompts
        self.renderer = renderer
        self.removebg = removebg
        self.fallbacks = FallbackChainResolver.default(config.enable_generative_composite)

    def run(self, job: Job, cancel_event: threading.Event | None = None) -> JobResult:
        """
        Run every stage for the job and write the result to job.output_dir.

        Raises:
            MissingInputError: Subject/object missing, too small, or not an image
            ConfigurationError: Strategy needs a setting that is not configured
            JobCancelled: cancel_event was set at a stage boundary
            StageFailed: The composite stage produced nothing at all
        """
        if self.config.work_root is not None:
            Path(self.config.work_root).mkdir(parents=True, exist_ok=True)
        work_dir = Path(tempfile.mkdtemp(prefix=f"{to_slug(job.job_id)}-", dir=self.config.work_root))
        assets = AssetLifecycleManager(self.store, job.job_id, self.config.asset_prefix)
        logger.info(f"[{job.job_id}] job started (work dir {work_dir})")

        try:
            return self._run(job, work_dir, assets, cancel_event)
        finally:
            discarded = assets.close()
            if discarded:
                logger.info(f"[{job.job_id}] discarded {discarded} unpromoted assets")
            shutil.rmtree(work_dir, ignore_errors=True)

    def _run(
        self,
        job: Job,
        work_dir: Path,
        assets: AssetLifecycleManager,
        cancel_event: threading.Event | None,
    ) -> JobResult:
        config = self.config
        subject_path = self._materialize(job.subject_path, work_dir / "input-subject.png", config.subject_min_bytes)
        object_path = None
        if job.object_path:
            object_path = self._materialize(job.object_path, work_dir / "input-object.png", config.object_min_bytes)
        elif config.overlay_strategy != OverlayStrategy.PLACEMENT_REF:
            raise MissingInputError(f"object image required for the {config.overlay_strategy.value} strategy")

        watchdog = Watchdog(Deadline(config.job_timeout))
        orchestrator = StageOrchestrator(
            job.job_id,
            assets,
            self.fallbacks,
            watchdog,
            work_dir,
            reviewer_policy=config.reviewer_policy,
            similarity_min=config.similarity_min,
        )
        prompts = self.prompts.build(job)

        subject = assets.register(subject_path, "wardrobe", kind=AssetKind.INPUT, name="input-subject")
        object_input = None
        if object_path is not None:
            object_input = assets.register(object_path, "object", kind=AssetKind.INPUT, name="input-object")

        stages: list[StageResult] = []

        self._check_cancelled(job, assets, cancel_event)
        wardrobe = orchestrator.run_stage(WardrobeDriver(
            StageSpec("wardrobe", config.wardrobe_max_attempts),
            job.job_id,
            assets,
            prompts.wardrobe,
            self.generation,
            self.reviewer,
            subject,
            config.similarity_regions,
            config.wardrobe_aspect_ratio,
        ))
        stages.append(wardrobe)
        base = wardrobe.asset or subject

        self._check_cancelled(job, assets, cancel_event)
        object_result = self._object_stage(job, prompts, orchestrator, assets, object_input, work_dir)
        stages.append(object_result)

        self._check_cancelled(job, assets, cancel_event)
        if object_result.asset is None:
            logger.warning(f"[{job.job_id}] no overlay available, composite skipped")
            assets.promote(base)
            composite = StageResult(stage="composite", asset=base, method="skipped", accepted=False)
        else:
            composite = orchestrator.run_stage(self._composite_driver(
                job, prompts, assets, watchdog, work_dir, base, object_result.asset, object_input,
            ))
        stages.append(composite)

        final = composite.asset
        job.output_dir.mkdir(parents=True, exist_ok=True)
        out_path = job.output_dir / f"{to_slug(job.job_id)}{Path(final.local_path).suffix or '.png'}"
        shutil.copyfile(final.local_path, out_path)

        result = JobResult(
            job_id=job.job_id,
            local_path=out_path,
            locator=final.locator,
            width=final.width,
            height=final.height,
            stages=stages,
            placement=composite.placement,
        )
        logger.info(f"[{job.job_id}] done via {result.method}")
        return result

    def _object_stage(
        self,
        job: Job,
        prompts: PromptSet,
        orchestrator: StageOrchestrator,
        assets: AssetLifecycleManager,
        object_input: CandidateAsset | None,
        work_dir: Path,
    ) -> StageResult:
        """Produce the overlay according to the configured strategy."""
        strategy = self.config.overlay_strategy

        if strategy == OverlayStrategy.GENERATED:
            return orchestrator.run_stage(ObjectDriver(
                StageSpec("object", self.config.object_max_attempts),
                job.job_id,
                assets,
                prompts.object,
                self.generation,
                self.reviewer,
                object_input,
                self.config.object_aspect_ratio,
            ))

        if strategy == OverlayStrategy.PROVIDED:
            assets.promote(object_input)
            return StageResult(stage="object", asset=object_input, method="provided", accepted=False)

        url = self.config.placement_reference_url
        if not url:
            raise ConfigurationError("PLACEMENT_REFERENCE_URL is required for the placement_ref strategy")
        try:
            local = download_url(url, work_dir / "placement-reference.png")
        except StorageError as e:
            logger.error(f"[{job.job_id}] placement reference unavailable: {e}")
            return StageResult(stage="object", asset=None, method="failed", accepted=False)
        reference = assets.track_reference(local, url, self.config.placement_reference_key, "object")
        return StageResult(stage="object", asset=reference, method="placement_ref", accepted=False)

    def _composite_driver(
        self,
        job: Job,
        prompts: PromptSet,
        assets: AssetLifecycleManager,
        watchdog: Watchdog,
        work_dir: Path,
        base: CandidateAsset,
        overlay: CandidateAsset,
        object_input: CandidateAsset | None,
    ) -> CompositeDriver:
        config = self.config
        from_reference = overlay.kind == AssetKind.REFERENCE

        generate_fallback = None
        if config.enable_generative_composite:
            def generate_fallback() -> CandidateAsset:
                references = [ReferenceAsset(SUBJECT_TAG, path=base.local_path, locator=base.locator)]
                product = object_input or overlay
                references.append(ReferenceAsset(OBJECT_TAG, path=product.local_path, locator=product.locator))
                request = GenerationRequest(
                    prompt=prompts.final,
                    references=references,
                    aspect_ratio=config.wardrobe_aspect_ratio,
                    seed=stable_seed(job.job_id, "composite_generative", 1),
                )
                try:
                    path = watchdog.call(self.generation.generate, request, work_dir / "composite" / "generative.png")
                except DeadlineExceeded as e:
                    raise FallbackUnavailable(str(e)) from e
                return assets.register(path, "composite", kind=AssetKind.FALLBACK, name="generative")

        return CompositeDriver(
            StageSpec(
                "composite",
                config.composite_max_attempts,
                terminal=True,
                best_effort=not config.strict_placement,
            ),
            job.job_id,
            assets,
            CompositeService(
                self.renderer,
                assets,
                work_dir,
                removebg=self.removebg,
                retry_statuses=config.transform_retry_statuses,
                max_retries=config.transform_max_retries,
                retry_sleep=config.transform_retry_sleep,
            ),
            self.reviewer,
            base,
            overlay,
            config.placement,
            overlay_crop=config.overlay_crop if from_reference else None,
            effects=config.overlay_effects,
            placement_reference_url=config.placement_reference_url,
            generate_fallback=generate_fallback,
        )

    @staticmethod
    def _materialize(source: Path | str, download_to: Path, min_bytes: int) -> Path:
        """Local, validated copy of an input (URLs are downloaded first)."""
        if is_url(source):
            try:
                source = download_url(source, download_to)
            except StorageError as e:
                raise MissingInputError(f"image_missing: {e}") from e
        return ensure_image_file(Path(source), min_bytes)

    @staticmethod
    def _check_cancelled(job: Job, assets: AssetLifecycleManager, cancel_event: threading.Event | None) -> None:
        if cancel_event is None or not cancel_event.is_set():
            return
        discarded = assets.discard_pending()
        logger.warning(f"[{job.job_id}] cancelled, discarded {discarded} unpromoted assets")
        raise JobCancelled(f"job {job.job_id} cancelled")


def build_pipeline(config: PipelineConfig, credentials: Credentials) -> Pipeline:
    """Wire real clients from credentials.

    Raises:
        ConfigurationError: If a required credential is missing
    """
    credentials.require("asset_bucket", "placid_api_token", "placid_template_uuid")

    llm = None
    if credentials.openai_api_key:
        llm = LLMClient(api_key=credentials.openai_api_key)
    else:
        logger.warning("OPENAI_API_KEY not set: reviews unavailable, prompts from templates")

    removebg = None
    if credentials.removebg_api_key:
        removebg = RemoveBgClient(api_key=credentials.removebg_api_key)

    return Pipeline(
        config=config,
        store=S3AssetStore(credentials.asset_bucket, region=credentials.aws_region),
        generation=GenerationService(create_generation_client(config, credentials)),
        reviewer=ReviewService(llm, config.placement, object_label=config.object_label),
        prompts=PromptService(
            llm,
            object_label=config.object_label,
            reference_urls=[config.presenter_reference_url, config.placement_reference_url],
        ),
        renderer=PlacidClient(
            credentials.placid_api_token,
            credentials.placid_template_uuid,
            poll_interval=config.poll_interval,
            max_poll_attempts=config.max_poll_attempts,
        ),
        removebg=removebg,
    )
