import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path

from dotenv import load_dotenv

from .errors import ConfigurationError
from .models.generation import LayerEffect
from .models.placement import Canvas, Rect, Region

load_dotenv()

# API Keys and Config - loaded from .env
RUNWAY_API_KEY = os.getenv("RUNWAYML_API_SECRET")
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
REMOVEBG_API_KEY = os.getenv("REMOVEBG_API_KEY")
PLACID_API_TOKEN = os.getenv("PLACID_API_TOKEN")
PLACID_COMPOSITE_TEMPLATE_UUID = os.getenv("PLACID_COMPOSITE_TEMPLATE_UUID")
ASSET_BUCKET = os.getenv("ASSET_BUCKET")
AWS_REGION = os.getenv("AWS_REGION", "us-east-1")

# Reference images (hosted). The placement reference shows the object where it belongs.
PRESENTER_REFERENCE_URL = os.getenv("PRESENTER_REFERENCE_URL", "")
PLACEMENT_REFERENCE_URL = os.getenv("PLACEMENT_REFERENCE_URL", "")
PLACEMENT_REFERENCE_KEY = os.getenv("PLACEMENT_REFERENCE_KEY", "references/presenter_with_object.png")

# Object placement calibrated on the placement reference, 1280x720 frame, top-left origin.
REFERENCE_CANVAS = Canvas(1280, 720)
REFERENCE_PLACEMENT = Rect(x=960, y=308, width=200, height=214)

# Region of the placement reference that tightly frames the object (placement_ref strategy).
PLACEMENT_REFERENCE_CROP = Rect(x=1020, y=420, width=220, height=235)

# Subtle layer effects to seat the object on the desk
OVERLAY_EFFECTS = (
    LayerEffect("shadow", strength=32, offset_x=0, offset_y=14, color="black"),
    LayerEffect("blur", strength=10),
)

# Head and desk areas must survive a wardrobe edit
IDENTITY_REGIONS = (
    Region("head", x=0.34, y=0.04, width=0.32, height=0.42),
    Region("desk", x=0.0, y=0.72, width=1.0, height=0.28),
)


class ReviewerPolicy(Enum):
    """What to do when the reviewer cannot be consulted."""
    STRICT = "strict"            # treat as rejection
    PERMISSIVE = "permissive"    # accept with a caveat


class OverlayStrategy(Enum):
    GENERATED = "generated"          # run the object stage
    PROVIDED = "provided"            # upload the raw object, no generation
    PLACEMENT_REF = "placement_ref"  # crop the object out of the placement reference


@dataclass(frozen=True)
class PlacementLimits:
    """Reference placement and the clamps applied to reviewer corrections."""
    reference: Rect = REFERENCE_PLACEMENT
    reference_canvas: Canvas = REFERENCE_CANVAS
    min_edge: int = 16
    max_review_delta: int = 60       # clamp on a decoded reviewer delta
    max_step_delta: int = 120        # clamp on one applied step
    min_step_scale: float = 0.85
    max_step_scale: float = 1.20
    max_offset: int = 240            # outer bound on accumulated dx/dy
    min_scale: float = 0.5           # outer bound on accumulated scale
    max_scale: float = 2.0


@dataclass(frozen=True)
class Credentials:
    runway_api_key: str | None = None
    gemini_api_key: str | None = None
    openai_api_key: str | None = None
    removebg_api_key: str | None = None
    placid_api_token: str | None = None
    placid_template_uuid: str | None = None
    asset_bucket: str | None = None
    aws_region: str = "us-east-1"

    @classmethod
    def from_env(cls) -> "Credentials":
        return cls(
            runway_api_key=RUNWAY_API_KEY,
            gemini_api_key=GEMINI_API_KEY,
            openai_api_key=OPENAI_API_KEY,
            removebg_api_key=REMOVEBG_API_KEY,
            placid_api_token=PLACID_API_TOKEN,
            placid_template_uuid=PLACID_COMPOSITE_TEMPLATE_UUID,
            asset_bucket=ASSET_BUCKET,
            aws_region=AWS_REGION,
        )

    def require(self, *names: str) -> None:
        """Raise ConfigurationError naming every missing credential."""
        missing = [name for name in names if not getattr(self, name)]
        if missing:
            raise ConfigurationError(f"Missing credentials: {', '.join(missing)}")


@dataclass(frozen=True)
class PipelineConfig:
    """All pipeline thresholds. Built once at startup and passed by reference."""

    generation_provider: str = "runway"    # "runway" or "gemini"
    wardrobe_max_attempts: int = 2
    object_max_attempts: int = 3
    composite_max_attempts: int = 5

    reviewer_policy: ReviewerPolicy = ReviewerPolicy.STRICT
    overlay_strategy: OverlayStrategy = OverlayStrategy.PLACEMENT_REF
    strict_placement: bool = True           # never keep a rejected composite as best effort
    enable_generative_composite: bool = False
    object_label: str = "object"            # how prompts and reviewers name the product

    similarity_min: float = 0.75
    similarity_regions: tuple[Region, ...] = IDENTITY_REGIONS
    placement: PlacementLimits = field(default_factory=PlacementLimits)

    overlay_crop: Rect = PLACEMENT_REFERENCE_CROP
    overlay_effects: tuple[LayerEffect, ...] = OVERLAY_EFFECTS
    presenter_reference_url: str = PRESENTER_REFERENCE_URL
    placement_reference_url: str = PLACEMENT_REFERENCE_URL
    placement_reference_key: str = PLACEMENT_REFERENCE_KEY

    wardrobe_aspect_ratio: str = "16:9"
    object_aspect_ratio: str = "1:1"
    subject_min_bytes: int = 12000
    object_min_bytes: int = 2000

    poll_interval: float = 2.0
    max_poll_attempts: int = 120
    transform_retry_statuses: tuple[int, ...] = (423, 429, 502, 503, 504)
    transform_max_retries: int = 10
    transform_retry_sleep: float = 1.2

    job_timeout: float | None = 900.0       # seconds, None disables the watchdog
    max_concurrent_jobs: int = 2
    asset_prefix: str = "presenter-studio"
    work_root: Path | None = None           # None -> system temp dir

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Build the config from environment overrides on top of the defaults."""
        timeout = os.getenv("JOB_TIMEOUT_SECONDS")
        work_root = os.getenv("WORK_ROOT")
        try:
            return cls(
                generation_provider=os.getenv("GENERATION_PROVIDER", "runway").lower(),
                reviewer_policy=ReviewerPolicy(
                    os.getenv("REVIEWER_UNAVAILABLE_POLICY", "strict").lower()
                ),
                overlay_strategy=OverlayStrategy(
                    os.getenv("OBJECT_OVERLAY_STRATEGY", "placement_ref").lower()
                ),
                strict_placement=os.getenv("STRICT_PLACEMENT", "1") != "0",
                enable_generative_composite=os.getenv("ENABLE_GENERATIVE_COMPOSITE", "0") == "1",
                object_label=os.getenv("OBJECT_LABEL", "object"),
                similarity_min=float(os.getenv("SIMILARITY_MIN", "0.75")),
                job_timeout=float(timeout) if timeout else 900.0,
                max_concurrent_jobs=int(os.getenv("MAX_CONCURRENT_JOBS", "2")),
                asset_prefix=os.getenv("ASSET_PREFIX", "presenter-studio"),
                work_root=Path(work_root) if work_root else None,
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid pipeline setting: {e}") from e

    def with_overrides(self, **changes) -> "PipelineConfig":
        """Per-job copy with some fields replaced."""
        return replace(self, **changes)
