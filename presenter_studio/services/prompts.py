"""Prompt orchestration: an LLM writes the stage prompts, templates cover any failure."""

import logging
from dataclasses import dataclass

from ..clients.llm import LLMClient
from ..errors import ServiceError
from ..models.job import Job
from ..utils import stable_seed
from .review import ParseFailure, extract_json_object

logger = logging.getLogger(__name__)

SUBJECT_TAG = "subject_ref"
OBJECT_TAG = "object_ref"

WARDROBE_VARIANTS = [
    "dark charcoal matte button-up, open collar, no blazer",
    "deep navy textured button-up, open collar, unstructured dark blazer",
    "black band-collar button-up, no blazer",
    "dark graphite micro-pattern button-up, open collar, soft knit blazer",
    "dark slate button-up, open collar, open blazer with subtle texture",
    "black button-up with subtle sheen, open collar, slim dark blazer",
    "deep navy oxford button-up, open collar, no blazer",
    "charcoal button-up with thin pinstripe, open collar, open blazer",
    "black button-up with hidden placket, open collar, no blazer",
    "midnight-blue button-up, open collar, relaxed dark blazer",
]

ORCHESTRATOR_PROMPT = """
You write precise, regular descriptive prompts for a reference-guided image generator.
Return JSON only with keys: wardrobePrompt, objectPrompt, finalPrompt.
Rules:
- Use @{subject} as the only person reference.
- Study the provided reference images to match the studio framing and the {object_label} placement.
- Face/head are strictly locked: do NOT alter the face/head, hairline, glasses, beard, skin texture, expression. No double face, no ghosting.
- Keep studio/desk/background/camera/framing/lighting unchanged; DO NOT add borders/frames/vignettes/letterboxing.
- Wardrobe: use the provided wardrobe variation cue exactly. Dark colors only.
- Object: use @{object} to create a clean {object_label} CUTOUT with exact label/branding. Output must be PNG with transparent background (alpha). No shadows.
- Final: add the {object_label} on the right/back desk matching the placement reference. Only add the {object_label}; do not change any other pixels.
- No extra objects and no added text/logos beyond the product label.
""".strip()


@dataclass(frozen=True)
class PromptSet:
    """Prompts for one job."""
    wardrobe: str
    object: str
    final: str
    wardrobe_variant: str
    source: str = "template"    # "llm" or "template"


def pick_wardrobe_variant(job_id: str) -> str:
    """Same job id, same outfit."""
    return WARDROBE_VARIANTS[stable_seed(job_id, "wardrobe_variant", 0) % len(WARDROBE_VARIANTS)]


def fallback_wardrobe_prompt(topic_line: str, wardrobe_variant: str) -> str:
    return f"""
Use @{SUBJECT_TAG} for exact framing, pose, lighting, desk, and studio environment.
Change ONLY the outfit on the torso/upper body area to a dark, classy outfit. Outfit spec (use exactly): {wardrobe_variant}.
Outfit colors must be dark only (charcoal, black, deep navy). No bright or light colors.
Do NOT alter the face or head at all. Keep glasses, beard, hairline, skin texture, and facial features exactly as in @{SUBJECT_TAG}. Single face only, no ghosting.
Studio background, desk, lighting, camera angle, and all props must remain EXACTLY the same.
Do NOT add borders/frames/vignettes/letterboxing or change image processing.
No extra objects, no text, no logos. Topic context: {topic_line}.
""".strip()


def fallback_object_prompt(object_label: str) -> str:
    return f"""
Use @{OBJECT_TAG} to generate a single clean {object_label} cutout of the same product.
Label/branding must remain EXACT and fully readable; avoid mangled microtext.
Output MUST be a PNG with a TRANSPARENT background (alpha). No shadows, no props, no extra text.
Keep the {object_label} centered, upright, normal proportions (no warping), and fill most of the frame.
""".strip()


def fallback_final_prompt(topic_line: str, object_label: str) -> str:
    return f"""
Use @{SUBJECT_TAG} as the ONLY base image. Face/head strictly locked; do not alter the presenter in any way.
Keep the studio/desk/background/camera/framing/lighting unchanged.
Add only @{OBJECT_TAG} {object_label} on the back table/desk on the right side near the edge, matching the reference placement.
Label must stay readable. Do NOT add borders, vignettes, color grading, or any new objects.
Topic context: {topic_line}.
""".strip()


class PromptService:
    """Build the wardrobe, object and final prompts for a job."""

    def __init__(
        self,
        llm: LLMClient | None,
        object_label: str = "object",
        reference_urls: list[str] | None = None,
    ):
        self.llm = llm
        self.object_label = object_label
        # presenter studio, placement reference, product reference (in that order)
        self.reference_urls = [url for url in (reference_urls or []) if url]

    def templates(self, job: Job) -> PromptSet:
        topic_line = job.topic_line()
        variant = pick_wardrobe_variant(job.job_id)
        return PromptSet(
            wardrobe=fallback_wardrobe_prompt(topic_line, variant),
            object=fallback_object_prompt(self.object_label),
            final=fallback_final_prompt(topic_line, self.object_label),
            wardrobe_variant=variant,
        )

    def build(self, job: Job) -> PromptSet:
        """LLM-written prompts; templates when the LLM is absent, fails, or answers badly."""
        fallback = self.templates(job)
        logger.info(f"[{job.job_id}] wardrobe variation: {fallback.wardrobe_variant}")
        if self.llm is None:
            return fallback

        system = ORCHESTRATOR_PROMPT.format(
            subject=SUBJECT_TAG,
            object=OBJECT_TAG,
            object_label=self.object_label,
        )
        user_text = (
            f"Title: {job.title.strip()}\n"
            f"Topics: {job.topic_line()}\n"
            f"Category: {job.category.strip()}\n"
            f"Wardrobe variation cue (use exactly): {fallback.wardrobe_variant}\n"
            "Study the reference images: 1) original presenter studio, 2) desired placement, "
            "3) product reference.\nOutput JSON only."
        )

        try:
            content = self.llm.call(system, user_text, image_urls=self.reference_urls, label="PROMPTS")
        except ServiceError as e:
            logger.warning(f"[{job.job_id}] prompt orchestrator failed, using templates: {e}")
            return fallback

        parsed = extract_json_object(content)
        if isinstance(parsed, ParseFailure):
            logger.warning(f"[{job.job_id}] prompt orchestrator output unparseable ({parsed.reason})")
            return fallback

        wardrobe = str(parsed.get("wardrobePrompt") or "").strip()
        object_prompt = str(parsed.get("objectPrompt") or "").strip()
        final = str(parsed.get("finalPrompt") or "").strip()
        if not (wardrobe and object_prompt and final):
            logger.warning(f"[{job.job_id}] prompt orchestrator missed keys, using templates")
            return fallback

        return PromptSet(
            wardrobe=wardrobe,
            object=object_prompt,
            final=final,
            wardrobe_variant=fallback.wardrobe_variant,
            source="llm",
        )
