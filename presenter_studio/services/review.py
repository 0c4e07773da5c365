"""Review decoding and the three review contracts (wardrobe, object, placement)."""

import json
import logging
from dataclasses import dataclass
from typing import Any

from ..clients.llm import LLMClient
from ..config import PlacementLimits
from ..errors import ServiceError
from ..models.review import Correction, ReviewRequest, ReviewVerdict
from ..utils import clamp, clamp_int

logger = logging.getLogger(__name__)

MAX_SCAN_CHARS = 20000


@dataclass(frozen=True)
class ParseFailure:
    """Reviewer output could not be decoded into the expected JSON object."""
    reason: str
    raw: str


def extract_json_object(text: str, max_chars: int = MAX_SCAN_CHARS) -> dict[str, Any] | ParseFailure:
    """Decode a JSON object from free text.

    Tries a direct parse, then the largest balanced {...} substring that parses.
    """
    raw = (text or "").strip()
    if not raw:
        return ParseFailure("empty_response", raw)

    try:
        parsed = json.loads(raw)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    for candidate in sorted(_balanced_objects(raw[:max_chars]), key=len, reverse=True):
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    return ParseFailure("no_json_object", raw)


def _balanced_objects(text: str) -> list[str]:
    """Top-level brace-balanced substrings, ignoring braces inside strings."""
    found = []
    depth = 0
    start = -1
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"' and depth > 0:
            in_string = True
        elif ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                found.append(text[start:i + 1])
    return found


def decode_prompt_verdict(payload: dict[str, Any] | ParseFailure) -> ReviewVerdict | ParseFailure:
    """{accept, reason, improvedPrompt} -> verdict with an optional revised prompt."""
    if isinstance(payload, ParseFailure):
        return payload
    if not isinstance(payload.get("accept"), bool):
        return ParseFailure("missing_accept", json.dumps(payload)[:500])

    improved = str(payload.get("improvedPrompt") or "").strip()
    return ReviewVerdict(
        accept=payload["accept"],
        reason=str(payload.get("reason") or "").strip(),
        correction=Correction(revised_prompt=improved) if improved else None,
    )


def decode_placement_verdict(
    payload: dict[str, Any] | ParseFailure,
    limits: PlacementLimits,
) -> ReviewVerdict | ParseFailure:
    """{accept, reason, deltaX, deltaY, scaleMultiplier} -> verdict with clamped deltas."""
    if isinstance(payload, ParseFailure):
        return payload
    if not isinstance(payload.get("accept"), bool):
        return ParseFailure("missing_accept", json.dumps(payload)[:500])

    bound = limits.max_review_delta
    return ReviewVerdict(
        accept=payload["accept"],
        reason=str(payload.get("reason") or "").strip(),
        correction=Correction(
            dx=clamp_int(_number(payload.get("deltaX"), 0.0), -bound, bound),
            dy=clamp_int(_number(payload.get("deltaY"), 0.0), -bound, bound),
            scale_multiplier=clamp(
                _number(payload.get("scaleMultiplier"), 1.0),
                limits.min_step_scale,
                limits.max_step_scale,
            ),
        ),
    )


def _number(value: Any, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if number == number else default


WARDROBE_REVIEW_PROMPT = """
You are a strict quality reviewer for a presenter wardrobe adjustment image.
Return JSON only with keys: accept (boolean), reason (string), improvedPrompt (string).
Accept only if:
- Presenter face/head (hairline, beard, glasses, skin tone, expression) are unchanged from the base image.
- Studio/desk/background/camera angle/framing/lighting are unchanged.
- No borders/frames/vignettes/letterboxing.
- Only the wardrobe/clothing changed (dark outfit).
If reject, provide an improved wardrobe prompt that emphasizes preserving the base image and removing borders.
""".strip()

OBJECT_REVIEW_PROMPT = """
You are a strict quality reviewer for a {object_label} CUTOUT image that will be composited into a presenter scene.
Return JSON only with keys: accept (boolean), reason (string), improvedPrompt (string).
Accept only if ALL are true:
- The {object_label} is centered, upright, normal proportions (no warping).
- Label/branding is readable and not mangled.
- Background is transparent OR a perfectly clean single-color background that can be removed.
- No extra objects or extra text.
If reject, provide a revised product prompt that fixes the issue.
""".strip()

PLACEMENT_REVIEW_PROMPT = """
You are a strict reviewer for {object_label} placement in a presenter studio image.
Return JSON only with keys: accept (boolean), reason (string), deltaX (integer), deltaY (integer), scaleMultiplier (number).
Goals:
- Placement must closely match the reference placement image.
- Size must match the reference (not tiny, not oversized).
- Presenter and studio must remain unchanged.
If accept is false, suggest small adjustments:
- deltaX: move right (+) or left (-) by pixels.
- deltaY: move down (+) or up (-) by pixels.
- scaleMultiplier: e.g. 1.05 to slightly enlarge, 0.95 to slightly shrink.
Keep adjustments small: |deltaX| <= {max_delta}, |deltaY| <= {max_delta}, scaleMultiplier between {min_scale} and {max_scale}.
""".strip()


class ReviewService:
    """Vision review of candidates. Never raises: failures come back as unavailable verdicts."""

    def __init__(self, llm: LLMClient | None, limits: PlacementLimits, object_label: str = "object"):
        self.llm = llm
        self.limits = limits
        self.object_label = object_label

    def review_wardrobe(self, request: ReviewRequest) -> ReviewVerdict:
        user_text = (
            f"Attempt: {request.attempt}\n"
            f"Prompt used: {request.prompt_used[:700]}\n"
            "Compare the wardrobe result (first image) to the base presenter image. Output JSON only."
        )
        verdict = self._ask(WARDROBE_REVIEW_PROMPT, user_text, request, decode_prompt_verdict, "wardrobe_review")
        if verdict.unavailable:
            return ReviewVerdict.unreachable(
                verdict.reason,
                Correction(revised_prompt=(
                    f"{request.prompt_used.strip()}\n"
                    "Adjustment: Do NOT change face/head or studio; NO borders/letterboxing; ONLY change clothing."
                )),
            )
        return verdict

    def review_object(self, request: ReviewRequest) -> ReviewVerdict:
        system = OBJECT_REVIEW_PROMPT.format(object_label=self.object_label)
        user_text = (
            f"Attempt: {request.attempt}\n"
            f"Prompt used: {request.prompt_used[:700]}\n"
            "Review the generated image (first) against the product reference. Output JSON only."
        )
        verdict = self._ask(system, user_text, request, decode_prompt_verdict, "object_review")
        if verdict.unavailable:
            return ReviewVerdict.unreachable(
                verdict.reason,
                Correction(revised_prompt=(
                    f"{request.prompt_used.strip()}\n"
                    "Adjustment: keep the label crisp, the product upright, and output a transparent PNG."
                )),
            )
        return verdict

    def review_placement(self, request: ReviewRequest) -> ReviewVerdict:
        system = PLACEMENT_REVIEW_PROMPT.format(
            object_label=self.object_label,
            max_delta=self.limits.max_review_delta,
            min_scale=self.limits.min_step_scale,
            max_scale=self.limits.max_step_scale,
        )
        user_text = (
            f"Attempt: {request.attempt}\n"
            "Compare the generated image (first) to the placement reference. Output JSON only."
        )
        return self._ask(
            system,
            user_text,
            request,
            lambda payload: decode_placement_verdict(payload, self.limits),
            "placement_review",
        )

    def _ask(self, system: str, user_text: str, request: ReviewRequest, decode, label: str) -> ReviewVerdict:
        if self.llm is None:
            return ReviewVerdict.unreachable("review_skipped_no_llm")

        try:
            content = self.llm.call(
                system,
                user_text,
                image_urls=[request.candidate_locator, *request.reference_locators],
                label=label,
            )
        except ServiceError as e:
            logger.warning(f"{label} failed: {e}")
            return ReviewVerdict.unreachable("review_failed")

        result = decode(extract_json_object(content))
        if isinstance(result, ParseFailure):
            logger.warning(f"{label} parse failed ({result.reason}): {result.raw[:400]}")
            return ReviewVerdict.unreachable("review_parse_failed")
        return result
