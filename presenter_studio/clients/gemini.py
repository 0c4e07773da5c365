"""Gemini image generation client (Gemini 3 Pro Image)."""

import logging
import time
from io import BytesIO
from pathlib import Path

import requests
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from PIL import Image

from ..errors import GenerationFailed, ServiceError
from ..models.generation import GenerationRequest

logger = logging.getLogger(__name__)


class GeminiClient:
    """Client for editing/generating images via Google's Gemini 3 Pro Image."""

    def __init__(self, api_key: str, model: str = "gemini-3-pro-image-preview"):
        self.client = genai.Client(api_key=api_key)
        # Supports up to 14 input images (5 with high fidelity)
        self.model = model

    def _call_with_retry(self, func, max_retries=5, retry_codes=(503, 429)):
        """Retry API calls on transient errors with exponential backoff."""
        for attempt in range(max_retries):
            try:
                return func()
            except genai_errors.APIError as e:
                is_retryable = e.code in retry_codes

                if not is_retryable or attempt == max_retries - 1:
                    raise ServiceError(f"Gemini API error: {e}", status_code=e.code) from e

                wait_time = 2 ** attempt  # 1s, 2s, 4s
                logger.warning(f"Gemini API error (attempt {attempt + 1}/{max_retries}), retrying in {wait_time}s: {e}")
                time.sleep(wait_time)

    def generate(self, request: GenerationRequest, out_path: Path) -> Path:
        """
        Generate an image from a prompt and tagged reference images.

        Args:
            request: Prompt, references, aspect ratio and seed
            out_path: Where to write the generated image

        Returns:
            out_path
        """
        # Tags in the prompt (@subject_ref) are bound to images by order
        tag_lines = [f"Image {i + 1} is @{ref.tag}." for i, ref in enumerate(request.references)]
        contents = ["\n".join(tag_lines + [request.prompt])]
        for ref in request.references:
            contents.append(Image.open(BytesIO(self._load_reference(ref.path, ref.locator))))

        # Gemini seeds are int32
        seed = request.seed & 0x7FFFFFFF if request.seed is not None else None

        response = self._call_with_retry(
            lambda: self.client.models.generate_content(
                model=self.model,
                contents=contents,
                config=types.GenerateContentConfig(
                    response_modalities=["IMAGE", "TEXT"],
                    seed=seed,
                    image_config=types.ImageConfig(
                        aspect_ratio=request.aspect_ratio,
                        image_size="2K",
                    ),
                ),
            )
        )

        # Extract generated image from response; blocked answers carry no content
        candidates = getattr(response, "candidates", None) or []
        candidate = candidates[0] if candidates else None
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            inline = getattr(part, "inline_data", None)
            mime_type = getattr(inline, "mime_type", None) or ""
            if getattr(inline, "data", None) and mime_type.startswith("image/"):
                Path(out_path).write_bytes(inline.data)
                return Path(out_path)

        reason = getattr(candidate, "finish_reason", None)
        code = str(getattr(reason, "name", reason)) if reason else "NO_IMAGE"
        raise GenerationFailed(f"No image generated by Gemini (finish reason {code})", code=code)

    def _load_reference(self, path: Path | None, locator: str | None) -> bytes:
        if path:
            return Path(path).read_bytes()
        if not locator:
            raise ServiceError("Reference has neither path nor locator")
        try:
            response = requests.get(locator, timeout=30)
            response.raise_for_status()
            return response.content
        except requests.RequestException as e:
            raise ServiceError(f"Failed to download reference {locator}: {e}") from e
