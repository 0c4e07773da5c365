"""Generation service facade over the configured image provider."""

import logging
from pathlib import Path
from typing import Protocol

from PIL import Image, UnidentifiedImageError

from ..clients.gemini import GeminiClient
from ..clients.runway import RunwayClient
from ..config import Credentials, PipelineConfig
from ..errors import ConfigurationError, GenerationFailed
from ..models.generation import GenerationRequest

logger = logging.getLogger(__name__)


class ImageGenerator(Protocol):
    def generate(self, request: GenerationRequest, out_path: Path) -> Path: ...


def create_generation_client(config: PipelineConfig, credentials: Credentials) -> ImageGenerator:
    """Build the provider client named by config.generation_provider."""
    if config.generation_provider == "runway":
        credentials.require("runway_api_key")
        return RunwayClient(
            credentials.runway_api_key,
            poll_interval=config.poll_interval,
            max_poll_attempts=config.max_poll_attempts,
        )
    if config.generation_provider == "gemini":
        credentials.require("gemini_api_key")
        return GeminiClient(credentials.gemini_api_key)
    raise ConfigurationError(f"Unknown generation provider: {config.generation_provider}")


class GenerationService:
    """Run one generation and make sure the result is a usable image."""

    def __init__(self, client: ImageGenerator):
        self.client = client

    def generate(self, request: GenerationRequest, out_path: Path) -> Path:
        """
        Generate an image for the request.

        Raises:
            ServiceError: Transport or provider failure (including GenerationFailed/GenerationTimeout)
        """
        out_path = Path(out_path)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        tags = ", ".join(ref.tag for ref in request.references) or "none"
        logger.info(f"Generating {out_path.name} (seed={request.seed}, refs={tags})")

        path = Path(self.client.generate(request, out_path))
        try:
            with Image.open(path) as img:
                img.verify()
        except (UnidentifiedImageError, OSError) as e:
            raise GenerationFailed(f"Generated file is not an image: {e}", code="INVALID_OUTPUT") from e
        return path
