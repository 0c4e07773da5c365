"""API clients for external services."""

from .gemini import GeminiClient
from .llm import LLMClient
from .placid import PlacidClient
from .removebg import RemoveBgClient
from .runway import RunwayClient
from .storage import S3AssetStore

__all__ = ["GeminiClient", "LLMClient", "PlacidClient", "RemoveBgClient", "RunwayClient", "S3AssetStore"]
